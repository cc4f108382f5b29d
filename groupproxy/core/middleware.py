#!/usr/bin/env python3
"""Pipeline layers: logging, auth injection, path rewriting and body transforms."""
import logging
from typing import Optional

from .errors import ProxyError, error_response
from .handler import CallNext, Middleware, ProxyRequest, ProxyResponse
from ..transform.discovery import add_api_group
from ..transform.group_codec import rewrite_group

# Methods that carry no manifest in the request body
NON_MUTATING_METHODS = {'GET', 'HEAD', 'OPTIONS', 'DELETE'}

logger = logging.getLogger('groupproxy')


class LoggingMiddleware(Middleware):
    """Logs ``METHOD path status`` once the rest of the pipeline has answered."""

    def __init__(self, access_logger: Optional[logging.Logger] = None):
        self.logger = access_logger or logging.getLogger('groupproxy.access')

    async def dispatch(self, request: ProxyRequest, call_next: CallNext) -> ProxyResponse:
        response = await call_next(request)
        self.logger.info('%s %s %d', request.method, request.path, response.status_code)
        return response


class AuthInjectionMiddleware(Middleware):
    """Replaces any client credential with the proxy's own bearer token."""

    def __init__(self, token: str):
        self._authorization = f'Bearer {token}'

    async def dispatch(self, request: ProxyRequest, call_next: CallNext) -> ProxyResponse:
        outbound = request.evolve()
        outbound.headers['Authorization'] = self._authorization
        return await call_next(outbound)


class StripPrefixMiddleware(Middleware):
    """Removes the client-visible route prefix; paths without it get a 404."""

    def __init__(self, prefix: str):
        self.prefix = prefix

    async def dispatch(self, request: ProxyRequest, call_next: CallNext) -> ProxyResponse:
        if not request.path.startswith(self.prefix):
            return ProxyResponse.buffered(
                404,
                headers={'Content-Type': 'text/plain; charset=utf-8'},
                body=b'404 page not found\n',
            )
        return await call_next(request.evolve(path=request.path[len(self.prefix):]))


class PathPrefixMiddleware(Middleware):
    """Prepends a literal prefix, e.g. ``/v1/...`` becomes ``/oapi/v1/...``."""

    def __init__(self, prefix: str):
        self.prefix = prefix

    async def dispatch(self, request: ProxyRequest, call_next: CallNext) -> ProxyResponse:
        return await call_next(request.evolve(path=self.prefix + request.path))


class GroupTransformMiddleware(Middleware):
    """Moves manifests between the synthetic group and the upstream's native group.

    Outbound bodies of mutating calls lose the group; every inbound body gets
    ``group`` attached. The upstream response is read fully into memory
    before it is rewritten, because the rewritten body has a different
    length and Content-Length must be set before anything is sent. This
    caps supported responses at what fits in memory and rules out watch
    streams on the routes behind this layer.
    """

    def __init__(self, group: str):
        self.group = group

    async def dispatch(self, request: ProxyRequest, call_next: CallNext) -> ProxyResponse:
        outbound = request.evolve()
        # Buffered bodies must arrive unencoded to be rewritten
        outbound.headers.pop('Accept-Encoding', None)

        if request.method not in NON_MUTATING_METHODS:
            try:
                outbound.body = rewrite_group('', request.body)
            except ProxyError as exc:
                logger.warning('Rejecting %s %s: %s', request.method, request.path, exc)
                return error_response(exc)
            outbound.headers['Content-Length'] = str(len(outbound.body))

        captured = await call_next(outbound)
        body = await captured.read()

        # HEAD answers carry the headers of a GET but no manifest
        if request.method == 'HEAD':
            return ProxyResponse(captured.status_code, headers=captured.headers, body=body)

        try:
            rewritten = rewrite_group(self.group, body)
        except ProxyError as exc:
            logger.warning('Failed to rewrite response for %s %s: %s', request.method, request.path, exc)
            return error_response(exc)

        return ProxyResponse.buffered(captured.status_code, captured.headers, rewritten)


class DiscoveryMiddleware(Middleware):
    """Serves ``GET /apis`` with ``group`` appended to the upstream's listing."""

    def __init__(self, group: str):
        self.group = group

    async def dispatch(self, request: ProxyRequest, call_next: CallNext) -> ProxyResponse:
        if request.method != 'GET':
            return ProxyResponse.buffered(405)

        outbound = request.evolve()
        outbound.headers.pop('Accept-Encoding', None)

        captured = await call_next(outbound)
        body = await captured.read()

        try:
            augmented = add_api_group(self.group, body)
        except ProxyError as exc:
            logger.warning('Failed to augment discovery listing: %s', exc)
            return error_response(exc)

        return ProxyResponse.buffered(
            captured.status_code,
            headers={'Content-Type': 'application/json'},
            body=augmented,
        )
