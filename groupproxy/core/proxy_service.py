#!/usr/bin/env python3
"""FastAPI application wiring the route table to its handler pipelines."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import Response, StreamingResponse
from starlette.background import BackgroundTask

from .handler import Handler, Pipeline, ProxyRequest, ProxyResponse
from .middleware import (
    AuthInjectionMiddleware,
    DiscoveryMiddleware,
    GroupTransformMiddleware,
    LoggingMiddleware,
    PathPrefixMiddleware,
    StripPrefixMiddleware,
)
from .upstream import UpstreamProxy
from ..config.settings import ProxyConfig

PROXY_METHODS = ['GET', 'HEAD', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS']


async def to_proxy_request(request: Request) -> ProxyRequest:
    """Snapshot a Starlette request, body included, for the pipeline."""
    return ProxyRequest(
        method=request.method,
        path=request.url.path,
        query=request.url.query,
        headers=httpx.Headers(request.headers.raw),
        body=await request.body(),
        client_host=request.client.host if request.client else None,
    )


def to_starlette_response(response: ProxyResponse) -> Response:
    """Send a pipeline response, streaming it unless it was buffered."""
    if response.is_streaming:
        result = StreamingResponse(
            response.iter_bytes(),
            status_code=response.status_code,
            background=BackgroundTask(response.aclose),
        )
    else:
        result = Response(content=response.body, status_code=response.status_code)

    # Headers are passed through as-is, repeated ones included
    result.raw_headers = [
        (key.encode('latin-1'), value.encode('latin-1'))
        for key, value in response.headers.multi_items()
    ]
    return result


class GroupProxyService:
    """Reverse proxy serving the synthetic API group on top of the upstream."""

    def __init__(self, config: ProxyConfig, client: Optional[httpx.AsyncClient] = None):
        """
        Build the pipelines and the FastAPI app.

        Args:
            config: Immutable proxy configuration
            client: Optional preconfigured httpx client for the upstream
        """
        self.config = config
        self.logger = logging.getLogger('groupproxy')
        self.upstream = UpstreamProxy(config, client)

        access_log = LoggingMiddleware()
        auth = AuthInjectionMiddleware(config.token)

        self.group_pipeline = Pipeline(
            [
                access_log,
                auth,
                StripPrefixMiddleware(config.group_prefix),
                PathPrefixMiddleware(config.native_prefix),
                GroupTransformMiddleware(config.group),
            ],
            self.upstream,
        )
        self.discovery_pipeline = Pipeline(
            [access_log, auth, DiscoveryMiddleware(config.group)],
            self.upstream,
        )
        # Health checks are frequent; keep them out of the access log
        self.health_pipeline = Pipeline([auth], self.upstream)
        self.default_pipeline = Pipeline([access_log, auth], self.upstream)

        self.app = FastAPI(
            lifespan=self._lifespan,
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
        )
        self._setup_routes()

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        yield
        # Dispose of the shared upstream client on shutdown
        await self.upstream.client.aclose()

    def _setup_routes(self):
        """Register the routes, most specific first."""
        self._add_route(f'{self.config.group_prefix}/{{path:path}}', self.group_pipeline, 'group')
        self._add_route('/apis', self.discovery_pipeline, 'discovery')
        self._add_route('/healthz', self.health_pipeline, 'healthz')
        self._add_route('/{path:path}', self.default_pipeline, 'passthrough')

    def _add_route(self, path: str, handler: Handler, name: str):
        async def endpoint(request: Request):
            proxy_request = await to_proxy_request(request)
            response = await handler.handle(proxy_request)
            return to_starlette_response(response)

        self.app.add_api_route(
            path,
            endpoint,
            methods=PROXY_METHODS,
            name=name,
            include_in_schema=False,
        )
        self.logger.debug('Route %s -> %r', path, handler)


def create_app(config: ProxyConfig, client: Optional[httpx.AsyncClient] = None) -> FastAPI:
    return GroupProxyService(config, client).app
