#!/usr/bin/env python3
"""Terminal pipeline handler that forwards requests to the upstream API server."""
import json
import logging
import ssl
from typing import Optional
from urllib.parse import urlsplit

import httpx

from .handler import Handler, ProxyRequest, ProxyResponse
from ..config.settings import ProxyConfig

# Hop-by-hop headers (RFC 7230) are never forwarded in either direction
HOP_BY_HOP_HEADERS = {
    'connection',
    'keep-alive',
    'proxy-authenticate',
    'proxy-authorization',
    'proxy-connection',
    'te',
    'trailer',
    'trailers',
    'transfer-encoding',
    'upgrade',
}

# Request headers that httpx recomputes for the outbound request
RECOMPUTED_REQUEST_HEADERS = {'host', 'content-length'}

logger = logging.getLogger('groupproxy.upstream')


def create_ssl_context(config: ProxyConfig):
    """Return the httpx ``verify`` value for the configured trust policy."""
    if config.insecure:
        return False
    return ssl.create_default_context(cadata=config.ca_data)


def create_async_client(config: ProxyConfig) -> httpx.AsyncClient:
    """Create the shared httpx AsyncClient used for every upstream call."""
    # No timeouts: long list calls are buffered in full by the transform layers
    timeout = httpx.Timeout(timeout=None)
    limits = httpx.Limits(
        max_connections=200,
        max_keepalive_connections=100,
    )
    return httpx.AsyncClient(
        verify=create_ssl_context(config),
        timeout=timeout,
        limits=limits,
        follow_redirects=False,
    )


class UpstreamProxy(Handler):
    """Forwards a request to the upstream host and streams back its response."""

    def __init__(self, config: ProxyConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.client = client or create_async_client(config)
        self.upstream_netloc = urlsplit(config.upstream_url).netloc

    def build_target_url(self, request: ProxyRequest) -> str:
        target_url = self.config.upstream_url.rstrip('/') + request.path
        if request.query:
            target_url = f'{target_url}?{request.query}'
        return target_url

    def build_target_headers(self, request: ProxyRequest) -> httpx.Headers:
        """Copy client headers minus hop-by-hop ones and point Host at the upstream."""
        headers = httpx.Headers([
            (key, value)
            for key, value in request.headers.multi_items()
            if key.lower() not in HOP_BY_HOP_HEADERS and key.lower() not in RECOMPUTED_REQUEST_HEADERS
        ])

        headers['Host'] = self.upstream_netloc
        if request.client_host:
            forwarded_for = headers.get('X-Forwarded-For')
            if forwarded_for:
                headers['X-Forwarded-For'] = f'{forwarded_for}, {request.client_host}'
            else:
                headers['X-Forwarded-For'] = request.client_host
        return headers

    async def handle(self, request: ProxyRequest) -> ProxyResponse:
        target_url = self.build_target_url(request)

        request_out = self.client.build_request(
            method=request.method,
            url=target_url,
            headers=self.build_target_headers(request),
            content=request.body if request.body else None,
        )

        try:
            response = await self.client.send(request_out, stream=True)
        except httpx.RequestError as exc:
            if isinstance(exc, httpx.ConnectTimeout):
                error_msg = 'Connection timed out'
            elif isinstance(exc, httpx.ReadTimeout):
                error_msg = 'Read timed out'
            elif isinstance(exc, httpx.ConnectError):
                error_msg = 'Connection error'
            else:
                error_msg = 'Request failed'

            logger.error('%s %s failed: %s: %s', request.method, target_url, error_msg, exc)
            body = json.dumps({'error': error_msg, 'detail': str(exc)}).encode('utf-8')
            return ProxyResponse.buffered(
                502,
                headers={'Content-Type': 'application/json'},
                body=body,
            )

        headers = [
            (key, value)
            for key, value in response.headers.multi_items()
            if key.lower() not in HOP_BY_HOP_HEADERS
        ]
        return ProxyResponse(
            response.status_code,
            headers=headers,
            stream=response.aiter_raw(),
            on_close=response.aclose,
        )
