#!/usr/bin/env python3
"""Error types raised by the proxy and the JSON error envelope sent to clients."""
import json

from .handler import ProxyResponse


class ProxyError(Exception):
    """Base class for every error raised while handling a proxied request."""


class DecodeError(ProxyError):
    """A body could not be decoded as a JSON object."""


class GroupFormatError(ProxyError):
    """An apiVersion value could not be parsed as a group-version identifier."""


class DiscoveryError(ProxyError):
    """The upstream discovery listing could not be decoded or re-encoded."""


class ConfigError(Exception):
    """Startup configuration is missing or unreadable."""


def error_response(exc: Exception, status_code: int = 500) -> ProxyResponse:
    """Build the ``{"error": "<message>"}`` envelope for a failed request."""
    body = json.dumps({'error': str(exc)}, ensure_ascii=False).encode('utf-8')
    return ProxyResponse.buffered(
        status_code=status_code,
        headers={'Content-Type': 'application/json'},
        body=body,
    )
