import json
from typing import Callable, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from groupproxy.config.settings import ProxyConfig
from groupproxy.core.proxy_service import create_app

TEST_UPSTREAM_URL = "https://kube.example:6443"
TEST_TOKEN = "proxy-token"


class ChunkedBody(httpx.AsyncByteStream):
    """An unread response body, delivered in chunks like a live connection."""

    def __init__(self, *chunks: bytes):
        self.chunks = chunks
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk

    async def aclose(self):
        self.closed = True


def upstream_response(
    status_code: int = 200,
    json_body=None,
    content: Optional[bytes] = None,
    headers: Optional[dict] = None,
) -> httpx.Response:
    """Build a response whose body has not been read yet."""
    response_headers = dict(headers or {})
    if json_body is not None:
        content = json.dumps(json_body).encode("utf-8")
        response_headers.setdefault("Content-Type", "application/json")
    content = content or b""
    # Split the body so readers have to join chunks
    middle = len(content) // 2
    return httpx.Response(
        status_code,
        headers=response_headers,
        stream=ChunkedBody(content[:middle], content[middle:]),
    )


class UpstreamSpy:
    """In-process upstream built on httpx.MockTransport.

    Records every request that reaches it and answers with a configurable
    response (JSON ``{}`` by default). Responses are streamed, as they are
    from a real upstream connection.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self._responder: Callable[[httpx.Request], httpx.Response] = (
            lambda request: upstream_response(200, json_body={})
        )

    def respond_with(
        self,
        status_code: int = 200,
        json_body=None,
        content: Optional[bytes] = None,
        headers: Optional[dict] = None,
    ):
        def responder(request: httpx.Request) -> httpx.Response:
            return upstream_response(status_code, json_body=json_body, content=content, headers=headers)

        self._responder = responder

    def respond_using(self, responder: Callable[[httpx.Request], httpx.Response]):
        self._responder = responder

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responder(request)

    @property
    def last_request(self) -> httpx.Request:
        assert self.requests, "upstream was never called"
        return self.requests[-1]

    def last_json(self):
        return json.loads(self.last_request.content)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def proxy_config():
    return ProxyConfig(upstream_url=TEST_UPSTREAM_URL, token=TEST_TOKEN, insecure=True)


@pytest.fixture
def upstream():
    return UpstreamSpy()


@pytest.fixture
def test_client(proxy_config, upstream):
    app = create_app(proxy_config, upstream.client())
    return TestClient(app)
