#!/usr/bin/env python3
"""Request/response model and the ordered handler pipeline used by every route.

A route is served by a :class:`Pipeline`: an explicit list of middleware
layers in front of one terminal :class:`Handler` (normally the upstream
proxy). Each layer receives the request plus a ``call_next`` coroutine for
the rest of the pipeline, so layers can be tested in isolation by passing a
stub ``call_next``.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from functools import partial
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Sequence

import httpx


@dataclass
class ProxyRequest:
    """An inbound request as seen by the pipeline.

    Layers never mutate a request in place; they derive a new one with
    :meth:`evolve` so outer layers keep seeing the request they received.
    """
    method: str
    path: str
    query: str = ''
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: bytes = b''
    client_host: Optional[str] = None

    def evolve(self, **changes) -> 'ProxyRequest':
        """Return a copy of this request with ``changes`` applied."""
        if 'headers' not in changes:
            changes['headers'] = self.headers.copy()
        return replace(self, **changes)


class ProxyResponse:
    """A response flowing back through the pipeline.

    A response is either *buffered* (``body`` holds every byte) or
    *streaming* (bytes are pulled from an async iterator and ``body`` is
    ``None`` until :meth:`read` drains it).
    """

    def __init__(
        self,
        status_code: int,
        headers=None,
        body: Optional[bytes] = None,
        stream: Optional[AsyncIterator[bytes]] = None,
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.status_code = status_code
        self.headers = httpx.Headers(headers)
        self.body = body
        self._stream = stream
        self._on_close = on_close

    @classmethod
    def buffered(cls, status_code: int, headers=None, body: bytes = b'') -> 'ProxyResponse':
        """Create a fully buffered response with a matching Content-Length."""
        response = cls(status_code, headers=headers, body=body)
        response.headers['Content-Length'] = str(len(body))
        return response

    @property
    def is_streaming(self) -> bool:
        return self.body is None

    async def read(self) -> bytes:
        """Drain the stream into memory and return the complete body.

        This is the buffering step used by layers that rewrite bodies. The
        whole body is held in memory; no size cap is applied.
        """
        if self.body is None:
            chunks: List[bytes] = []
            try:
                if self._stream is not None:
                    async for chunk in self._stream:
                        chunks.append(chunk)
            finally:
                await self.aclose()
            self.body = b''.join(chunks)
        return self.body

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield the body, streaming it when it has not been buffered."""
        if self.body is not None:
            if self.body:
                yield self.body
            return

        try:
            if self._stream is not None:
                async for chunk in self._stream:
                    yield chunk
        finally:
            await self.aclose()

    async def aclose(self):
        """Release the underlying upstream connection, at most once."""
        if self._on_close is not None:
            on_close, self._on_close = self._on_close, None
            await on_close()


CallNext = Callable[[ProxyRequest], Awaitable[ProxyResponse]]


class Handler(ABC):
    """Anything that turns a request into a response."""

    @abstractmethod
    async def handle(self, request: ProxyRequest) -> ProxyResponse:
        pass


class Middleware(ABC):
    """A pipeline layer wrapping the rest of the pipeline."""

    @abstractmethod
    async def dispatch(self, request: ProxyRequest, call_next: CallNext) -> ProxyResponse:
        pass


class Pipeline(Handler):
    """Runs ``layers`` in order, outermost first, then ``terminal``."""

    def __init__(self, layers: Sequence[Middleware], terminal: Handler):
        self.layers = list(layers)
        self.terminal = terminal

    async def handle(self, request: ProxyRequest) -> ProxyResponse:
        return await self._call(0, request)

    async def _call(self, index: int, request: ProxyRequest) -> ProxyResponse:
        if index == len(self.layers):
            return await self.terminal.handle(request)
        return await self.layers[index].dispatch(request, partial(self._call, index + 1))

    def __repr__(self) -> str:
        names = [type(layer).__name__ for layer in self.layers]
        names.append(type(self.terminal).__name__)
        return '<Pipeline %s>' % ' -> '.join(names)
