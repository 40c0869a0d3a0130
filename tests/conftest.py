# tests/conftest.py
from typing import Callable, Union

import httpx
import pytest

from ui_gateway.core.config import Settings
from ui_gateway.main import create_app

ROUTER_CONFIG = {
    "ssl.external.enabled": "false",
    "router.server.address": "router.test",
    "router.server.port": "11015",
    "router.ssl.server.port": "10443",
    "market.base.url": "https://market.test/v2",
}

Answer = Union[httpx.Response, Callable[[httpx.Request, bytes], httpx.Response]]


class ChunkStream(httpx.AsyncByteStream):
    """Response body delivered the way a network transport does, unread until iterated."""

    def __init__(self, *chunks: bytes):
        self._chunks = chunks

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk

    async def aclose(self) -> None:
        pass


def streamed(response: httpx.Response) -> httpx.Response:
    """Fresh copy of an already-read response whose body has to be streamed again."""
    if not response.is_stream_consumed:
        return response
    return httpx.Response(
        response.status_code,
        headers=response.headers.multi_items(),
        stream=ChunkStream(response.content),
    )


class FailingStream(httpx.AsyncByteStream):
    """Response body that yields some chunks, then dies like a reset connection."""

    def __init__(self, *chunks: bytes):
        self._chunks = chunks

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk
        raise httpx.ReadError("connection reset by peer")

    async def aclose(self) -> None:
        pass


class Backend:
    """Stand-in for the router and market.

    Records every request the gateway sends out and answers per path, either
    with a fixed response, a callable, or by raising an httpx exception.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.bodies: dict[str, bytes] = {}
        self._answers: dict[str, object] = {}

    def on(self, path: str, answer: Union[Answer, Exception]) -> None:
        self._answers[path] = answer

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = await request.aread()
        self.bodies[request.url.path] = body
        answer = self._answers.get(request.url.path)
        if answer is None:
            return httpx.Response(404, text="no such route")
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, httpx.Response):
            return streamed(answer)
        return streamed(answer(request, body))

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def backend() -> Backend:
    return Backend()


@pytest.fixture
def settings() -> Settings:
    return Settings(cdap_config=ROUTER_CONFIG, auth_server_url="http://auth.test/token")


@pytest.fixture
def gateway_for(backend):
    """Factory: an in-process client talking to a gateway built from ``settings``."""

    def build(settings: Settings):
        return _Gateway(create_app(settings, transport=backend.transport))

    return build


@pytest.fixture
async def gateway(gateway_for, settings):
    async with gateway_for(settings) as client:
        yield client


class _Gateway:
    def __init__(self, app):
        self.app = app

    async def __aenter__(self) -> httpx.AsyncClient:
        self._lifespan = self.app.router.lifespan_context(self.app)
        await self._lifespan.__aenter__()
        transport = httpx.ASGITransport(app=self.app)
        self._client = httpx.AsyncClient(transport=transport, base_url="http://gateway.local")
        return self._client

    async def __aexit__(self, *exc_info):
        await self._client.aclose()
        await self._lifespan.__aexit__(*exc_info)
