"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import pytest
from websockets.exceptions import ConnectionClosedError

from codegen_session.config import SessionConfig


Responder = Callable[["FakeWebSocket", dict[str, Any]], None]


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, url: str, responder: Responder | None = None) -> None:
        self.url = url
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.fail_sends = False
        self.responder = responder
        self._incoming: asyncio.Queue[str | bytes | None] = asyncio.Queue()

    async def send(self, data: str) -> None:
        if self.closed or self.fail_sends:
            raise ConnectionClosedError(None, None)
        message = json.loads(data)
        self.sent.append(message)
        if self.responder is not None:
            self.responder(self, message)

    def push(self, payload: dict[str, Any] | str | bytes) -> None:
        """Deliver a frame from the server."""
        if isinstance(payload, dict):
            payload = json.dumps(payload)
        self._incoming.put_nowait(payload)

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self._incoming.put_nowait(None)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def __aiter__(self) -> FakeWebSocket:
        return self

    async def __anext__(self) -> str | bytes:
        item = await self._incoming.get()
        if item is None:
            self.closed = True
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Replacement for websockets.connect that hands out FakeWebSockets."""

    def __init__(self) -> None:
        self.sockets: list[FakeWebSocket] = []
        self.urls: list[str] = []
        self.kwargs: dict[str, Any] = {}
        self.fail = False
        self.responder: Responder | None = None

    @property
    def calls(self) -> int:
        return len(self.urls)

    @property
    def latest(self) -> FakeWebSocket:
        return self.sockets[-1]

    async def __call__(self, url: str, **kwargs: Any) -> FakeWebSocket:
        self.urls.append(url)
        self.kwargs = kwargs
        if self.fail:
            raise OSError("connection refused")
        ws = FakeWebSocket(url, self.responder)
        self.sockets.append(ws)
        return ws


@pytest.fixture
def fake_connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def token_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def token_client(token_requests: list[httpx.Request]) -> httpx.AsyncClient:
    """HTTP client whose token endpoint always issues ``tok_123``."""

    def handler(request: httpx.Request) -> httpx.Response:
        token_requests.append(request)
        return httpx.Response(200, json={"token": "tok_123"})

    return httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="http://test",
        cookies={"accessToken": "cookie_abc"},
    )


@pytest.fixture
def fast_config() -> SessionConfig:
    """Config with tiny reconnect delays so backoff tests finish quickly."""
    return SessionConfig(
        base_url="http://test",
        reconnect_delay=0.01,
        max_reconnect_delay=0.05,
        max_reconnect_attempts=3,
        handshake_timeout=0.5,
    )


@pytest.fixture
def wait_until() -> Callable[[Callable[[], bool]], Awaitable[None]]:
    """Poll a condition on the event loop until it holds."""

    async def wait(condition: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.005)

    return wait
