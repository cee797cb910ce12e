"""Pytest configuration and fixtures for ptero_console tests."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from ptero_console import (
    ConnectionState,
    PteroConnectionError,
    PteroConsoleSession,
    PteroCredential,
    PteroWsMessage,
    PteroWsMessageType,
)

SOCKET_URL = "wss://node.example.com:8080/api/servers/abc/ws"


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


def create_mock_response(
    status: int = 200,
    json_data: Any = None,
    text_data: str | None = None,
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        json_data: Data to return from json() call
        text_data: Data to return from text() call

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status

    if json_data is not None:
        response.json.return_value = json_data
    if text_data is not None:
        response.text.return_value = text_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


async def wait_until(
    predicate: Callable[[], bool], *, timeout: float = 2.0
) -> None:
    """Yield to the loop until predicate holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.005)


class FakeTransport:
    """In-memory stand-in for PteroWsClient."""

    def __init__(self, *, connect_error: Exception | None = None) -> None:
        self.url: str | None = None
        self.headers: dict[str, str] = {}
        self.sent: list[str] = []
        self.connected = False
        self.closed = False
        self.fail_sends = False
        self._connect_error = connect_error
        self._in_send = False
        self._inbox: asyncio.Queue[PteroWsMessage] = asyncio.Queue()

    async def connect(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        ping_interval: int | None = 20,
        timeout: float = 15.0,
    ) -> None:
        self.url = url
        self.headers = dict(headers or {})
        if self._connect_error is not None:
            raise self._connect_error
        self.connected = True

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(PteroWsMessage(PteroWsMessageType.CLOSED))

    async def send_text(self, text: str) -> None:
        if not self.connected or self.closed or self.fail_sends:
            raise PteroConnectionError("WebSocket is not connected")
        assert not self._in_send, "concurrent writes on one websocket"
        self._in_send = True
        try:
            await asyncio.sleep(0)
            self.sent.append(text)
        finally:
            self._in_send = False

    def push(self, event: str, *args: str | None) -> None:
        """Queue a daemon event for the session to receive."""
        self.push_raw(json.dumps({"event": event, "args": list(args)}))

    def push_raw(self, text: str) -> None:
        self._inbox.put_nowait(PteroWsMessage(PteroWsMessageType.TEXT, text))

    def drop(self) -> None:
        """Simulate the daemon closing the connection."""
        self._inbox.put_nowait(PteroWsMessage(PteroWsMessageType.CLOSED))

    @property
    def sent_events(self) -> list[dict[str, Any]]:
        return [json.loads(text) for text in self.sent]

    def __aiter__(self):
        return self._iter_messages()

    async def _iter_messages(self):
        while True:
            msg = await self._inbox.get()
            yield msg
            if msg.type is not PteroWsMessageType.TEXT:
                return


class TransportFactory:
    """Creates FakeTransports and remembers them in order."""

    def __init__(self) -> None:
        self.transports: list[FakeTransport] = []
        self.connect_errors: list[Exception] = []

    def __call__(self) -> FakeTransport:
        error = self.connect_errors.pop(0) if self.connect_errors else None
        transport = FakeTransport(connect_error=error)
        self.transports.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.transports[-1]


class FakeTokenSource:
    """Hands out T1, T2, ... and raises queued failures first."""

    def __init__(self, socket_url: str = SOCKET_URL) -> None:
        self.socket_url = socket_url
        self.calls = 0
        self.failures: list[Exception] = []
        self.gate: asyncio.Event | None = None
        self._issued = 0

    async def __call__(self) -> PteroCredential:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            raise self.failures.pop(0)
        self._issued += 1
        return PteroCredential(token=f"T{self._issued}", socket_url=self.socket_url)


class EventRecorder:
    """Records every session notification in delivery order."""

    def __init__(self, session: PteroConsoleSession) -> None:
        self.events: list[tuple[str, Any]] = []
        session.on_connection_state_changed(
            lambda state: self.events.append(("connection", state))
        )
        session.on_server_state_changed(
            lambda state: self.events.append(("server", state))
        )
        session.on_resources_changed(
            lambda snapshot: self.events.append(("resources", snapshot))
        )
        session.on_output(lambda line: self.events.append(("output", line)))
        session.on_diagnostic(lambda message: self.events.append(("diagnostic", message)))

    def of(self, kind: str) -> list[Any]:
        return [value for k, value in self.events if k == kind]

    @property
    def connection_states(self) -> list[ConnectionState]:
        return self.of("connection")


@pytest.fixture
def transport_factory() -> TransportFactory:
    return TransportFactory()


@pytest.fixture
def token_source() -> FakeTokenSource:
    return FakeTokenSource()


@pytest.fixture
async def console(transport_factory: TransportFactory, token_source: FakeTokenSource):
    """Session wired to fake transport and token source; closed on teardown."""
    session = PteroConsoleSession(
        "abc",
        "https://panel.example.com",
        token_source,
        transport_factory=transport_factory,
        retry_base_delay=0,
        shutdown_grace_period=0.05,
    )
    yield session
    await session.close()


@pytest.fixture
def recorder(console: PteroConsoleSession) -> EventRecorder:
    return EventRecorder(console)
