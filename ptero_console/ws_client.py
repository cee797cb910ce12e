"""WebSocket client wrapper for the Pterodactyl daemon."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed

from .errors import PteroConnectionError
from .ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class PteroWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class PteroWsMessage:
    """Normalized WebSocket message payload."""

    type: PteroWsMessageType
    data: str | None = None


class PteroWsClient:
    """Wrapper around websockets library for the daemon console socket."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None

    async def connect(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        ping_interval: int | None = 20,
        timeout: float = 15.0,
    ) -> None:
        """Connect to the daemon websocket."""
        self._ws = await connect_websocket(
            url,
            headers=headers,
            ping_interval=ping_interval,
            timeout=timeout,
        )

    async def close(self) -> None:
        """Close the websocket connection."""
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()

    async def send_text(self, text: str) -> None:
        """Send a text frame to the websocket."""
        if self._ws is None:
            raise PteroConnectionError("WebSocket is not connected")
        try:
            await self._ws.send(text)
        except ConnectionClosed as err:
            raise PteroConnectionError("WebSocket closed while sending") from err

    def __aiter__(self) -> AsyncIterator[PteroWsMessage]:
        if self._ws is None:
            raise PteroConnectionError("WebSocket is not connected")
        return self._iter_messages(self._ws)

    async def _iter_messages(
        self, ws: ClientConnection
    ) -> AsyncIterator[PteroWsMessage]:
        try:
            async for msg in ws:
                normalized = self._normalize_message(msg)
                if normalized is None:
                    continue
                yield normalized
        except ConnectionClosed:
            yield PteroWsMessage(type=PteroWsMessageType.CLOSED)
        except Exception:
            yield PteroWsMessage(type=PteroWsMessageType.ERROR)
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield PteroWsMessage(type=PteroWsMessageType.CLOSED)

    @staticmethod
    def _normalize_message(msg: Any) -> PteroWsMessage | None:
        """Normalize received frames into PteroWsMessage."""
        if isinstance(msg, (bytes, bytearray, memoryview)):
            return None
        return PteroWsMessage(PteroWsMessageType.TEXT, str(msg))
