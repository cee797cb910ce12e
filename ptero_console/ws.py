"""WebSocket helpers for the Pterodactyl daemon transport."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

from .errors import (
    PteroConnectionError,
    PteroHandshakeError,
    PteroTimeout,
)


async def connect_websocket(
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    ping_interval: int | None = 20,
    timeout: float = 15.0,
) -> ClientConnection:
    """Connect to a daemon WebSocket endpoint.

    Args:
        url: Socket URL handed out by the panel (wss://node:8080/api/servers/<id>/ws)
        headers: Extra handshake headers (Origin, Authorization)
        ping_interval: Interval for keepalive ping frames
        timeout: Connection timeout
    """
    try:
        return await asyncio.wait_for(
            websockets.connect(
                url,
                additional_headers=dict(headers or {}),
                ping_interval=ping_interval,
                close_timeout=5,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise PteroTimeout("WebSocket connection timed out") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise PteroHandshakeError("WebSocket handshake failed") from err
    except (OSError, WebSocketException) as err:
        raise PteroConnectionError("WebSocket connection failed") from err
