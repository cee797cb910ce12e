"""Client error types for Pterodactyl console interactions."""

from __future__ import annotations


class PteroClientError(Exception):
    """Base error for Pterodactyl console client failures."""


class PteroTimeout(PteroClientError):
    """Timeout while communicating with the panel or daemon."""


class PteroConnectionError(PteroClientError):
    """Network connection to the panel or daemon failed."""


class PteroHandshakeError(PteroClientError):
    """WebSocket handshake failed."""


class PteroResponseError(PteroClientError):
    """HTTP response error from the panel."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status


class PteroDecodeError(PteroClientError):
    """A WebSocket frame or payload could not be decoded."""
