"""Self-healing console client for Pterodactyl game servers."""

__version__ = "0.1.0"

from .errors import (
    PteroClientError,
    PteroConnectionError,
    PteroDecodeError,
    PteroHandshakeError,
    PteroResponseError,
    PteroTimeout,
)
from .http import PteroHttpClient
from .models import (
    ConnectionState,
    NetworkUsage,
    PowerAction,
    PteroCredential,
    ResourceSnapshot,
    ServerState,
)
from .protocol import (
    WireEvent,
    decode_event,
    encode_event,
    parse_resource_snapshot,
    parse_server_state,
)
from .session import PteroConsoleSession, TokenSource
from .ws import connect_websocket
from .ws_client import PteroWsClient, PteroWsMessage, PteroWsMessageType

__all__ = [
    "ConnectionState",
    "NetworkUsage",
    "PowerAction",
    "PteroClientError",
    "PteroConnectionError",
    "PteroConsoleSession",
    "PteroCredential",
    "PteroDecodeError",
    "PteroHandshakeError",
    "PteroHttpClient",
    "PteroResponseError",
    "PteroTimeout",
    "PteroWsClient",
    "PteroWsMessage",
    "PteroWsMessageType",
    "ResourceSnapshot",
    "ServerState",
    "TokenSource",
    "WireEvent",
    "__version__",
    "connect_websocket",
    "decode_event",
    "encode_event",
    "parse_resource_snapshot",
    "parse_server_state",
]
