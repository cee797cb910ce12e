"""State enums and value types shared by the console session."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ConnectionState(Enum):
    """Transport and authentication phase of the local session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    RECONNECTING = "reconnecting"


class ServerState(Enum):
    """Lifecycle phase of the remote server as reported by the daemon."""

    OFFLINE = "offline"
    INSTALLING = "installing"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class PowerAction(Enum):
    """Power actions understood by the daemon's ``set state`` event."""

    START = "start"
    STOP = "stop"
    RESTART = "restart"
    KILL = "kill"


@dataclass(frozen=True, slots=True)
class NetworkUsage:
    """Cumulative network counters of the server container."""

    rx_bytes: int = 0
    tx_bytes: int = 0


@dataclass(frozen=True, slots=True)
class ResourceSnapshot:
    """Resource usage reported by a single ``stats`` event."""

    cpu_absolute: float = 0.0
    memory_bytes: int = 0
    memory_limit_bytes: int = 0
    disk_bytes: int = 0
    uptime: int = 0
    network: NetworkUsage = field(default_factory=NetworkUsage)
    state: str = ServerState.OFFLINE.value


@dataclass(frozen=True, slots=True)
class PteroCredential:
    """Short-lived websocket token and the socket URL it is valid for."""

    token: str
    socket_url: str

    def __repr__(self) -> str:
        return f"PteroCredential(token='***', socket_url={self.socket_url!r})"
