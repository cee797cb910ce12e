"""Protocol helpers for the Pterodactyl daemon websocket.

Every frame exchanged with the daemon is a JSON object of the form
``{"event": "<name>", "args": [...]}``. Structured payloads (resource
usage) travel JSON-encoded inside ``args[0]``.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Final

from .errors import PteroDecodeError
from .models import NetworkUsage, ResourceSnapshot, ServerState

# Outbound events
EVENT_AUTH: Final = "auth"
EVENT_SEND_LOGS: Final = "send logs"
EVENT_SEND_STATS: Final = "send stats"
EVENT_SEND_COMMAND: Final = "send command"
EVENT_SET_STATE: Final = "set state"

# Inbound events
EVENT_AUTH_SUCCESS: Final = "auth success"
EVENT_JWT_ERROR: Final = "jwt error"
EVENT_TOKEN_EXPIRING: Final = "token expiring"
EVENT_TOKEN_EXPIRED: Final = "token expired"
EVENT_STATS: Final = "stats"
EVENT_STATUS: Final = "status"
EVENT_CONSOLE_OUTPUT: Final = "console output"
EVENT_INSTALL_OUTPUT: Final = "install output"
EVENT_DAEMON_MESSAGE: Final = "daemon message"
EVENT_INSTALL_STARTED: Final = "install started"
EVENT_INSTALL_COMPLETED: Final = "install completed"

OUTPUT_EVENTS: Final = frozenset(
    {EVENT_CONSOLE_OUTPUT, EVENT_INSTALL_OUTPUT, EVENT_DAEMON_MESSAGE}
)
_STATE_ARG_EVENTS: Final = frozenset({EVENT_STATS, EVENT_STATUS})

_SERVER_STATES: Final = {state.value: state for state in ServerState}


@dataclass(frozen=True, slots=True)
class WireEvent:
    """Protocol envelope, the only shape placed on the wire."""

    event: str
    args: tuple[str | None, ...] = ()


def encode_event(event: WireEvent) -> str:
    """Serialize a WireEvent into a text frame."""
    return json.dumps({"event": event.event, "args": list(event.args)})


def decode_event(raw: str) -> WireEvent:
    """Parse a text frame into a WireEvent.

    Args:
        raw: Text frame received from the daemon.

    Returns:
        The decoded envelope.

    Raises:
        PteroDecodeError: The frame is empty, not JSON, not an envelope, or
            carries the wrong arguments for its event kind.
    """
    if not raw or not raw.strip():
        raise PteroDecodeError("Empty frame")

    try:
        payload = json.loads(raw)
    except ValueError as err:
        raise PteroDecodeError(f"Frame is not valid JSON: {err}") from err
    except RecursionError as err:
        raise PteroDecodeError("Frame is nested too deeply") from err

    if not isinstance(payload, dict):
        raise PteroDecodeError("Frame is not a JSON object")

    name = payload.get("event")
    if not isinstance(name, str):
        raise PteroDecodeError("Frame has no event name")

    raw_args = payload.get("args")
    if raw_args is None:
        raw_args = []
    if not isinstance(raw_args, list):
        raise PteroDecodeError(f"Arguments of '{name}' are not a list")
    for idx, arg in enumerate(raw_args):
        if arg is not None and not isinstance(arg, str):
            raise PteroDecodeError(
                f"Argument {idx} of '{name}' must be a string, "
                f"got {type(arg).__name__}"
            )

    args: tuple[str | None, ...] = tuple(raw_args)
    _validate_arity(name, args)
    return WireEvent(name, args)


def _validate_arity(name: str, args: tuple[str | None, ...]) -> None:
    if name in _STATE_ARG_EVENTS:
        if not args or args[0] is None:
            raise PteroDecodeError(f"'{name}' requires a string argument")
    elif name in OUTPUT_EVENTS:
        if any(arg is None for arg in args):
            raise PteroDecodeError(f"'{name}' lines must be strings")


def build_auth(token: str) -> WireEvent:
    """Create the authentication event carrying a websocket token."""
    return WireEvent(EVENT_AUTH, (token,))


def build_intents() -> tuple[WireEvent, WireEvent]:
    """Create the log and stats subscription events sent after auth."""
    return (
        WireEvent(EVENT_SEND_LOGS, (None,)),
        WireEvent(EVENT_SEND_STATS, (None,)),
    )


def build_command(command: str) -> WireEvent:
    """Create a console command event."""
    return WireEvent(EVENT_SEND_COMMAND, (command,))


def build_set_state(action: str) -> WireEvent:
    """Create a power action event. The daemon validates the action."""
    return WireEvent(EVENT_SET_STATE, (action,))


def parse_server_state(raw: str | None) -> ServerState:
    """Map a daemon state string to ServerState.

    Unknown strings map to OFFLINE since the daemon vocabulary may grow.
    """
    if raw is None:
        return ServerState.OFFLINE
    return _SERVER_STATES.get(raw.strip().lower(), ServerState.OFFLINE)


def parse_resource_snapshot(raw: str) -> ResourceSnapshot:
    """Decode the JSON-encoded ``stats`` payload into a ResourceSnapshot.

    Args:
        raw: Value of ``args[0]`` from a ``stats`` event.

    Returns:
        Immutable snapshot. Missing numeric fields default to zero.

    Raises:
        PteroDecodeError: Payload is not a JSON object or a field has the
            wrong type.
    """
    try:
        data = json.loads(raw)
    except ValueError as err:
        raise PteroDecodeError(f"Stats payload is not valid JSON: {err}") from err
    except RecursionError as err:
        raise PteroDecodeError("Stats payload is nested too deeply") from err

    if not isinstance(data, dict):
        raise PteroDecodeError("Stats payload is not a JSON object")

    network = data.get("network")
    if network is None:
        network = {}
    if not isinstance(network, Mapping):
        raise PteroDecodeError("Stats 'network' is not an object")

    state = data.get("state", ServerState.OFFLINE.value)
    if not isinstance(state, str):
        raise PteroDecodeError("Stats 'state' is not a string")

    cpu = data.get("cpu_absolute", data.get("cpu", 0))

    return ResourceSnapshot(
        cpu_absolute=float(_number(cpu, "cpu_absolute")),
        memory_bytes=int(_number(data.get("memory_bytes", 0), "memory_bytes")),
        memory_limit_bytes=int(
            _number(data.get("memory_limit_bytes", 0), "memory_limit_bytes")
        ),
        disk_bytes=int(_number(data.get("disk_bytes", 0), "disk_bytes")),
        uptime=int(_number(data.get("uptime", 0), "uptime")),
        network=NetworkUsage(
            rx_bytes=int(_number(network.get("rx_bytes", 0), "network.rx_bytes")),
            tx_bytes=int(_number(network.get("tx_bytes", 0), "network.tx_bytes")),
        ),
        state=state,
    )


def _number(value: Any, name: str) -> int | float:
    # bool is an int subclass but never a valid counter
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PteroDecodeError(
            f"Stats '{name}' must be a number, got {type(value).__name__}"
        )
    # json accepts NaN and Infinity literals
    if not math.isfinite(value):
        raise PteroDecodeError(f"Stats '{name}' must be finite, got {value}")
    return value
