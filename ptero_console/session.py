"""Self-healing console session for a single Pterodactyl server.

This module owns the daemon websocket for one server. It handles:
- Credential acquisition and websocket authentication
- In-place token refresh when the daemon reports an expiring token
- Reconnection with back-off after transport or auth failures
- Translating daemon events into typed callbacks

All state changes and callbacks happen on one background task, so
callbacks for a connection arrive in the order their events were received.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar
from urllib.parse import urlsplit

from .errors import PteroClientError, PteroConnectionError, PteroDecodeError
from .http import PteroHttpClient
from .models import (
    ConnectionState,
    PowerAction,
    PteroCredential,
    ResourceSnapshot,
    ServerState,
)
from .protocol import (
    EVENT_AUTH_SUCCESS,
    EVENT_INSTALL_COMPLETED,
    EVENT_INSTALL_STARTED,
    EVENT_JWT_ERROR,
    EVENT_STATS,
    EVENT_STATUS,
    EVENT_TOKEN_EXPIRED,
    EVENT_TOKEN_EXPIRING,
    OUTPUT_EVENTS,
    WireEvent,
    build_auth,
    build_command,
    build_intents,
    build_set_state,
    decode_event,
    encode_event,
    parse_resource_snapshot,
    parse_server_state,
)
from .ws_client import PteroWsClient, PteroWsMessageType

if TYPE_CHECKING:
    import aiohttp

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")

TokenSource = Callable[[], Awaitable[PteroCredential]]

CLOSE_TIMEOUT = 2.0


class PteroConsoleSession:
    """Console session manager for one server's daemon websocket.

    Usage:
        session = PteroConsoleSession.from_client_key(
            http_session, "https://panel.example.com", "ptlc_xxx", "1a2b3c4d"
        )
        session.on_output(print)
        session.on_server_state_changed(my_state_handler)
        await session.connect()
        await session.send_command("say hello")
        await session.close()
    """

    def __init__(
        self,
        server_id: str,
        panel_url: str,
        token_source: TokenSource,
        *,
        transport_factory: Callable[[], PteroWsClient] = PteroWsClient,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
        shutdown_grace_period: float = 1.0,
        connect_timeout: float = 15.0,
        ping_interval: int | None = 20,
    ):
        """Initialize session.

        Args:
            server_id: Server identifier, used for logging
            panel_url: Panel base URL, used to derive the Origin header
            token_source: Async callable returning a fresh websocket credential
            transport_factory: Creates the websocket client for each attempt
            retry_base_delay: Base retry delay after a failed attempt (seconds)
            retry_max_delay: Maximum retry delay (seconds)
            shutdown_grace_period: Time close() waits for the listener (seconds)
            connect_timeout: Websocket connect timeout (seconds)
            ping_interval: Keepalive ping interval, None disables pings
        """
        if "://" not in panel_url:
            panel_url = f"https://{panel_url}"

        self.server_id = server_id
        self.panel_url = panel_url.rstrip("/")

        self._token_source = token_source
        self._transport_factory = transport_factory
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        self._shutdown_grace_period = shutdown_grace_period
        self._connect_timeout = connect_timeout
        self._ping_interval = ping_interval

        # Connection state
        self._ws: PteroWsClient | None = None
        self._connection_state = ConnectionState.DISCONNECTED
        self._run_task: asyncio.Task[None] | None = None
        self._send_lock = asyncio.Lock()
        self._shutdown_requested = False
        self._shutdown_event = asyncio.Event()
        self._failed_attempts = 0
        self._attempt_authenticated = False

        # Server state
        self._server_state = ServerState.OFFLINE
        self._resources = ResourceSnapshot()

        # Callbacks
        self._connection_state_callback: Callable[[ConnectionState], None] | None = (
            None
        )
        self._server_state_callback: Callable[[ServerState], None] | None = None
        self._resources_callback: Callable[[ResourceSnapshot], None] | None = None
        self._output_callback: Callable[[str], None] | None = None
        self._diagnostic_callback: Callable[[str], None] | None = None

    @classmethod
    def from_client_key(
        cls,
        http_session: aiohttp.ClientSession,
        panel_url: str,
        client_key: str,
        server_id: str,
        **kwargs: Any,
    ) -> PteroConsoleSession:
        """Create a session that fetches credentials from the panel client API."""
        client = PteroHttpClient(http_session, panel_url, client_key)
        return cls(
            server_id,
            client.panel_url,
            functools.partial(client.fetch_websocket_credential, server_id),
            **kwargs,
        )

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    async def connect(self) -> bool:
        """Start the background connection loop.

        Returns:
            True if the loop was started, False if the session is closed or
            already running
        """
        if self._shutdown_requested:
            _LOGGER.debug("[%s] Connect refused: session closed", self.server_id)
            return False

        if self._run_task is not None and not self._run_task.done():
            _LOGGER.debug("[%s] Connect ignored: already running", self.server_id)
            return False

        self._run_task = asyncio.create_task(
            self._run(), name=f"ptero-console-{self.server_id}"
        )
        return True

    async def close(self) -> None:
        """Stop the session permanently.

        The listener gets a grace period to notice the request. After that
        the transport is closed from here, and as a last resort the
        background task is cancelled.
        """
        _LOGGER.info("[%s] Closing session", self.server_id)
        self._shutdown_requested = True
        self._shutdown_event.set()

        task = self._run_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            done, _ = await asyncio.wait({task}, timeout=self._shutdown_grace_period)
            if not done:
                _LOGGER.debug(
                    "[%s] Listener still running, closing transport", self.server_id
                )
                await self._close_transport()
                done, _ = await asyncio.wait(
                    {task}, timeout=self._shutdown_grace_period
                )
            if not done:
                _LOGGER.warning("[%s] Listener did not stop, cancelling", self.server_id)
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        await self._close_transport()

    @property
    def is_connected(self) -> bool:
        """Check if session is connected and authenticated."""
        return self._connection_state is ConnectionState.AUTHENTICATED

    @property
    def is_closed(self) -> bool:
        """Check if close() has been requested."""
        return self._shutdown_requested

    @property
    def connection_state(self) -> ConnectionState:
        """Get current connection state."""
        return self._connection_state

    @property
    def server_state(self) -> ServerState:
        """Get last known server lifecycle state."""
        return self._server_state

    @property
    def resources(self) -> ResourceSnapshot:
        """Get last received resource snapshot."""
        return self._resources

    @property
    def origin(self) -> str:
        """Origin header value expected by the daemon."""
        parts = urlsplit(self.panel_url)
        return f"https://{parts.hostname or parts.netloc}"

    # -------------------------------------------------------------------------
    # Public API: Callbacks
    # -------------------------------------------------------------------------

    def on_connection_state_changed(
        self, callback: Callable[[ConnectionState], None]
    ) -> None:
        """Register callback for connection state changes."""
        self._connection_state_callback = callback

    def on_server_state_changed(self, callback: Callable[[ServerState], None]) -> None:
        """Register callback for server lifecycle changes."""
        self._server_state_callback = callback

    def on_resources_changed(
        self, callback: Callable[[ResourceSnapshot], None]
    ) -> None:
        """Register callback for resource usage snapshots.

        A snapshot is delivered after the server state change it implies.
        """
        self._resources_callback = callback

    def on_output(self, callback: Callable[[str], None]) -> None:
        """Register callback for console, install and daemon output lines."""
        self._output_callback = callback

    def on_diagnostic(self, callback: Callable[[str], None]) -> None:
        """Register callback for human-readable internal failure messages."""
        self._diagnostic_callback = callback

    # -------------------------------------------------------------------------
    # Public API: Outbound
    # -------------------------------------------------------------------------

    async def send_command(self, command: str) -> bool:
        """Send a console command.

        Returns:
            True if sent, False if not authenticated or the send failed
        """
        return await self._send_outbound(build_command(command), "command")

    async def set_power_state(self, action: PowerAction | str) -> bool:
        """Request a power action (start, stop, restart, kill).

        Returns:
            True if sent, False if not authenticated or the send failed
        """
        value = action.value if isinstance(action, PowerAction) else action
        return await self._send_outbound(build_set_state(value), "power action")

    async def _send_outbound(self, event: WireEvent, what: str) -> bool:
        if not self.is_connected:
            _LOGGER.debug("[%s] Cannot send %s: not authenticated", self.server_id, what)
            return False

        try:
            await self._send_event(event)
        except PteroClientError as err:
            _LOGGER.error("[%s] Failed to send %s: %s", self.server_id, what, err)
            return False
        return True

    # -------------------------------------------------------------------------
    # Internal: Connection State Machine
    # -------------------------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        """Update connection state and notify callback."""
        if self._connection_state is not state:
            _LOGGER.debug(
                "[%s] State: %s → %s",
                self.server_id,
                self._connection_state.value,
                state.value,
            )
            self._connection_state = state
            self._notify(self._connection_state_callback, state)

    def _set_server_state(self, state: ServerState) -> None:
        """Update server state and notify callback when it changed."""
        if self._server_state is not state:
            _LOGGER.debug(
                "[%s] Server: %s → %s",
                self.server_id,
                self._server_state.value,
                state.value,
            )
            self._server_state = state
            self._notify(self._server_state_callback, state)

    def _retry_delay(self) -> float:
        if self._failed_attempts == 0:
            return 0.0
        return min(
            self._retry_base_delay * (2 ** (self._failed_attempts - 1)),
            self._retry_max_delay,
        )

    async def _run(self) -> None:
        """Connect, listen and reconnect until close() is requested."""
        try:
            while not self._shutdown_requested:
                delay = self._retry_delay()
                if delay > 0:
                    self._set_state(ConnectionState.RECONNECTING)
                    _LOGGER.info(
                        "[%s] Reconnecting in %.1fs (attempt %d)",
                        self.server_id,
                        delay,
                        self._failed_attempts + 1,
                    )
                    if await self._wait_for_shutdown(delay):
                        break
                else:
                    await asyncio.sleep(0)

                if self._shutdown_requested:
                    break

                await self._run_attempt()
        finally:
            self._set_state(ConnectionState.DISCONNECTED)
            _LOGGER.debug("[%s] Connection loop stopped", self.server_id)

    async def _wait_for_shutdown(self, delay: float) -> bool:
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=delay)
        except TimeoutError:
            return False
        return True

    async def _run_attempt(self) -> None:
        """Run one connection attempt through to its end."""
        self._attempt_authenticated = False
        self._set_state(ConnectionState.CONNECTING)

        try:
            await self._open_and_listen()
        except PteroClientError as err:
            _LOGGER.warning("[%s] Connection failed: %s", self.server_id, err)
            self._diagnostic(f"Connection failed: {err}")
        except Exception as err:
            _LOGGER.exception("[%s] Unexpected error: %s", self.server_id, err)
            self._diagnostic(f"Unexpected error: {err}")
        finally:
            await self._close_transport()
            self._ws = None

            if self._attempt_authenticated:
                self._failed_attempts = 0
            else:
                self._failed_attempts += 1

            self._set_state(ConnectionState.DISCONNECTED)

    async def _open_and_listen(self) -> None:
        credential = await self._token_source()

        if self._shutdown_requested:
            _LOGGER.debug("[%s] Connection aborted: shutdown requested", self.server_id)
            return

        _LOGGER.info(
            "[%s] Connecting to %s (attempt #%d)",
            self.server_id,
            credential.socket_url,
            self._failed_attempts + 1,
        )

        ws = self._transport_factory()
        self._ws = ws
        await ws.connect(
            credential.socket_url,
            headers=self._connection_headers(credential),
            ping_interval=self._ping_interval,
            timeout=self._connect_timeout,
        )

        if self._shutdown_requested:
            _LOGGER.debug("[%s] Connection aborted: shutdown requested", self.server_id)
            return

        self._set_state(ConnectionState.AUTHENTICATING)
        await self._send_event(build_auth(credential.token))
        _LOGGER.debug("[%s] Auth sent", self.server_id)

        await self._listen(ws)

    def _connection_headers(self, credential: PteroCredential) -> dict[str, str]:
        return {
            "Origin": self.origin,
            "Authorization": f"Bearer {credential.token}",
        }

    async def _close_transport(self) -> None:
        ws = self._ws
        if ws is None:
            return
        try:
            await asyncio.wait_for(ws.close(), timeout=CLOSE_TIMEOUT)
        except TimeoutError:
            _LOGGER.warning("[%s] WebSocket close timed out", self.server_id)

    async def _send_event(self, event: WireEvent) -> None:
        """Write one event, serialized with every other writer."""
        ws = self._ws
        if ws is None:
            raise PteroConnectionError("WebSocket is not connected")
        async with self._send_lock:
            await ws.send_text(encode_event(event))

    # -------------------------------------------------------------------------
    # Internal: Message Listener
    # -------------------------------------------------------------------------

    async def _listen(self, ws: PteroWsClient) -> None:
        """Handle daemon messages until the connection should end."""
        message_count = 0

        async for msg in ws:
            if self._shutdown_requested:
                _LOGGER.debug(
                    "[%s] Listener stopping (%d messages)", self.server_id, message_count
                )
                return

            if msg.type is PteroWsMessageType.CLOSED:
                _LOGGER.info("[%s] WebSocket closed by daemon", self.server_id)
                return

            if msg.type is PteroWsMessageType.ERROR:
                _LOGGER.warning("[%s] WebSocket error", self.server_id)
                self._diagnostic("WebSocket error")
                return

            message_count += 1
            try:
                event = decode_event(msg.data or "")
                keep_going = await self._handle_event(event)
            except PteroDecodeError as err:
                _LOGGER.debug("[%s] Ignoring frame: %s", self.server_id, err)
                self._diagnostic(f"Ignored malformed frame: {err}")
                continue

            if not keep_going:
                return

    # -------------------------------------------------------------------------
    # Internal: Protocol Handlers
    # -------------------------------------------------------------------------

    async def _handle_event(self, event: WireEvent) -> bool:
        """Apply one daemon event.

        ``jwt error`` and ``token expired`` only end the connection. The
        server lifecycle state is left as last reported, since it tracks the
        managed process rather than the socket.

        Returns:
            False when the connection must be closed and re-established
        """
        name = event.event

        if name in (EVENT_JWT_ERROR, EVENT_TOKEN_EXPIRED):
            _LOGGER.warning("[%s] Authentication rejected: %s", self.server_id, name)
            self._diagnostic(f"Authentication rejected: {name}")
            await self._close_transport()
            return False

        if name == EVENT_TOKEN_EXPIRING:
            return await self._refresh_token()

        if name == EVENT_AUTH_SUCCESS:
            await self._handle_auth_success()
        elif name == EVENT_STATS:
            self._handle_stats(event.args[0] or "")
        elif name == EVENT_STATUS:
            self._set_server_state(parse_server_state(event.args[0]))
        elif name in OUTPUT_EVENTS:
            for line in event.args:
                self._notify(self._output_callback, line)
        elif name == EVENT_INSTALL_STARTED:
            self._set_server_state(ServerState.INSTALLING)
        elif name == EVENT_INSTALL_COMPLETED:
            self._set_server_state(ServerState.OFFLINE)
        else:
            _LOGGER.debug("[%s] Unknown event: %s", self.server_id, name)

        return True

    async def _handle_auth_success(self) -> None:
        self._attempt_authenticated = True
        self._set_state(ConnectionState.AUTHENTICATED)
        _LOGGER.info("[%s] Authenticated", self.server_id)

        for intent in build_intents():
            await self._send_event(intent)

    async def _refresh_token(self) -> bool:
        """Re-authenticate the open websocket with a fresh token."""
        _LOGGER.info("[%s] Token expiring, refreshing", self.server_id)
        try:
            credential = await self._token_source()
        except PteroClientError as err:
            _LOGGER.warning("[%s] Token refresh failed: %s", self.server_id, err)
            self._diagnostic(f"Token refresh failed: {err}")
            return False

        await self._send_event(build_auth(credential.token))
        _LOGGER.debug("[%s] Refreshed auth sent", self.server_id)
        return True

    def _handle_stats(self, raw: str) -> None:
        snapshot = parse_resource_snapshot(raw)
        # Lifecycle change goes out before the snapshot that carries it
        self._set_server_state(parse_server_state(snapshot.state))
        self._resources = snapshot
        self._notify(self._resources_callback, snapshot)

    # -------------------------------------------------------------------------
    # Internal: Notifications
    # -------------------------------------------------------------------------

    def _diagnostic(self, message: str) -> None:
        self._notify(self._diagnostic_callback, message)

    def _notify(self, callback: Callable[[_T], None] | None, value: _T) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception as err:
            _LOGGER.exception("[%s] Callback error: %s", self.server_id, err)
