"""Terminal console: print daemon events and forward typed commands.

Lines typed on stdin are sent as console commands. A line starting with
``:`` is sent as a power action instead, e.g. ``:restart``.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import sys
import threading

import aiohttp

from .models import ConnectionState, ResourceSnapshot, ServerState
from .session import PteroConsoleSession

POWER_PREFIX = ":"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ptero-console",
        description="Attach to a Pterodactyl server console.",
    )
    parser.add_argument(
        "panel_url",
        nargs="?",
        default=os.environ.get("PTERO_PANEL_URL"),
        help="Panel base URL (env: PTERO_PANEL_URL)",
    )
    parser.add_argument(
        "client_key",
        nargs="?",
        default=os.environ.get("PTERO_CLIENT_KEY"),
        help="Client API key (env: PTERO_CLIENT_KEY)",
    )
    parser.add_argument(
        "server_id",
        nargs="?",
        default=os.environ.get("PTERO_SERVER_ID"),
        help="Server identifier or UUID (env: PTERO_SERVER_ID)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def parse_input_line(line: str) -> tuple[str, str] | None:
    """Split a typed line into ("command" | "power", value), None if blank."""
    text = line.strip()
    if not text:
        return None
    if text.startswith(POWER_PREFIX):
        return "power", text[len(POWER_PREFIX) :].strip().lower()
    return "command", text


def format_resources(snapshot: ResourceSnapshot) -> str:
    return (
        f"STATS: cpu={snapshot.cpu_absolute:.1f}% "
        f"mem={snapshot.memory_bytes}/{snapshot.memory_limit_bytes} "
        f"disk={snapshot.disk_bytes} up={snapshot.uptime // 1000}s "
        f"rx={snapshot.network.rx_bytes} tx={snapshot.network.tx_bytes}"
    )


def attach_printers(session: PteroConsoleSession) -> None:
    def on_connection(state: ConnectionState) -> None:
        print(f"STATUS: {state.value}")

    def on_server(state: ServerState) -> None:
        print(f"SERVER: {state.value}")

    session.on_connection_state_changed(on_connection)
    session.on_server_state_changed(on_server)
    session.on_resources_changed(lambda snapshot: print(format_resources(snapshot)))
    session.on_output(lambda line: print(f"OUTPUT: {line}"))
    session.on_diagnostic(lambda message: print(f"DIAG: {message}"))


def _read_stdin(
    loop: asyncio.AbstractEventLoop, queue: asyncio.Queue[str | None]
) -> None:
    # Runs on a daemon thread; the loop may already be closed on exit
    with contextlib.suppress(RuntimeError):
        for line in sys.stdin:
            loop.call_soon_threadsafe(queue.put_nowait, line)
        loop.call_soon_threadsafe(queue.put_nowait, None)


async def _forward_stdin(session: PteroConsoleSession) -> None:
    queue: asyncio.Queue[str | None] = asyncio.Queue()
    threading.Thread(
        target=_read_stdin,
        args=(asyncio.get_running_loop(), queue),
        name="ptero-console-stdin",
        daemon=True,
    ).start()

    while True:
        line = await queue.get()
        if line is None:
            return
        parsed = parse_input_line(line)
        if parsed is None:
            continue
        kind, value = parsed
        if kind == "power":
            sent = await session.set_power_state(value)
        else:
            sent = await session.send_command(value)
        if not sent:
            print("DIAG: not connected, input dropped")


async def run(panel_url: str, client_key: str, server_id: str) -> None:
    async with aiohttp.ClientSession() as http_session:
        session = PteroConsoleSession.from_client_key(
            http_session, panel_url, client_key, server_id
        )
        attach_printers(session)
        await session.connect()
        try:
            await _forward_stdin(session)
        finally:
            await session.close()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    missing = [
        name
        for name in ("panel_url", "client_key", "server_id")
        if not getattr(args, name)
    ]
    if missing:
        parser.error(f"missing {', '.join(missing)}")

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        asyncio.run(run(args.panel_url, args.client_key, args.server_id))
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
