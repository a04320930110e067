"""Command line entrypoint: list threads or watch the synchronized session."""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import replace
from pathlib import Path

from rich.console import Console
from rich.table import Table
from rich.text import Text

from tandem import notifications
from tandem.api import HarnessAPI, HarnessRequestError
from tandem.config import ClientConfig, load_config
from tandem.engine import SyncEngine
from tandem.events import ThreadInfo
from tandem.log_utils import build_log_config, configure_logging
from tandem.state import Session, ThreadView
from tandem.stream import ConnectionStatus

_console = Console(highlight=False)


def threads_table(threads: list[ThreadInfo]) -> Table:
    table = Table(title="Threads")
    table.add_column("id", style="cyan", no_wrap=True)
    table.add_column("title")
    table.add_column("updated", style="dim")
    for thread in threads:
        updated = thread.updated_at.isoformat(timespec="seconds") if thread.updated_at else ""
        table.add_row(thread.id, thread.title or "", updated)
    return table


def status_line(session: Session, view: ThreadView) -> Text:
    """One-line summary of the synchronized state."""
    line = Text()
    line.append("online " if session.connected else "offline ", style="green" if session.connected else "red")
    line.append(f"{session.current_thread_id or '-'} ", style="cyan")
    line.append(view.status, style="yellow" if view.streaming else "dim")
    line.append(f" msgs={len(view.messages)}")
    running = sum(1 for tool in view.tools.values() if not tool.finished)
    if running:
        line.append(f" tools={running}")
    if view.pending_tool_approval is not None:
        line.append(f" approve:{view.pending_tool_approval.tool_name}", style="magenta")
    if view.pending_question is not None:
        line.append(" question", style="magenta")
    if view.pending_plan_approval is not None:
        line.append(" plan", style="magenta")
    if view.error:
        line.append(f" error={view.error}", style="red")
    if session.background_notifications:
        line.append(f" background={len(session.background_notifications)}", style="magenta")
    return line


async def _list_threads(config: ClientConfig) -> int:
    async with HarnessAPI(config) as api:
        threads = await api.list_threads()
    _console.print(threads_table(threads))
    return 0


async def _watch(config: ClientConfig, thread_id: str | None, duration: float | None) -> int:
    engine = SyncEngine(HarnessAPI(config), config)
    last: list[str] = [""]

    def _print_state(session: Session, view: ThreadView) -> None:
        line = status_line(session, view)
        if line.plain == last[0]:
            return
        last[0] = line.plain
        _console.print(line)
        for note in session.background_notifications:
            _console.print(f"  {notifications.describe(note)}", style="magenta")

    def _print_connection(status: ConnectionStatus) -> None:
        if status.next_retry_in is not None:
            _console.print(
                f"[stream] {status.state.value} in {status.next_retry_in:.1f}s ({status.last_error})",
                style="dim",
                markup=False,
            )

    engine.subscribe(_print_state)
    engine.subscribe_status(_print_connection)
    async with engine:
        if thread_id:
            await engine.switch_thread(thread_id)
        else:
            await engine.init()
        engine.start()
        if duration is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(duration)
    return 0


async def main(argv: list[str]) -> int:
    parser = argparse.ArgumentParser(prog="tandem", description="Agent Service session client.")
    parser.add_argument("--env-file", type=Path, default=None, help="Extra .env file to load")
    parser.add_argument("--base-url", default=None, help="Override TANDEM_BASE_URL")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("threads", help="List threads")
    watch = sub.add_parser("watch", help="Follow the event stream and print state changes")
    watch.add_argument("--thread", default=None, help="Thread to focus (default: most recent)")
    watch.add_argument("--duration", type=float, default=None, help="Stop after N seconds")
    args = parser.parse_args(argv[1:])

    configure_logging(build_log_config())
    config = load_config(args.env_file)
    if args.base_url:
        config = replace(config, base_url=args.base_url.rstrip("/"))

    try:
        if args.command == "threads":
            return await _list_threads(config)
        return await _watch(config, args.thread, args.duration)
    except HarnessRequestError as exc:
        print(f"Request failed: {exc}", file=sys.stderr)
        return 1


def run() -> None:
    try:
        raise SystemExit(asyncio.run(main(sys.argv)))
    except KeyboardInterrupt:
        raise SystemExit(130)
