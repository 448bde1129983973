"""Sessions subcommand for otron CLI: inspect and steer stored sessions."""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import TYPE_CHECKING, Annotated, Any

import typer
from tabulate import tabulate

from otron.core.models import QueuedMessage
from otron.infra.io.config import ConfigurationError, OtronConfig
from otron.infra.io.log_output.console import Colors, log
from otron.infra.store.kv import RedisKeyValueClient
from otron.infra.store.session_store import SessionStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from otron.core.models import ActiveSession, CompletedSession
    from otron.core.protocols import KeyValueClient

sessions_app = typer.Typer(name="sessions", help="Inspect and steer otron sessions")

# Default limit for number of sessions to display
_DEFAULT_LIMIT = 20


def _connect(redis_url: str) -> KeyValueClient:
    return RedisKeyValueClient.from_url(redis_url)


@asynccontextmanager
async def _open_store() -> AsyncIterator[SessionStore]:
    try:
        config = OtronConfig.from_env(validate=False)
    except ConfigurationError as e:
        for error in e.errors:
            log("✗", error, Colors.RED)
        raise typer.Exit(1) from e
    kv = _connect(config.redis_url)
    try:
        yield SessionStore(kv, active_ttl=config.active_session_ttl)
    finally:
        if isinstance(kv, RedisKeyValueClient):
            await kv.close()


def _format_time(epoch_ms: int | None) -> str:
    """Format epoch milliseconds as local time, or '-' if absent."""
    if not epoch_ms:
        return "-"
    return datetime.fromtimestamp(epoch_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _active_rows(sessions: list[ActiveSession]) -> list[list[Any]]:
    return [
        [
            s.session_id,
            s.context_id,
            s.platform,
            s.status,
            s.current_tool or "-",
            len(s.tools_used),
            _format_time(s.start_time),
        ]
        for s in sessions
    ]


def _completed_rows(sessions: list[CompletedSession]) -> list[list[Any]]:
    return [
        [
            s.session_id,
            s.context_id,
            s.final_status,
            f"{s.duration / 1000:.1f}s",
            len(s.tools_used),
            _format_time(s.end_time),
        ]
        for s in sessions
    ]


@sessions_app.command("list")
def list_sessions(
    completed: Annotated[
        bool,
        typer.Option("--completed", help="List archived sessions instead of active ones"),
    ] = False,
    limit: Annotated[
        int,
        typer.Option("--limit", min=1, help="Maximum sessions to show (completed only)"),
    ] = _DEFAULT_LIMIT,
    offset: Annotated[
        int,
        typer.Option("--offset", min=0, help="Sessions to skip (completed only)"),
    ] = 0,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List active sessions, or archived sessions newest first."""

    async def _load() -> list[Any]:
        async with _open_store() as store:
            if completed:
                return list(await store.list_completed(offset=offset, limit=limit))
            return list(await store.list_active())

    sessions = asyncio.run(_load())

    if json_output:
        print(json.dumps([s.to_dict() for s in sessions], indent=2))
        return
    if not sessions:
        print("No completed sessions" if completed else "No active sessions")
        return

    if completed:
        headers = ["session_id", "context", "status", "duration", "tools", "ended"]
        rows = _completed_rows(sessions)
    else:
        headers = ["session_id", "context", "platform", "status", "tool", "tools", "started"]
        rows = _active_rows(sessions)
    print(tabulate(rows, headers=headers, tablefmt="simple"))


@sessions_app.command()
def show(
    session_id: Annotated[str, typer.Argument(help="Session id to show")],
) -> None:
    """Print the stored record of an active or completed session."""

    async def _load() -> ActiveSession | None:
        async with _open_store() as store:
            active = await store.get_active(session_id)
            if active is not None:
                return active
            return await store.get_completed(session_id)

    session = asyncio.run(_load())
    if session is None:
        log("✗", f"Session not found: {session_id}", Colors.RED)
        raise typer.Exit(1)
    print(json.dumps(session.to_dict(), indent=2))


@sessions_app.command()
def cancel(
    session_id: Annotated[str, typer.Argument(help="Session id to cancel")],
) -> None:
    """Flag a session as cancelled; it stops before its next tool call."""

    async def _cancel() -> bool:
        async with _open_store() as store:
            exists = await store.get_active(session_id) is not None
            await store.request_cancellation(session_id)
            return exists

    if asyncio.run(_cancel()):
        log("✓", f"Cancellation requested for {session_id}", Colors.GREEN)
    else:
        log("○", f"No active session {session_id}; flag set anyway", Colors.YELLOW)


@sessions_app.command()
def queue(
    session_id: Annotated[str, typer.Argument(help="Target session id")],
    text: Annotated[str, typer.Argument(help="Message delivered to the session")],
    stop: Annotated[
        bool,
        typer.Option("--stop", help="Send a stop command instead of an interjection"),
    ] = False,
    user_id: Annotated[
        str | None,
        typer.Option("--user", help="User id recorded on the message"),
    ] = None,
) -> None:
    """Queue a message for a running session."""

    async def _queue() -> bool:
        async with _open_store() as store:
            active = await store.get_active(session_id)
            if active is None:
                return False
            await store.enqueue_message(
                session_id,
                QueuedMessage(
                    content=text,
                    session_id=session_id,
                    issue_id=active.context_id,
                    type="stop" if stop else "prompted",
                    user_id=user_id,
                ),
            )
            return True

    if not asyncio.run(_queue()):
        log("✗", f"No active session {session_id}", Colors.RED)
        raise typer.Exit(1)
    log("✓", f"Queued {'stop' if stop else 'message'} for {session_id}", Colors.GREEN)
