#!/usr/bin/env python3
# ruff: noqa: E402
"""
otron CLI: run agent sessions and inspect the session store.

Usage:
    otron run [OPTIONS] MESSAGE
    otron sessions [list|show|cancel|queue] [OPTIONS]
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from otron.infra.tools.env import USER_CONFIG_DIR, load_env, load_user_env

if TYPE_CHECKING:
    from otron.infra.io.config import OtronConfig

# Bootstrap state: tracks whether bootstrap() has been called
_bootstrapped = False

# Lazy-loaded module cache for client-dependent imports
_lazy_modules: dict[str, Any] = {}

# Names that are lazily loaded (for __getattr__ to handle)
_LAZY_NAMES = frozenset({"OtronConfig", "create_orchestrator"})


def _lazy(name: str) -> Any:  # noqa: ANN401
    """Access a lazy-loaded module attribute."""
    return getattr(sys.modules[__name__], name)


def bootstrap() -> None:
    """Initialize environment.

    Must be called before constructing model clients so that Braintrust
    and API keys from ~/.config/otron/.env are visible. Idempotent.
    """
    global _bootstrapped

    if _bootstrapped:
        return

    load_user_env()

    _bootstrapped = True


import asyncio
from typing import Annotated

import typer

from otron.core.errors import Aborted
from otron.core.models import ChatContext
from otron.infra.io.activity_log import ConsoleActivityLog
from otron.infra.io.config import ConfigurationError
from otron.infra.io.log_output.console import Colors, configure_logging, log
from otron.orchestration.session_lifecycle import PlatformClients

from .sessions import sessions_app

app = typer.Typer(
    name="otron",
    help="Multi-platform AI agent session runner",
    add_completion=False,
)
app.add_typer(sessions_app)


def load_config() -> OtronConfig:
    """Load and validate OtronConfig, exiting with the errors on failure."""
    try:
        return _lazy("OtronConfig").from_env()
    except ConfigurationError as e:
        for error in e.errors:
            log("✗", error, Colors.RED)
        raise typer.Exit(1) from e


@app.command()
def run(
    message: Annotated[
        str,
        typer.Argument(help="Request text sent to the agent"),
    ],
    channel: Annotated[
        str | None,
        typer.Option("--channel", help="Slack channel id the request came from"),
    ] = None,
    thread: Annotated[
        str | None,
        typer.Option("--thread", help="Slack thread timestamp"),
    ] = None,
    session_id: Annotated[
        str | None,
        typer.Option(
            "--session-id",
            help="External session id (used as the session id)",
        ),
    ] = None,
    env_file: Annotated[
        Path | None,
        typer.Option("--env-file", help="Extra .env file loaded over the user env"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Debug logging and untruncated output"),
    ] = False,
) -> None:
    """Handle one request end to end and print the final response."""
    if thread and not channel:
        raise typer.BadParameter("--thread requires --channel")

    if env_file is not None:
        load_env(env_file)
    configure_logging(verbose)
    USER_CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    config = load_config()
    orchestrator = _lazy("create_orchestrator")(config)
    chat_context = ChatContext(channel, thread) if channel else None

    def show_status(text: str) -> None:
        log("◦", text, Colors.GRAY, dim=True)

    async def _run() -> Any:  # noqa: ANN401
        try:
            return await orchestrator.dispatcher.dispatch(
                [{"role": "user", "content": message}],
                update_status=show_status,
                platform_clients=PlatformClients(activity_log=ConsoleActivityLog()),
                chat_context=chat_context,
                external_session_id=session_id,
            )
        finally:
            await orchestrator.aclose()

    try:
        outcome = asyncio.run(_run())
    except Aborted as e:
        log("○", f"Session cancelled: {e.reason}", Colors.YELLOW)
        raise typer.Exit(130) from e
    except KeyboardInterrupt:
        log("○", "Interrupted", Colors.YELLOW)
        raise typer.Exit(130) from None

    if outcome.queued:
        log("→", f"Queued into running session {outcome.session_id}", Colors.CYAN)
        return
    print(outcome.response or "")


def __getattr__(name: str) -> Any:  # noqa: ANN401
    """Lazy-load client-dependent modules on first access."""
    if name not in _LAZY_NAMES:
        raise AttributeError(f"module {__name__} has no attribute {name}")

    if name in _lazy_modules:
        return _lazy_modules[name]

    if name == "OtronConfig":
        from otron.infra.io.config import OtronConfig

        _lazy_modules[name] = OtronConfig
    elif name == "create_orchestrator":
        from otron.orchestration.factory import create_orchestrator

        _lazy_modules[name] = create_orchestrator

    return _lazy_modules[name]
