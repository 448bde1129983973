"""Activity log implementations.

Activity logs receive narration for trackable sessions: low-visibility
thoughts, higher-visibility actions, and final responses.

- BaseActivityLog: No-op implementations of every method
- NullActivityLog: Explicit no-op sink
- LoggingActivityLog: Writes narration to the ``logging`` hierarchy
- ConsoleActivityLog: Colored terminal narration for the CLI
"""

from __future__ import annotations

import logging

from otron.infra.io.log_output.console import Colors, log, truncate_text

logger = logging.getLogger(__name__)


class BaseActivityLog:
    """Base class implementing the ActivityLog protocol with no-ops.

    Subclasses override only the methods they care about.
    """

    async def thought(self, context_id: str, text: str) -> None:
        pass

    async def action(
        self, context_id: str, label: str, parameters: str, result: str
    ) -> None:
        pass

    async def response(self, context_id: str, text: str) -> None:
        pass


class NullActivityLog(BaseActivityLog):
    """Activity log that discards everything."""


class LoggingActivityLog(BaseActivityLog):
    """Activity log that records narration through ``logging``."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._logger = log or logger

    async def thought(self, context_id: str, text: str) -> None:
        self._logger.info("[%s] thought: %s", context_id, text)

    async def action(
        self, context_id: str, label: str, parameters: str, result: str
    ) -> None:
        self._logger.info(
            "[%s] action %s(%s) -> %s", context_id, label, parameters, result
        )

    async def response(self, context_id: str, text: str) -> None:
        self._logger.info("[%s] response: %s", context_id, text)


class ConsoleActivityLog(BaseActivityLog):
    """Prints narration to the terminal, truncated unless verbose."""

    async def thought(self, context_id: str, text: str) -> None:
        log("•", truncate_text(text, 200), dim=True, context_id=context_id)

    async def action(
        self, context_id: str, label: str, parameters: str, result: str
    ) -> None:
        log(
            "⚙",
            f"{Colors.BOLD}{label}{Colors.RESET} {truncate_text(parameters, 120)}"
            f" {Colors.MUTED}→ {truncate_text(result, 120)}",
            color=Colors.CYAN,
            context_id=context_id,
        )

    async def response(self, context_id: str, text: str) -> None:
        log("◆", truncate_text(text, 400), color=Colors.GREEN, context_id=context_id)
