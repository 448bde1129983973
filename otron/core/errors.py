"""Exception types raised across otron.

Tool-level failures never use these: a failing tool executor is turned
into a ``{"success": False, ...}`` value for the model. These exceptions
mark session-level outcomes and store failures.
"""

from __future__ import annotations


class OtronError(Exception):
    """Base class for otron errors."""


class Aborted(OtronError):
    """Raised when a cancellation signal is observed at a checkpoint.

    Terminal for the session; the lifecycle manager never retries it.
    """

    def __init__(self, reason: str = "Request was aborted") -> None:
        self.reason = reason
        super().__init__(reason)


class StopCommandReceived(Aborted):
    """Raised when a ``stop`` message is drained from the session queue."""

    def __init__(self) -> None:
        super().__init__("STOP_COMMAND_RECEIVED")


class CircuitBreakerTripped(OtronError):
    """Raised when an identical tool call repeats too often in one session."""

    def __init__(self, tool_name: str, call_count: int) -> None:
        self.tool_name = tool_name
        self.call_count = call_count
        super().__init__(
            f"Circuit breaker activated: {tool_name} called {call_count} times "
            "with identical parameters. This suggests an infinite retry loop. "
            "Try a different approach or tool."
        )


class SessionConflictError(OtronError):
    """Raised when another live session already holds a context."""

    def __init__(self, context_id: str, session_id: str) -> None:
        self.context_id = context_id
        self.session_id = session_id
        super().__init__(
            f"Context {context_id} is already handled by session {session_id}"
        )


class StoreError(OtronError):
    """Normalized failure from the key-value backend."""
