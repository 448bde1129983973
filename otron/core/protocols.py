"""Protocol definitions for otron's external collaborators.

The session core depends only on these structural types. Concrete
implementations live under ``otron.infra`` (Redis, Anthropic, YAML) and
in ``tests.fakes`` (in-memory fakes).

Design principles:
- Protocols use structural typing (typing.Protocol)
- Methods match exactly what the core actually calls
- Collaborators other than the key-value client are called best-effort
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from otron.core.models import FinalStatus, Message, RepoDefinition


# =============================================================================
# Model boundary
# =============================================================================


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    input: dict[str, Any]


@dataclass
class ModelTurn:
    """One model response: text plus any requested tool calls."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    stop_reason: str | None = None


@runtime_checkable
class ModelClient(Protocol):
    """Opaque "generate" capability with tool-calling support."""

    async def generate(
        self,
        *,
        system: str,
        messages: Sequence[Message],
        tools: Sequence[dict[str, Any]] = (),
        max_tokens: int = 4096,
    ) -> ModelTurn:
        """Run one model step.

        Args:
            system: System instructions.
            messages: Transcript in provider message format.
            tools: Tool schemas ({name, description, input_schema}).
            max_tokens: Output token cap for this step.

        Returns:
            The model's text and requested tool calls.
        """
        ...


# =============================================================================
# Storage
# =============================================================================


@runtime_checkable
class KeyValueClient(Protocol):
    """Narrow key-value interface with normalized return values.

    Implementations return plain Python values (``str | None``,
    ``list[str]``, ``set[str]``, ``bool``, ``int``) and raise
    ``StoreError`` on backend failure.
    """

    async def get(self, key: str) -> str | None: ...

    async def set(
        self, key: str, value: str, *, ex: int | None = None, nx: bool = False
    ) -> bool:
        """Set a value. Returns False when ``nx`` is set and the key exists."""
        ...

    async def delete(self, *keys: str) -> int: ...

    async def delete_if_equals(self, key: str, value: str) -> bool:
        """Atomically delete ``key`` only while it holds ``value``."""
        ...

    async def expire(self, key: str, seconds: int) -> bool: ...

    async def sadd(self, key: str, *members: str) -> int: ...

    async def srem(self, key: str, *members: str) -> int: ...

    async def smembers(self, key: str) -> set[str]: ...

    async def lpush(self, key: str, *values: str) -> int: ...

    async def lrange(self, key: str, start: int, stop: int) -> list[str]: ...

    async def ltrim(self, key: str, start: int, stop: int) -> bool: ...

    async def llen(self, key: str) -> int: ...

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int: ...

    async def hgetall(self, key: str) -> dict[str, str]: ...

    async def multi(self, commands: Sequence[tuple[str, tuple[Any, ...]]]) -> list[Any]:
        """Run commands atomically (MULTI/EXEC) and return their results.

        Args:
            commands: ``(method_name, args)`` pairs naming methods of this
                protocol, e.g. ``("lrange", (key, 0, -1))``.
        """
        ...


# =============================================================================
# Narration and platform hooks
# =============================================================================


@runtime_checkable
class ActivityLog(Protocol):
    """Narration sink for trackable (issue) contexts."""

    async def thought(self, context_id: str, text: str) -> None: ...

    async def action(
        self, context_id: str, label: str, parameters: str, result: str
    ) -> None: ...

    async def response(self, context_id: str, text: str) -> None: ...


@runtime_checkable
class ChatNotifier(Protocol):
    """Posts a message into a chat thread (Slack)."""

    async def post_message(
        self, channel_id: str, thread_ts: str | None, text: str
    ) -> None: ...


@runtime_checkable
class SessionCompletionHook(Protocol):
    """Tells the originating platform that its agent session finished."""

    async def complete_session(
        self, external_session_id: str, final_status: FinalStatus
    ) -> None: ...


# =============================================================================
# Context collaborators
# =============================================================================


@runtime_checkable
class MemoryStore(Protocol):
    """Long-term memory scoped by context id."""

    async def store_memory(
        self, context_id: str, kind: str, payload: dict[str, Any]
    ) -> None: ...

    async def get_previous_conversations(
        self, context_id: str, current_text: str
    ) -> str: ...

    async def get_issue_history(self, context_id: str) -> str: ...

    async def track_tool_usage(
        self,
        tool_name: str,
        success: bool,
        *,
        context_id: str,
        input: dict[str, Any],
        response: str,
        detailed_output: Any = None,  # noqa: ANN401
    ) -> None: ...


@runtime_checkable
class RepositorySource(Protocol):
    """Source of repository definitions."""

    async def list_repositories(self) -> list[RepoDefinition]: ...
