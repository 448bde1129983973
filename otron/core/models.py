"""Shared dataclasses for otron sessions.

This module holds the records that flow between the session store, the
tool supervisor, the goal evaluator and the lifecycle manager. Records
that are persisted expose ``to_dict()``/``from_dict()`` so the store can
serialize them as JSON.

Types:
- ChatContext: Slack thread a request originated from
- SessionMetadata: Optional identifiers attached to a session
- ActiveSession: In-flight session record (TTL'd in the store)
- CompletedSession: Archived session record with completion fields
- QueuedMessage: Out-of-band message delivered to an in-flight session
- RepoDefinition: Repository metadata injected into the system prompt
- ExecutionSummary: Attempt outcome handed to the goal evaluator
- GenerationResult: Output of one model-call phase
- GoalEvaluation: Structured goal-completion verdict
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Literal

Platform = Literal["slack", "linear", "github", "general"]
SessionStatus = Literal["initializing", "planning", "gathering", "acting", "completing"]
FinalStatus = Literal["completed", "cancelled", "error"]
QueuedMessageType = Literal["created", "prompted", "stop"]

# Conversation entry: {"role": "user" | "assistant", "content": str | list[block]}
Message = dict[str, Any]

# Statuses that count as "still working" for the per-issue lookup.
ACTIVE_STATUSES: frozenset[str] = frozenset(
    {"initializing", "planning", "gathering", "acting"}
)

GENERAL_CONTEXT = "general"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _known_fields(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def message_text(message: Message | None) -> str:
    """Flatten a message's content into plain text.

    String content is returned as-is; list content is joined from the
    ``text`` of its parts. Anything else yields an empty string.
    """
    if not message:
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
        return " ".join(parts)
    return ""


@dataclass(frozen=True)
class ChatContext:
    """Slack thread a request originated from."""

    channel_id: str
    thread_ts: str | None = None


@dataclass
class SessionMetadata:
    issue_id: str | None = None
    channel_id: str | None = None
    thread_ts: str | None = None
    user_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SessionMetadata:
        return cls(**_known_fields(cls, data or {}))


@dataclass
class ActiveSession:
    """One end-to-end handling of a triggering event.

    Attributes:
        session_id: Opaque id, unique per invocation.
        context_id: Issue id or chat-derived key the session is scoped to.
        start_time: Creation time in epoch milliseconds.
        platform: Platform the triggering event came from.
        status: Descriptive phase of the session.
        current_tool: Name of the in-flight tool, if any.
        tools_used: Tool names used so far (unique, order irrelevant).
        actions_performed: Ordered log of short action descriptions.
        messages: Conversation transcript.
        metadata: Optional issue/chat/user identifiers.
    """

    session_id: str
    context_id: str
    start_time: int = field(default_factory=now_ms)
    platform: Platform = "general"
    status: SessionStatus = "initializing"
    current_tool: str | None = None
    tools_used: list[str] = field(default_factory=list)
    actions_performed: list[str] = field(default_factory=list)
    messages: list[Message] = field(default_factory=list)
    metadata: SessionMetadata = field(default_factory=SessionMetadata)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActiveSession:
        values = _known_fields(cls, data)
        values["metadata"] = SessionMetadata.from_dict(data.get("metadata"))
        return cls(**values)


@dataclass
class CompletedSession(ActiveSession):
    """Archived session record, retained without expiry."""

    end_time: int = 0
    duration: int = 0
    final_status: FinalStatus = "completed"
    error: str | None = None

    @classmethod
    def from_active(
        cls,
        active: ActiveSession,
        final_status: FinalStatus,
        error: str | None = None,
        end_time: int | None = None,
    ) -> CompletedSession:
        """Stamp completion fields onto a copy of an active record."""
        finished = end_time if end_time is not None else now_ms()
        values = active.to_dict()
        values["metadata"] = SessionMetadata.from_dict(values.get("metadata"))
        return cls(
            **values,
            end_time=finished,
            duration=max(0, finished - active.start_time),
            final_status=final_status,
            error=error,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CompletedSession:
        values = _known_fields(cls, data)
        values["metadata"] = SessionMetadata.from_dict(data.get("metadata"))
        return cls(**values)


@dataclass
class QueuedMessage:
    """Message delivered to a session that is already in flight.

    A ``stop`` message terminates the session with a cancellation
    outcome; other types are injected into the conversation as
    interjections.
    """

    content: str
    session_id: str
    issue_id: str
    type: QueuedMessageType = "prompted"
    timestamp: int = field(default_factory=now_ms)
    user_id: str | None = None
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueuedMessage:
        return cls(**_known_fields(cls, data))


@dataclass
class RepoDefinition:
    """Repository metadata, read-only to the core."""

    id: str
    name: str
    owner: str
    repo: str
    description: str = ""
    purpose: str | None = None
    github_url: str = ""
    is_active: bool = True
    tags: list[str] = field(default_factory=list)
    context_description: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RepoDefinition:
        # Accept both the stored camelCase shape and snake_case config files.
        aliases = {
            "githubUrl": "github_url",
            "isActive": "is_active",
            "contextDescription": "context_description",
            "createdAt": "created_at",
            "updatedAt": "updated_at",
        }
        normalized = {aliases.get(k, k): v for k, v in data.items()}
        if "github_url" not in normalized and normalized.get("owner"):
            normalized["github_url"] = (
                f"https://github.com/{normalized['owner']}/{normalized.get('repo', '')}"
            )
        return cls(**_known_fields(cls, normalized))


@dataclass
class ExecutionSummary:
    """Attempt outcome handed to the goal evaluator."""

    tools_used: list[str]
    actions_performed: list[str]
    final_response: str
    ended_explicitly: bool = False


@dataclass
class GenerationResult:
    """Output of one model-call phase."""

    text: str
    tools_used: list[str] = field(default_factory=list)
    actions_performed: list[str] = field(default_factory=list)
    ended_explicitly: bool = False

    def summary(self) -> ExecutionSummary:
        return ExecutionSummary(
            tools_used=list(self.tools_used),
            actions_performed=list(self.actions_performed),
            final_response=self.text,
            ended_explicitly=self.ended_explicitly,
        )


@dataclass(frozen=True)
class GoalEvaluation:
    """Structured goal-completion verdict.

    Attributes:
        is_complete: Whether the evaluator judged the goal complete.
        confidence: Evaluator confidence in the verdict (0.0 to 1.0).
        reasoning: Explanation of the verdict.
        missing_actions: Actions still required, if incomplete.
        next_steps: Suggested follow-up, if incomplete.
    """

    is_complete: bool
    confidence: float
    reasoning: str
    missing_actions: tuple[str, ...] = ()
    next_steps: str | None = None

    def meets_threshold(self, threshold: float) -> bool:
        """True when the goal is complete with at least ``threshold`` confidence."""
        return self.is_complete and self.confidence >= threshold
