"""Tool execution supervisor.

Wraps every tool executor with the session's cross-cutting concerns.
Before delegating, a wrapped call runs these steps in order:

1. Session bookkeeping (current tool, tools used)
2. In-process cancellation token check
3. Durable cancellation flag check
4. Circuit breaker on repeated identical calls
5. Queued-message drain (stop commands and interjections)
6. Strategy tracking (per-tool counts, categories, phase)
7. Pre-call narration

A failing executor is converted into a ``{"success": False, ...}`` value
for the model; only cancellation and the circuit breaker raise.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from otron.core.errors import Aborted, CircuitBreakerTripped, StopCommandReceived
from otron.pipeline.context import is_trackable
from otron.pipeline.execution_tracker import (
    CIRCUIT_BREAKER_THRESHOLD,
    ExecutionStrategy,
    ExecutionTracker,
    ToolCategory,
    call_signature,
)
from otron.pipeline.tool_formatting import (
    describe_failure,
    failure_guidance,
    format_parameters,
    summarize_success,
)

if TYPE_CHECKING:
    from otron.core.models import ChatContext, Message, QueuedMessage
    from otron.core.protocols import ActivityLog, ChatNotifier, MemoryStore
    from otron.infra.cancellation import CancellationToken
    from otron.infra.store.session_store import SessionStore
    from otron.pipeline.tool_registry import ToolExecutor, ToolSpec

logger = logging.getLogger(__name__)

CANCELLED_BY_USER = "Request was cancelled by user"
STOP_NOTICE = (
    "Otron is immediately stopping all operations as requested. "
    "Processing has been terminated."
)


def interjection_message(message: QueuedMessage) -> Message:
    """Conversation entry for a queued message delivered mid-session."""
    stamp = (
        datetime.fromtimestamp(message.timestamp / 1000, tz=UTC)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )
    return {"role": "user", "content": f"[INTERJECTION {stamp}] {message.content}"}


def tool_failure(tool_name: str, error: str, params: dict[str, Any]) -> dict[str, Any]:
    """Structured failure returned to the model in place of an exception."""
    return {
        "success": False,
        "error": error,
        "message": f"{tool_name}: {describe_failure(tool_name, error, params)}",
        "guidance": failure_guidance(tool_name, error),
    }


class ToolSupervisor:
    """Wraps tool executors for one model-call phase of a session.

    The supervisor shares ``messages`` with the model-call phase: queued
    interjections are appended to that list in place so the phase can
    forward them to the model.
    """

    def __init__(
        self,
        *,
        session_id: str,
        context_id: str,
        store: SessionStore,
        messages: list[Message],
        tracker: ExecutionTracker | None = None,
        strategy: ExecutionStrategy | None = None,
        session_tools: list[str] | None = None,
        memory: MemoryStore | None = None,
        activity_log: ActivityLog | None = None,
        chat: ChatNotifier | None = None,
        chat_context: ChatContext | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> None:
        self.session_id = session_id
        self.context_id = context_id
        self.tracker = tracker or ExecutionTracker()
        self.strategy = strategy or ExecutionStrategy()
        self.messages = messages
        self._store = store
        # Tools used across every attempt of the session, persisted on the record
        self._session_tools = session_tools if session_tools is not None else []
        self._memory = memory
        self._activity_log = activity_log
        self._chat = chat
        self._chat_context = chat_context
        self._token = cancellation_token

    @property
    def trackable(self) -> bool:
        """Whether narration goes to the activity log and the queue is drained."""
        return is_trackable(self.context_id, self._activity_log)

    def wrap(self, spec: ToolSpec) -> ToolExecutor:
        """Return the supervised executor for ``spec``."""

        async def supervised(params: dict[str, Any]) -> Any:  # noqa: ANN401
            return await self.execute(spec, params)

        supervised.__name__ = f"supervised_{spec.name}"
        return supervised

    async def execute(self, spec: ToolSpec, params: dict[str, Any] | None) -> Any:  # noqa: ANN401
        """Run one supervised tool call.

        Raises:
            Aborted: The cancellation token or durable flag was set.
            StopCommandReceived: A stop message was drained from the queue.
            CircuitBreakerTripped: The identical call already ran
                CIRCUIT_BREAKER_THRESHOLD times in the recent window.
        """
        name = spec.name
        params = params or {}

        await self._record_current_tool(name)

        if self._token is not None:
            self._token.raise_if_cancelled("Request was aborted during tool execution")

        await self._check_durable_cancellation()

        signature = call_signature(name, params)
        prior = self.tracker.prior_identical_calls(signature)
        if prior >= CIRCUIT_BREAKER_THRESHOLD:
            error = CircuitBreakerTripped(name, prior + 1)
            logger.warning("Session %s: %s", self.session_id, error)
            await self._thought(str(error))
            raise error
        self.tracker.record_call(signature)

        if self.trackable:
            await self._drain_queue()

        category = spec.resolved_category
        previous_phase = self.strategy.phase
        for note in self.strategy.record(name, category):
            await self._thought(note)
        if self.strategy.phase != previous_phase:
            await self._update_session(status=self.strategy.phase)

        parameter_summary = format_parameters(name, params)
        await self._thought(f"Using {name}: {parameter_summary}")

        try:
            result = await spec.executor(params)
        except Aborted:
            raise
        except Exception as e:
            return await self._handle_failure(name, params, e)

        self.tracker.tools_used.add(name)
        result_summary = summarize_success(name, result, params)
        if category is ToolCategory.ACTION:
            self.tracker.actions_performed.append(f"{name}: {result_summary}")
            await self._narrate(
                "action", self.context_id, name, parameter_summary, result_summary
            )
        else:
            await self._thought(f"{name}: {result_summary}")

        await self._track_usage(
            name, True, params, f"{name}: {result_summary}", detailed_output=result
        )
        return result

    async def _handle_failure(
        self, name: str, params: dict[str, Any], exc: Exception
    ) -> dict[str, Any]:
        error = str(exc) or type(exc).__name__
        failure = tool_failure(name, error, params)
        logger.info("Tool %s failed in session %s: %s", name, self.session_id, error)
        await self._thought(f"{failure['message']}\nSuggestion: {failure['guidance']}")
        await self._track_usage(name, False, params, failure["message"])
        return failure

    async def _check_durable_cancellation(self) -> None:
        try:
            cancelled = await self._store.is_cancelled(self.session_id)
        except Exception:
            logger.warning(
                "Could not read cancellation flag for %s", self.session_id, exc_info=True
            )
            return
        if not cancelled:
            return
        logger.info("Session %s cancelled through the session store", self.session_id)
        try:
            await self._store.complete_and_archive(
                self.session_id, "cancelled", CANCELLED_BY_USER
            )
        except Exception:
            logger.warning(
                "Could not archive cancelled session %s", self.session_id, exc_info=True
            )
        raise Aborted(CANCELLED_BY_USER)

    async def _drain_queue(self) -> None:
        try:
            queued = await self._store.drain_messages(self.session_id)
        except Exception:
            logger.warning(
                "Could not drain queued messages for %s", self.session_id, exc_info=True
            )
            return
        if not queued:
            return

        logger.info("Session %s received %d queued message(s)", self.session_id, len(queued))
        await self._thought(
            f"Processing {len(queued)} new message(s) received during analysis"
        )

        if any(message.type == "stop" for message in queued):
            logger.info("Stop command received for session %s", self.session_id)
            await self._narrate("response", self.context_id, STOP_NOTICE)
            if self._chat is not None and self._chat_context is not None:
                try:
                    await self._chat.post_message(
                        self._chat_context.channel_id,
                        self._chat_context.thread_ts,
                        STOP_NOTICE,
                    )
                except Exception:
                    logger.warning("Could not post stop notice to chat", exc_info=True)
            raise StopCommandReceived()

        for message in queued:
            self.messages.append(interjection_message(message))
        await self._update_session(messages=list(self.messages))

    # ------------------------------------------------------------------
    # Best-effort collaborators
    # ------------------------------------------------------------------

    async def _record_current_tool(self, name: str) -> None:
        if name not in self._session_tools:
            self._session_tools.append(name)
        await self._update_session(current_tool=name, tools_used=list(self._session_tools))

    async def _update_session(self, **fields: Any) -> None:  # noqa: ANN401
        try:
            await self._store.update_active(self.session_id, **fields)
        except Exception:
            logger.warning(
                "Could not update session %s", self.session_id, exc_info=True
            )

    async def _thought(self, text: str) -> None:
        await self._narrate("thought", self.context_id, text)

    async def _narrate(self, method: str, *args: str) -> None:
        if not self.trackable:
            return
        try:
            await getattr(self._activity_log, method)(*args)
        except Exception:
            logger.warning("Activity log %s failed", method, exc_info=True)

    async def _track_usage(
        self,
        name: str,
        success: bool,
        params: dict[str, Any],
        response: str,
        detailed_output: Any = None,  # noqa: ANN401
    ) -> None:
        if self._memory is None:
            return
        try:
            await self._memory.track_tool_usage(
                name,
                success,
                context_id=self.context_id,
                input=params,
                response=response,
                detailed_output=detailed_output,
            )
        except Exception:
            logger.warning("Could not record usage of %s", name, exc_info=True)
