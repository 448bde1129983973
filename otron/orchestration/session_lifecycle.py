"""Session lifecycle manager.

Owns one session from creation to archive:

1. Derive the session id, context id and platform
2. Claim the context and persist the active record
3. Run the bounded retry loop (model-call phase, then goal evaluation)
4. Archive the session exactly once, whichever way the loop exits

Cancellation (``Aborted``) is terminal and never retried. Other attempt
failures are retried with an error-recovery message until the final
attempt, whose failure archives the session as ``error`` and propagates.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from otron.core.errors import Aborted, SessionConflictError
from otron.core.models import ActiveSession, SessionMetadata
from otron.infra.store.session_store import generate_session_id
from otron.pipeline.context import (
    determine_platform,
    extract_context_id,
    is_issue_context,
    is_trackable,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from otron.core.models import (
        ChatContext,
        FinalStatus,
        GenerationResult,
        Message,
        Platform,
        SessionStatus,
    )
    from otron.core.protocols import (
        ActivityLog,
        ChatNotifier,
        SessionCompletionHook,
    )
    from otron.infra.cancellation import CancellationToken
    from otron.infra.store.session_store import SessionStore
    from otron.pipeline.goal_evaluator import GoalEvaluator
    from otron.pipeline.model_call import ModelCallPhase

    UpdateStatus = Callable[[str], Awaitable[None] | None]

logger = logging.getLogger(__name__)

MAX_RETRY_ATTEMPTS = 2
GOAL_CONFIDENCE_THRESHOLD = 0.7

_FINAL_THOUGHTS: dict[str, str] = {
    "completed": "Session completed successfully",
    "cancelled": "Session cancelled by user",
}


@dataclass
class PlatformClients:
    """Optional per-request collaborators.

    Attributes:
        activity_log: Issue-tracker narration sink.
        chat: Chat client for notices posted back into the thread.
        completion_hook: Notified when a session with an external id ends.
    """

    activity_log: ActivityLog | None = None
    chat: ChatNotifier | None = None
    completion_hook: SessionCompletionHook | None = None


class _SessionRun:
    """Mutable state of one ``process_request`` invocation."""

    def __init__(
        self,
        *,
        store: SessionStore,
        session_id: str,
        context_id: str,
        platform: Platform,
        clients: PlatformClients,
        update_status: UpdateStatus | None,
        external_session_id: str | None,
        claimed: bool = False,
    ) -> None:
        self.store = store
        self.session_id = session_id
        self.context_id = context_id
        self.platform = platform
        self.clients = clients
        self.external_session_id = external_session_id
        self.claimed = claimed
        self.tools_used: list[str] = []
        self.actions_performed: list[str] = []
        self._update_status = update_status
        self._cleaned_up = False

    @property
    def trackable(self) -> bool:
        return is_trackable(self.context_id, self.clients.activity_log)

    async def thought(self, text: str) -> None:
        if not self.trackable:
            return
        try:
            await self.clients.activity_log.thought(self.context_id, text)  # type: ignore[union-attr]
        except Exception:
            logger.warning("Activity log thought failed", exc_info=True)

    async def response(self, text: str) -> None:
        if not self.trackable:
            return
        try:
            await self.clients.activity_log.response(self.context_id, text)  # type: ignore[union-attr]
        except Exception:
            logger.warning("Activity log response failed", exc_info=True)

    async def report_status(self, text: str) -> None:
        if self._update_status is None:
            return
        try:
            result = self._update_status(text)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.warning("Status callback failed", exc_info=True)

    async def set_status(self, status: SessionStatus) -> None:
        await self.update(status=status)

    async def update(self, **fields: object) -> None:
        try:
            await self.store.update_active(self.session_id, **fields)
        except Exception:
            logger.warning("Could not update session %s", self.session_id, exc_info=True)

    async def cleanup(self, final_status: FinalStatus, error: str | None = None) -> None:
        """Archive the session and release its claim. Runs at most once."""
        if self._cleaned_up:
            return
        self._cleaned_up = True

        try:
            await self.store.complete_and_archive(self.session_id, final_status, error)
        except Exception:
            logger.exception("Could not archive session %s", self.session_id)
        if self.claimed:
            try:
                await self.store.release_context(self.context_id, self.session_id)
            except Exception:
                logger.warning(
                    "Could not release claim on %s", self.context_id, exc_info=True
                )

        await self.thought(
            _FINAL_THOUGHTS.get(final_status, f"Session ended with error: {error}")
        )

        hook = self.clients.completion_hook
        if self.external_session_id and hook is not None:
            try:
                await hook.complete_session(self.external_session_id, final_status)
            except Exception:
                logger.warning(
                    "Completion hook failed for %s", self.external_session_id, exc_info=True
                )
        logger.info("Session %s finished: %s", self.session_id, final_status)


class SessionLifecycleManager:
    """Creates, runs and tears down sessions.

    Args:
        store: Durable session store.
        model_phase: Runs one tool-using model invocation per attempt.
        evaluator: Judges goal completion between attempts.
        max_retry_attempts: Upper bound on model-call phases per session.
        goal_confidence_threshold: Minimum evaluator confidence for a
            complete verdict to end the loop.
    """

    def __init__(
        self,
        *,
        store: SessionStore,
        model_phase: ModelCallPhase,
        evaluator: GoalEvaluator,
        max_retry_attempts: int = MAX_RETRY_ATTEMPTS,
        goal_confidence_threshold: float = GOAL_CONFIDENCE_THRESHOLD,
    ) -> None:
        if max_retry_attempts < 1:
            raise ValueError("max_retry_attempts must be at least 1")
        self._store = store
        self._model_phase = model_phase
        self._evaluator = evaluator
        self.max_retry_attempts = max_retry_attempts
        self.goal_confidence_threshold = goal_confidence_threshold

    async def process_request(
        self,
        messages: Sequence[Message],
        update_status: UpdateStatus | None = None,
        platform_clients: PlatformClients | None = None,
        chat_context: ChatContext | None = None,
        cancellation_token: CancellationToken | None = None,
        external_session_id: str | None = None,
    ) -> str:
        """Handle one triggering event end to end.

        Args:
            messages: Conversation transcript; the last entry is the request.
            update_status: Optional callback receiving short progress text.
            platform_clients: Optional narration, chat and completion clients.
            chat_context: Slack thread the request came from, if any.
            cancellation_token: In-process cancellation signal.
            external_session_id: Session id assigned by an external platform;
                used as the session id and passed to the completion hook.

        Returns:
            The final response text of the last attempt that ran.

        Raises:
            SessionConflictError: Another live session holds the context.
                Only trackable sessions claim a context; others may overlap.
            Aborted: The session was cancelled (token, durable flag or stop
                message). The session is archived as ``cancelled`` first.
            Exception: Whatever the final attempt raised, after the session
                was archived as ``error``.
        """
        clients = platform_clients or PlatformClients()
        session_id = external_session_id or generate_session_id()
        context_id = extract_context_id(messages, chat_context)
        platform = determine_platform(context_id, chat_context)

        # Only sessions that drain their queue can take events routed to them
        claimed = is_trackable(context_id, clients.activity_log)
        if claimed:
            holder = await self._store.claim_context(context_id, session_id)
            if holder is not None:
                raise SessionConflictError(context_id, holder)

        run = _SessionRun(
            store=self._store,
            session_id=session_id,
            context_id=context_id,
            platform=platform,
            clients=clients,
            update_status=update_status,
            external_session_id=external_session_id,
            claimed=claimed,
        )
        session = ActiveSession(
            session_id=session_id,
            context_id=context_id,
            platform=platform,
            messages=copy.deepcopy(list(messages)),
            metadata=SessionMetadata(
                issue_id=context_id if is_issue_context(context_id) else None,
                channel_id=chat_context.channel_id if chat_context else None,
                thread_ts=chat_context.thread_ts if chat_context else None,
            ),
        )
        try:
            await self._store.create_active(session)
        except Exception as e:
            await run.cleanup("error", str(e))
            raise
        logger.info(
            "Session %s started for %s (%s)", session_id, context_id, platform
        )
        await run.thought(f"Session initialized for {context_id}")

        try:
            if cancellation_token is not None:
                cancellation_token.raise_if_cancelled()
            response = await self._run_attempts(
                run, messages, chat_context, cancellation_token
            )
        except (Aborted, asyncio.CancelledError) as e:
            logger.info("Session %s cancelled: %s", session_id, e)
            await run.cleanup("cancelled")
            raise
        except Exception as e:
            logger.exception("Session %s failed", session_id)
            await run.cleanup("error", str(e))
            raise

        await run.cleanup("completed")
        return response

    async def _run_attempts(
        self,
        run: _SessionRun,
        messages: Sequence[Message],
        chat_context: ChatContext | None,
        token: CancellationToken | None,
    ) -> str:
        # Evaluation judges the original request; feedback goes to the live list
        original_messages = copy.deepcopy(list(messages))
        live_messages = list(messages)
        response = ""

        for attempt in range(1, self.max_retry_attempts + 1):
            is_last = attempt == self.max_retry_attempts
            if token is not None:
                token.raise_if_cancelled()

            await run.set_status("planning")
            await run.report_status("is thinking...")

            try:
                result = await self._model_phase.run(
                    session_id=run.session_id,
                    context_id=run.context_id,
                    platform=run.platform,
                    messages=live_messages,
                    session_tools=run.tools_used,
                    activity_log=run.clients.activity_log,
                    chat=run.clients.chat,
                    chat_context=chat_context,
                    cancellation_token=token,
                )
            except Aborted:
                raise
            except Exception as e:
                if is_last:
                    raise
                logger.warning(
                    "Attempt %d of session %s failed: %s", attempt, run.session_id, e
                )
                live_messages.append(
                    {
                        "role": "user",
                        "content": (
                            f"[ERROR RECOVERY] Previous attempt failed: {e}. "
                            "Please try a different approach."
                        ),
                    }
                )
                continue

            response = result.text
            await self._record_attempt(run, result)
            await run.thought(f"Completed analysis using {len(result.tools_used)} tools")
            await run.response(response)

            if is_last:
                break

            if token is not None:
                token.raise_if_cancelled()
            await run.set_status("completing")
            await run.report_status(f"Evaluating goal completion for attempt {attempt}...")
            evaluation = await self._evaluator.evaluate_goal_completion(
                original_messages, result.summary(), attempt
            )
            if evaluation.meets_threshold(self.goal_confidence_threshold):
                logger.info(
                    "Session %s met its goal on attempt %d", run.session_id, attempt
                )
                break

            logger.info(
                "Session %s goal not met on attempt %d (confidence %.2f); retrying",
                run.session_id,
                attempt,
                evaluation.confidence,
            )
            live_messages.append(
                {
                    "role": "user",
                    "content": self._evaluator.generate_retry_feedback(
                        evaluation, attempt
                    ),
                }
            )

        return response

    async def _record_attempt(self, run: _SessionRun, result: GenerationResult) -> None:
        for name in result.tools_used:
            if name not in run.tools_used:
                run.tools_used.append(name)
        run.actions_performed.extend(result.actions_performed)
        await run.update(
            current_tool=None,
            tools_used=list(run.tools_used),
            actions_performed=list(run.actions_performed),
        )
