"""Routing of inbound events to new or already-running sessions.

A second trigger for a context that already has a live, trackable
session is delivered into that session's message queue instead of
starting a competing session. The running session picks it up as an
interjection (or stops, for a ``stop`` message) before its next tool
call. Sessions that never drain their queue (chat threads, or issue
sessions without an activity log) never claim their context, so events
are never routed to them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from otron.core.errors import SessionConflictError
from otron.core.models import QueuedMessage, message_text
from otron.pipeline.context import extract_context_id

if TYPE_CHECKING:
    from collections.abc import Sequence

    from otron.core.models import ChatContext, Message, QueuedMessageType
    from otron.infra.cancellation import CancellationToken
    from otron.infra.store.session_store import SessionStore
    from otron.orchestration.session_lifecycle import (
        PlatformClients,
        SessionLifecycleManager,
        UpdateStatus,
    )

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of dispatching one event.

    Attributes:
        queued: True if the event went into a running session's queue,
            where it is consumed before that session's next tool call.
        session_id: The session that received a queued event, or the
            external session id of a newly run session.
        response: Final response text of a newly run session.
    """

    queued: bool
    session_id: str | None = None
    response: str | None = None


class SessionDispatcher:
    """Starts a session, or enqueues into the one already holding the context."""

    def __init__(self, manager: SessionLifecycleManager, store: SessionStore) -> None:
        self._manager = manager
        self._store = store

    async def dispatch(
        self,
        messages: Sequence[Message],
        *,
        update_status: UpdateStatus | None = None,
        platform_clients: PlatformClients | None = None,
        chat_context: ChatContext | None = None,
        cancellation_token: CancellationToken | None = None,
        external_session_id: str | None = None,
        message_type: QueuedMessageType = "prompted",
        user_id: str | None = None,
    ) -> DispatchOutcome:
        """Run ``messages`` as a new session unless its context is taken.

        A ``stop`` event never starts a session. It is delivered only to a
        live session that drains its queue; otherwise ``queued`` is False
        and nothing was delivered.
        """
        context_id = extract_context_id(messages, chat_context)
        holder = await self._store.context_holder(context_id)
        if holder is not None:
            logger.info(
                "Context %s is held by session %s; queueing %s event",
                context_id,
                holder,
                message_type,
            )
            await self._enqueue(holder, context_id, messages, message_type, user_id)
            return DispatchOutcome(queued=True, session_id=holder)
        if message_type == "stop":
            logger.info(
                "No session draining messages for %s; stop not delivered", context_id
            )
            return DispatchOutcome(queued=False)

        try:
            response = await self._manager.process_request(
                messages,
                update_status=update_status,
                platform_clients=platform_clients,
                chat_context=chat_context,
                cancellation_token=cancellation_token,
                external_session_id=external_session_id,
            )
        except SessionConflictError as e:
            logger.info(
                "Context %s is held by session %s; queueing event",
                e.context_id,
                e.session_id,
            )
            await self._enqueue(e.session_id, e.context_id, messages, message_type, user_id)
            return DispatchOutcome(queued=True, session_id=e.session_id)

        return DispatchOutcome(
            queued=False, session_id=external_session_id, response=response
        )

    async def _enqueue(
        self,
        session_id: str,
        context_id: str,
        messages: Sequence[Message],
        message_type: QueuedMessageType,
        user_id: str | None,
    ) -> None:
        content = message_text(messages[-1]) if messages else ""
        await self._store.enqueue_message(
            session_id,
            QueuedMessage(
                content=content,
                session_id=session_id,
                issue_id=context_id,
                type=message_type,
                user_id=user_id,
            ),
        )
