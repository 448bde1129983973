"""Durable session store.

Holds active sessions (TTL'd), completed sessions (permanent, paginated),
a message queue per session and a cancellation flag per session. The key
layout matches the deployed store so existing dashboards keep working:

    active_session:{id}        JSON ActiveSession, expires after active_ttl
    active_sessions_list       set of active session ids
    completed_session:{id}     JSON CompletedSession, no expiry
    completed_sessions_list    list of completed ids, newest first
    message_queue:{id}         list of JSON QueuedMessage, newest first
    session_cancelled:{id}     cancellation flag
    context_claim:{context}    session id owning the context

All mutations are last-write-wins partial updates. Only the lifecycle
manager owning a session mutates its fields; other callers influence a
running session through the message queue or the cancellation flag.
"""

from __future__ import annotations

import json
import logging
import secrets
import string
from typing import TYPE_CHECKING, Any

from otron.core.models import (
    ACTIVE_STATUSES,
    GENERAL_CONTEXT,
    ActiveSession,
    CompletedSession,
    QueuedMessage,
    now_ms,
)

if TYPE_CHECKING:
    from otron.core.models import FinalStatus
    from otron.core.protocols import KeyValueClient

logger = logging.getLogger(__name__)

ACTIVE_KEY = "active_session:{}"
ACTIVE_INDEX = "active_sessions_list"
COMPLETED_KEY = "completed_session:{}"
COMPLETED_INDEX = "completed_sessions_list"
QUEUE_KEY = "message_queue:{}"
CANCELLED_KEY = "session_cancelled:{}"
CLAIM_KEY = "context_claim:{}"

DEFAULT_ACTIVE_TTL = 3600
QUEUE_TTL = 3600
CANCEL_TTL = 3600

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_session_id() -> str:
    """Generate a unique session id of the form ``session_{ms}_{random}``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"session_{now_ms()}_{suffix}"


class SessionStore:
    """Session persistence over a KeyValueClient.

    Methods propagate ``StoreError`` from the backend; callers decide
    which operations are best-effort.
    """

    def __init__(
        self, kv: KeyValueClient, *, active_ttl: int = DEFAULT_ACTIVE_TTL
    ) -> None:
        self._kv = kv
        self.active_ttl = active_ttl

    # ------------------------------------------------------------------
    # Active sessions
    # ------------------------------------------------------------------

    async def create_active(self, session: ActiveSession) -> None:
        """Persist a new active session and add it to the active index."""
        await self._kv.set(
            ACTIVE_KEY.format(session.session_id),
            json.dumps(session.to_dict()),
            ex=self.active_ttl,
        )
        await self._kv.sadd(ACTIVE_INDEX, session.session_id)
        logger.debug(
            "Stored active session %s for %s", session.session_id, session.context_id
        )

    async def get_active(self, session_id: str) -> ActiveSession | None:
        raw = await self._kv.get(ACTIVE_KEY.format(session_id))
        if raw is None:
            return None
        try:
            return ActiveSession.from_dict(json.loads(raw))
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning("Discarding unreadable active session %s: %s", session_id, e)
            return None

    async def update_active(self, session_id: str, **fields: Any) -> bool:  # noqa: ANN401
        """Apply a partial update to an active session.

        Read-modify-write without locking; the expiry is refreshed on every
        write, together with the context claim while this session holds it.
        ``tools_used`` is de-duplicated.

        Returns:
            True if the session existed and was updated.
        """
        session = await self.get_active(session_id)
        if session is None:
            return False
        for name, value in fields.items():
            if not hasattr(session, name):
                raise AttributeError(f"ActiveSession has no field {name!r}")
            setattr(session, name, value)
        session.tools_used = list(dict.fromkeys(session.tools_used))
        await self._kv.set(
            ACTIVE_KEY.format(session_id),
            json.dumps(session.to_dict()),
            ex=self.active_ttl,
        )
        await self._refresh_claim(session)
        return True

    async def _refresh_claim(self, session: ActiveSession) -> None:
        if session.context_id == GENERAL_CONTEXT:
            return
        key = CLAIM_KEY.format(session.context_id)
        if await self._kv.get(key) == session.session_id:
            await self._kv.expire(key, self.active_ttl)

    async def list_active_ids(self) -> list[str]:
        return sorted(await self._kv.smembers(ACTIVE_INDEX))

    async def list_active(self) -> list[ActiveSession]:
        """Load every active session, pruning index entries whose record expired."""
        sessions: list[ActiveSession] = []
        for session_id in await self.list_active_ids():
            session = await self.get_active(session_id)
            if session is None:
                await self._kv.srem(ACTIVE_INDEX, session_id)
                continue
            sessions.append(session)
        return sessions

    async def find_active_for_issue(self, issue_id: str) -> ActiveSession | None:
        """Return a still-working session for ``issue_id``, if any.

        This is a scan over all active ids and is advisory only: two
        near-simultaneous triggers can both miss each other. Use
        ``claim_context`` when creation must be exclusive.
        """
        for session in await self.list_active():
            if (
                session.metadata.issue_id == issue_id
                and session.status in ACTIVE_STATUSES
            ):
                return session
        return None

    async def complete_and_archive(
        self,
        session_id: str,
        final_status: FinalStatus,
        error: str | None = None,
    ) -> CompletedSession | None:
        """Move an active session into the permanent archive.

        The archive write, index push and active-record removal run in one
        transaction. When no active record exists (already archived or
        expired) nothing is written and None is returned, so repeated
        calls never produce duplicate archive entries.
        """
        active = await self.get_active(session_id)
        if active is None:
            logger.debug("No active session %s to archive", session_id)
            return None

        completed = CompletedSession.from_active(active, final_status, error)
        await self._kv.multi(
            [
                ("set", (COMPLETED_KEY.format(session_id), json.dumps(completed.to_dict()))),
                ("lpush", (COMPLETED_INDEX, session_id)),
                ("delete", (ACTIVE_KEY.format(session_id),)),
                ("srem", (ACTIVE_INDEX, session_id)),
            ]
        )
        logger.info(
            "Archived session %s as %s (%d ms)",
            session_id,
            final_status,
            completed.duration,
        )
        return completed

    # ------------------------------------------------------------------
    # Context claims
    # ------------------------------------------------------------------

    async def claim_context(self, context_id: str, session_id: str) -> str | None:
        """Atomically claim ``context_id`` for ``session_id``.

        The shared ``general`` bucket is never claimed. A claim whose
        holder no longer has an active record is treated as stale and
        replaced once.

        Returns:
            None when the claim is held by ``session_id``, otherwise the
            session id of the live holder.
        """
        if context_id == GENERAL_CONTEXT:
            return None
        key = CLAIM_KEY.format(context_id)
        for _ in range(2):
            if await self._kv.set(key, session_id, ex=self.active_ttl, nx=True):
                return None
            holder = await self._kv.get(key)
            if holder is None:
                continue
            if holder == session_id:
                return None
            if await self.get_active(holder) is not None:
                return holder
            logger.info(
                "Replacing stale claim on %s held by %s", context_id, holder
            )
            await self._kv.delete(key)
        return await self._kv.get(key)

    async def context_holder(self, context_id: str) -> str | None:
        """Session id of the live session claiming ``context_id``, if any."""
        if context_id == GENERAL_CONTEXT:
            return None
        holder = await self._kv.get(CLAIM_KEY.format(context_id))
        if holder is None or await self.get_active(holder) is None:
            return None
        return holder

    async def release_context(self, context_id: str, session_id: str) -> None:
        """Drop the claim on ``context_id`` if ``session_id`` still owns it."""
        if context_id == GENERAL_CONTEXT:
            return
        await self._kv.delete_if_equals(CLAIM_KEY.format(context_id), session_id)

    # ------------------------------------------------------------------
    # Cancellation and message queue
    # ------------------------------------------------------------------

    async def is_cancelled(self, session_id: str) -> bool:
        return bool(await self._kv.get(CANCELLED_KEY.format(session_id)))

    async def request_cancellation(self, session_id: str) -> None:
        """Flag a session as cancelled; observed before its next tool call."""
        await self._kv.set(CANCELLED_KEY.format(session_id), "true", ex=CANCEL_TTL)
        logger.info("Cancellation requested for session %s", session_id)

    async def enqueue_message(self, session_id: str, message: QueuedMessage) -> None:
        key = QUEUE_KEY.format(session_id)
        await self._kv.lpush(key, json.dumps(message.to_dict()))
        await self._kv.expire(key, QUEUE_TTL)
        logger.info("Queued %s message for session %s", message.type, session_id)

    async def drain_messages(self, session_id: str) -> list[QueuedMessage]:
        """Fetch and clear the session's queue in one transaction.

        Returns:
            Queued messages in chronological order (oldest first).
        """
        key = QUEUE_KEY.format(session_id)
        raw_items, _ = await self._kv.multi([("lrange", (key, 0, -1)), ("delete", (key,))])
        messages: list[QueuedMessage] = []
        # LPUSH stores newest first
        for raw in reversed(raw_items or []):
            try:
                messages.append(QueuedMessage.from_dict(json.loads(raw)))
            except (json.JSONDecodeError, TypeError) as e:
                logger.warning("Dropping malformed queued message for %s: %s", session_id, e)
        return messages

    # ------------------------------------------------------------------
    # Completed sessions
    # ------------------------------------------------------------------

    async def get_completed(self, session_id: str) -> CompletedSession | None:
        raw = await self._kv.get(COMPLETED_KEY.format(session_id))
        if raw is None:
            return None
        return CompletedSession.from_dict(json.loads(raw))

    async def list_completed(
        self, offset: int = 0, limit: int = 20
    ) -> list[CompletedSession]:
        """Page through completed sessions, newest first."""
        if limit <= 0:
            return []
        ids = await self._kv.lrange(COMPLETED_INDEX, offset, offset + limit - 1)
        sessions: list[CompletedSession] = []
        for session_id in ids:
            completed = await self.get_completed(session_id)
            if completed is not None:
                sessions.append(completed)
        return sessions

    async def count_completed(self) -> int:
        return await self._kv.llen(COMPLETED_INDEX)
