"""Context id extraction and platform detection.

The context id scopes session uniqueness, memory and narration. Issue
identifiers found in the conversation win over chat-derived keys, which
win over the shared ``general`` bucket.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from otron.core.models import GENERAL_CONTEXT

if TYPE_CHECKING:
    from collections.abc import Sequence

    from otron.core.models import ChatContext, Message, Platform

ISSUE_KEY_PATTERN = re.compile(r"\b([A-Z]{2,}-\d+)\b")
ISSUE_UUID_PATTERN = re.compile(r"issue\s+([a-f0-9-]{36})", re.IGNORECASE)

SLACK_PREFIX = "slack:"


def extract_context_id(
    messages: Sequence[Message], chat_context: ChatContext | None = None
) -> str:
    """Derive the context id for a conversation.

    Messages are scanned in order; within a message an issue key such as
    ``OTR-123`` is preferred over an ``issue <uuid>`` reference. Only
    string contents are scanned.

    Args:
        messages: Conversation transcript.
        chat_context: Slack thread the request came from, if any.

    Returns:
        The first issue identifier found, else ``slack:{channel}[:{thread}]``
        when a chat context is given, else ``general``.
    """
    for message in messages:
        content = message.get("content")
        if not isinstance(content, str):
            continue
        match = ISSUE_KEY_PATTERN.search(content)
        if match:
            return match.group(1)
        match = ISSUE_UUID_PATTERN.search(content)
        if match:
            return match.group(1)

    if chat_context is not None and chat_context.channel_id:
        if chat_context.thread_ts:
            return f"{SLACK_PREFIX}{chat_context.channel_id}:{chat_context.thread_ts}"
        return f"{SLACK_PREFIX}{chat_context.channel_id}"

    return GENERAL_CONTEXT


def determine_platform(
    context_id: str, chat_context: ChatContext | None = None
) -> Platform:
    """Pick the platform a session belongs to."""
    if chat_context is not None:
        return "slack"
    if is_issue_context(context_id):
        return "linear"
    return "general"


def is_issue_context(context_id: str) -> bool:
    """True for contexts attributable to an issue tracker."""
    return (
        bool(context_id)
        and context_id != GENERAL_CONTEXT
        and not context_id.startswith(SLACK_PREFIX)
    )


def is_trackable(context_id: str, activity_log: object | None) -> bool:
    """True when a session narrates to ``activity_log`` and drains its queue.

    Only trackable sessions claim their context, so only they can receive
    events routed into a running session.
    """
    return activity_log is not None and is_issue_context(context_id)
