"""Key-value backed long-term memory, scoped by context id.

Memory entries are JSON documents pushed onto per-context lists:

    memory:issue:{context_id}:{kind}   newest first, trimmed to 50, 90 day expiry
    memory:tools:{tool}:stats          hash of attempts/successes counters

Retrieval ranks entries by a stored relevance score, word overlap with
the current message, and recency, then renders them into text blocks
that the model-call phase appends to the system prompt.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from otron.core.models import now_ms

if TYPE_CHECKING:
    from otron.core.protocols import KeyValueClient

logger = logging.getLogger(__name__)

MEMORY_EXPIRY = 60 * 60 * 24 * 90
MAX_MEMORIES_PER_CONTEXT = 50
MAX_MEMORY_ENTRIES_TO_INCLUDE = 8
MAX_CONTEXT_LENGTH = 2000
MAX_STORED_RESPONSE = 500

_MEMORY_KEY = "memory:issue:{}:{}"
_STATS_KEY = "memory:tools:{}:stats"
_DAY_MS = 1000 * 60 * 60 * 24


def _iso(timestamp_ms: int) -> str:
    return (
        datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def _content_text(content: Any) -> str:  # noqa: ANN401
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            block.get("text", "")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        )
    return json.dumps(content, default=str)


def extract_action_summary(
    tool_name: str, params: dict[str, Any], output: Any  # noqa: ANN401
) -> dict[str, Any] | None:
    """Summarize what a successful tool call accomplished.

    Returns:
        A dict with an ``action_type`` key and tool-specific fields, or
        None for tools without a structured summary.
    """
    result = output if isinstance(output, dict) else {}
    if tool_name == "createBranch":
        return {
            "action_type": "branch_creation",
            "branch": params.get("branch") or params.get("branchName"),
            "repository": params.get("repository"),
        }
    if tool_name == "createPullRequest":
        return {
            "action_type": "pull_request_creation",
            "number": result.get("number"),
            "title": params.get("title"),
            "head": params.get("head"),
            "base": params.get("base"),
        }
    if tool_name in {
        "createFile",
        "editCode",
        "addCode",
        "removeCode",
        "replaceLines",
        "insertLines",
        "deleteLines",
    }:
        return {
            "action_type": "file_modification",
            "file_path": params.get("file_path") or params.get("path"),
            "modification": tool_name,
        }
    if tool_name == "searchEmbeddedCode":
        results = output if isinstance(output, list) else result.get("results") or []
        return {
            "action_type": "code_search",
            "query": params.get("query"),
            "results_count": len(results),
        }
    if tool_name == "updateIssueStatus":
        return {
            "action_type": "issue_status_update",
            "issue_id": params.get("issueId"),
            "status": params.get("status"),
        }
    if tool_name in {"sendSlackMessage", "sendChannelMessage", "sendDirectMessage"}:
        return {
            "action_type": "slack_message",
            "target": params.get("channel") or params.get("userId"),
            "preview": str(params.get("text", ""))[:100],
        }
    return None


def _describe_action(entry: dict[str, Any]) -> str:
    data = entry.get("data") or {}
    summary = data.get("action_summary") or {}
    kind = summary.get("action_type")
    if kind == "branch_creation":
        return f"Created branch \"{summary.get('branch')}\" in {summary.get('repository')}"
    if kind == "pull_request_creation":
        return (
            f"Created PR #{summary.get('number')}: \"{summary.get('title')}\" "
            f"({summary.get('head')} → {summary.get('base')})"
        )
    if kind == "file_modification":
        return f"Modified {summary.get('file_path')} using {summary.get('modification')}"
    if kind == "code_search":
        return (
            f"Searched for \"{summary.get('query')}\" - found "
            f"{summary.get('results_count')} results"
        )
    if kind == "issue_status_update":
        return f"Updated issue {summary.get('issue_id')} status to \"{summary.get('status')}\""
    if kind == "slack_message":
        return f"Sent message to {summary.get('target')}: \"{summary.get('preview')}\""
    return f"Tool: {data.get('tool')}, Success: {data.get('success')}"


class KeyValueMemoryStore:
    """MemoryStore implementation over a KeyValueClient.

    Methods propagate store failures; the session core treats every
    memory call as best-effort and logs what escapes.
    """

    def __init__(self, kv: KeyValueClient) -> None:
        self._kv = kv

    async def store_memory(
        self, context_id: str, kind: str, payload: dict[str, Any]
    ) -> None:
        entry = {
            "timestamp": now_ms(),
            "type": kind,
            "data": payload,
            "relevance_score": self._relevance_score(payload, kind),
        }
        key = _MEMORY_KEY.format(context_id, kind)
        await self._kv.lpush(key, json.dumps(entry, default=str))
        await self._kv.ltrim(key, 0, MAX_MEMORIES_PER_CONTEXT - 1)
        await self._kv.expire(key, MEMORY_EXPIRY)
        logger.debug("Stored %s memory for %s", kind, context_id)

    async def get_previous_conversations(
        self, context_id: str, current_text: str
    ) -> str:
        """Render the most relevant earlier conversation turns.

        The block is capped at MAX_CONTEXT_LENGTH characters; entries that
        would overflow are replaced by a truncation marker.
        """
        memories = await self._retrieve(context_id, "conversation", current_text)
        if not memories:
            return ""

        block = "\n\nPREVIOUS CONVERSATIONS:\n"
        for memory in memories:
            data = memory.get("data") or {}
            role = data.get("role")
            if role == "assistant":
                line = f"[{_iso(memory['timestamp'])}] Assistant: {_content_text(data.get('content'))}\n"
            elif role == "user":
                line = f"[{_iso(memory['timestamp'])}] User: {_content_text(data.get('content'))}\n"
            else:
                continue
            if len(block) + len(line) > MAX_CONTEXT_LENGTH:
                block += "[... additional context truncated for brevity ...]\n"
                break
            block += line
        return block

    async def get_issue_history(self, context_id: str) -> str:
        actions = await self._retrieve(context_id, "action", None)
        if not actions:
            return ""
        lines = [
            f"[{_iso(action['timestamp'])}] {_describe_action(action)}"
            for action in actions
        ]
        return "\n\nPREVIOUS ACTIONS:\n" + "\n".join(lines) + "\n"

    async def track_tool_usage(
        self,
        tool_name: str,
        success: bool,
        *,
        context_id: str,
        input: dict[str, Any],
        response: str,
        detailed_output: Any = None,  # noqa: ANN401
    ) -> None:
        """Count the attempt and store the interaction as an action memory."""
        stats_key = _STATS_KEY.format(tool_name)
        await self._kv.hincrby(stats_key, "attempts", 1)
        if success:
            await self._kv.hincrby(stats_key, "successes", 1)

        await self.store_memory(
            context_id,
            "action",
            {
                "tool": tool_name,
                "input": input,
                "response": response[:MAX_STORED_RESPONSE],
                "success": success,
                "action_summary": (
                    extract_action_summary(tool_name, input, detailed_output)
                    if success
                    else None
                ),
                "detailed_output": detailed_output,
                "timestamp": now_ms(),
            },
        )

    async def get_tool_stats(self, tool_name: str) -> dict[str, int]:
        raw = await self._kv.hgetall(_STATS_KEY.format(tool_name))
        return {
            "attempts": int(raw.get("attempts", 0)),
            "successes": int(raw.get("successes", 0)),
        }

    async def _retrieve(
        self, context_id: str, kind: str, current_text: str | None
    ) -> list[dict[str, Any]]:
        raw_items = await self._kv.lrange(
            _MEMORY_KEY.format(context_id, kind), 0, MAX_MEMORIES_PER_CONTEXT - 1
        )
        memories: list[dict[str, Any]] = []
        for raw in raw_items:
            try:
                memories.append(json.loads(raw))
            except json.JSONDecodeError:
                logger.warning("Skipping unreadable memory entry for %s", context_id)

        now = time.time() * 1000

        def score(memory: dict[str, Any]) -> float:
            age_days = (now - memory.get("timestamp", now)) / _DAY_MS
            return (
                memory.get("relevance_score", 1.0)
                + self._context_relevance(memory, current_text)
                - age_days * 0.1
            )

        memories.sort(key=score, reverse=True)
        return memories[:MAX_MEMORY_ENTRIES_TO_INCLUDE]

    @staticmethod
    def _relevance_score(payload: dict[str, Any], kind: str) -> float:
        score = 1.0
        if kind == "action":
            score += 0.5 if payload.get("success") else 0.0
            if payload.get("tool") in {"createPullRequest", "createBranch", "updateIssueStatus"}:
                score += 1.0
        content = _content_text(payload.get("content", ""))
        if kind == "conversation" and len(content) > 200:
            score += 0.5
        return min(score, 3.0)

    @staticmethod
    def _context_relevance(memory: dict[str, Any], current_text: str | None) -> float:
        data = memory.get("data") or {}
        if not current_text or "content" not in data:
            return 0.0
        memory_words = set(_content_text(data["content"]).lower().split())
        common = [
            word
            for word in current_text.lower().split()
            if len(word) > 3 and word in memory_words
        ]
        return min(len(common) * 0.1, 1.0)
