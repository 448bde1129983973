"""Model-call phase.

One phase is one attempt of the lifecycle's retry loop: the model is
invoked with tool calling enabled and may chain tool calls for up to
``max_steps`` steps. Every tool call goes through a ToolSupervisor, and
tool calls of a single model turn run strictly in the order requested.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from otron.core.errors import Aborted
from otron.core.models import GenerationResult, message_text
from otron.infra.cancellation import run_cancellable
from otron.pipeline.execution_tracker import (
    ExecutionStrategy,
    ExecutionTracker,
    execution_summary,
)
from otron.pipeline.repository_context import load_repository_context
from otron.pipeline.tool_supervisor import ToolSupervisor
from otron.prompts import get_system_prompt_template

if TYPE_CHECKING:
    from collections.abc import Sequence

    from otron.core.models import ChatContext, Message, Platform
    from otron.core.protocols import (
        ActivityLog,
        ChatNotifier,
        MemoryStore,
        ModelClient,
        RepositorySource,
    )
    from otron.infra.cancellation import CancellationToken
    from otron.infra.store.session_store import SessionStore
    from otron.pipeline.tool_registry import ToolExecutor, ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 30
DEFAULT_MAX_TOKENS = 4096


def to_provider_messages(messages: Sequence[Message]) -> list[Message]:
    """Normalize a transcript into strictly alternating user/assistant turns.

    Consecutive entries with the same role are merged, empty text is
    dropped, and a leading assistant turn gets a placeholder user turn in
    front of it.
    """
    normalized: list[Message] = []
    for message in messages:
        role = message.get("role")
        if role not in ("user", "assistant"):
            continue
        content = message.get("content")
        if isinstance(content, str):
            blocks = [{"type": "text", "text": content}] if content.strip() else []
        elif isinstance(content, list):
            blocks = [
                block
                for block in content
                if isinstance(block, dict)
                and not (block.get("type") == "text" and not str(block.get("text", "")).strip())
            ]
        else:
            blocks = []
        if not blocks:
            continue
        if normalized and normalized[-1]["role"] == role:
            normalized[-1]["content"].extend(blocks)
        else:
            normalized.append({"role": role, "content": list(blocks)})

    if not normalized or normalized[0]["role"] != "user":
        normalized.insert(
            0, {"role": "user", "content": [{"type": "text", "text": "Continue."}]}
        )
    return normalized


def _tool_result_block(call_id: str, result: Any, is_error: bool) -> dict[str, Any]:  # noqa: ANN401
    content = result if isinstance(result, str) else json.dumps(result, default=str)
    block: dict[str, Any] = {
        "type": "tool_result",
        "tool_use_id": call_id,
        "content": content or "(empty result)",
    }
    if is_error:
        block["is_error"] = True
    return block


def render_system_prompt(repository_context: str, memory_context: str) -> str:
    return get_system_prompt_template().format(
        repository_context=(
            f"## Available Repositories\n{repository_context}"
            if repository_context
            else ""
        ),
        memory_context=(
            f"## Context & History\n{memory_context}\n\n" if memory_context else ""
        ),
    )


class ModelCallPhase:
    """Runs one tool-using model invocation for a session attempt.

    Args:
        model: Model client used for every step.
        store: Session store handed to the tool supervisor.
        registry: Tool catalog; the end-of-actions tool is added per attempt.
        memory: Optional long-term memory collaborator.
        repositories: Optional source of repository definitions.
        max_steps: Maximum model steps per phase.
        max_tokens: Output token cap per step.
    """

    def __init__(
        self,
        *,
        model: ModelClient,
        store: SessionStore,
        registry: ToolRegistry,
        memory: MemoryStore | None = None,
        repositories: RepositorySource | None = None,
        max_steps: int = DEFAULT_MAX_STEPS,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        self._model = model
        self._store = store
        self._registry = registry
        self._memory = memory
        self._repositories = repositories
        self.max_steps = max_steps
        self.max_tokens = max_tokens

    async def run(
        self,
        *,
        session_id: str,
        context_id: str,
        platform: Platform,
        messages: list[Message],
        session_tools: list[str] | None = None,
        activity_log: ActivityLog | None = None,
        chat: ChatNotifier | None = None,
        chat_context: ChatContext | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> GenerationResult:
        """Invoke the model once, with tools, on the live message list.

        ``messages`` is shared with the tool supervisor, which appends
        queued interjections to it; they are forwarded to the model with
        the next batch of tool results.

        Raises:
            Aborted: Cancellation was observed before or during the phase.
        """
        tracker = ExecutionTracker()
        strategy = ExecutionStrategy()
        last_text = message_text(messages[-1]) if messages else ""

        await self._remember(
            context_id,
            {
                "role": "user",
                "content": last_text or "No content",
                "platform": platform,
                "metadata": (
                    {
                        "channel_id": chat_context.channel_id,
                        "thread_ts": chat_context.thread_ts,
                    }
                    if chat_context
                    else {}
                ),
            },
        )
        memory_context = await self._memory_context(context_id, last_text)
        repository_context = await load_repository_context(self._repositories)
        system = render_system_prompt(repository_context, memory_context)

        supervisor = ToolSupervisor(
            session_id=session_id,
            context_id=context_id,
            store=self._store,
            messages=messages,
            tracker=tracker,
            strategy=strategy,
            session_tools=session_tools,
            memory=self._memory,
            activity_log=activity_log,
            chat=chat,
            chat_context=chat_context,
            cancellation_token=cancellation_token,
        )
        registry = self._registry.with_builtins(tracker)
        executors: dict[str, ToolExecutor] = {
            spec.name: supervisor.wrap(spec) for spec in registry
        }
        schemas = registry.to_schemas()

        transcript = to_provider_messages(messages)
        seen = len(messages)
        final_text = ""

        for step in range(1, self.max_steps + 1):
            turn = await run_cancellable(
                self._model.generate(
                    system=system,
                    messages=transcript,
                    tools=schemas,
                    max_tokens=self.max_tokens,
                ),
                cancellation_token,
            )
            if turn.text:
                final_text = turn.text
            if not turn.tool_calls:
                break

            assistant_blocks: list[dict[str, Any]] = []
            if turn.text:
                assistant_blocks.append({"type": "text", "text": turn.text})
            assistant_blocks.extend(
                {"type": "tool_use", "id": call.id, "name": call.name, "input": call.input}
                for call in turn.tool_calls
            )
            transcript.append({"role": "assistant", "content": assistant_blocks})

            result_blocks: list[dict[str, Any]] = []
            for call in turn.tool_calls:
                result_blocks.append(await self._run_tool(executors, call.id, call.name, call.input))

            # Interjections drained by the supervisor during this turn
            interjections = messages[seen:]
            seen = len(messages)
            result_blocks.extend(
                {"type": "text", "text": message_text(message)}
                for message in interjections
                if message_text(message)
            )
            transcript.append({"role": "user", "content": result_blocks})

            if tracker.ended_explicitly:
                logger.debug("Session %s ended explicitly at step %d", session_id, step)
                break
        else:
            logger.info(
                "Session %s exhausted its step budget (%d)", session_id, self.max_steps
            )

        await self._remember(
            context_id,
            {"role": "assistant", "content": [{"type": "text", "text": final_text}]},
        )
        logger.info("Session %s: %s", session_id, execution_summary(tracker, strategy))

        return GenerationResult(
            text=final_text,
            tools_used=sorted(tracker.tools_used),
            actions_performed=list(tracker.actions_performed),
            ended_explicitly=tracker.ended_explicitly,
        )

    async def _run_tool(
        self,
        executors: dict[str, ToolExecutor],
        call_id: str,
        name: str,
        params: dict[str, Any],
    ) -> dict[str, Any]:
        executor = executors.get(name)
        if executor is None:
            return _tool_result_block(call_id, f"Unknown tool: {name}", is_error=True)
        try:
            result = await executor(params)
        except Aborted:
            raise
        except Exception as e:
            # Circuit breaker refusals and supervisor failures go back to the model
            return _tool_result_block(call_id, str(e), is_error=True)
        failed = isinstance(result, dict) and result.get("success") is False
        return _tool_result_block(call_id, result, is_error=failed)

    async def _remember(self, context_id: str, payload: dict[str, Any]) -> None:
        if self._memory is None:
            return
        try:
            await self._memory.store_memory(context_id, "conversation", payload)
        except Exception:
            logger.warning("Could not store conversation memory", exc_info=True)

    async def _memory_context(self, context_id: str, current_text: str) -> str:
        if self._memory is None:
            return ""
        try:
            previous = await self._memory.get_previous_conversations(
                context_id, current_text
            )
            history = await self._memory.get_issue_history(context_id)
        except Exception:
            logger.warning("Could not load memory context", exc_info=True)
            return ""
        return previous + history
