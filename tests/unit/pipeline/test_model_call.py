"""Unit tests for the model-call phase.

Tests for:
- Transcript normalization into provider messages
- The tool loop: results, explicit end, step budget, unknown tools
- Interjection forwarding alongside tool results
- Memory and repository context in the system prompt
- Cancellation racing an in-flight model call
"""

import asyncio
import json
from typing import Any

import pytest

from otron.core.errors import Aborted
from otron.core.models import ActiveSession, QueuedMessage, RepoDefinition
from otron.core.protocols import ModelTurn
from otron.infra.cancellation import CancellationToken
from otron.infra.store.session_store import SessionStore
from otron.pipeline.model_call import (
    ModelCallPhase,
    render_system_prompt,
    to_provider_messages,
)
from otron.pipeline.tool_registry import END_ACTIONS_TOOL, ToolRegistry, ToolSpec
from tests.fakes import (
    FakeMemoryStore,
    FakeModelClient,
    FakeRepositorySource,
    RecordingActivityLog,
    text_turn,
    tool_turn,
)


async def echo(params: dict[str, Any]) -> dict[str, Any]:
    return {"success": True, "echo": params}


def phase_for(
    store: SessionStore,
    model: FakeModelClient,
    registry: ToolRegistry | None = None,
    **kwargs: Any,  # noqa: ANN401
) -> ModelCallPhase:
    return ModelCallPhase(
        model=model,
        store=store,
        registry=registry or ToolRegistry([ToolSpec("echo", "Echo params", echo)]),
        **kwargs,
    )


async def run_phase(phase: ModelCallPhase, messages: list[dict[str, Any]], **kwargs: Any):  # noqa: ANN401, ANN201
    return await phase.run(
        session_id="s1",
        context_id=kwargs.pop("context_id", "OTR-1"),
        platform="linear",
        messages=messages,
        **kwargs,
    )


class TestToProviderMessages:
    """Tests for transcript normalization."""

    def test_merges_consecutive_same_role(self) -> None:
        result = to_provider_messages(
            [
                {"role": "user", "content": "first"},
                {"role": "user", "content": "second"},
                {"role": "assistant", "content": "reply"},
            ]
        )

        assert result == [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "first"},
                    {"type": "text", "text": "second"},
                ],
            },
            {"role": "assistant", "content": [{"type": "text", "text": "reply"}]},
        ]

    def test_drops_empty_text_and_other_roles(self) -> None:
        result = to_provider_messages(
            [
                {"role": "system", "content": "ignored"},
                {"role": "user", "content": "   "},
                {"role": "user", "content": [{"type": "text", "text": ""}]},
                {"role": "user", "content": "real"},
            ]
        )

        assert result == [{"role": "user", "content": [{"type": "text", "text": "real"}]}]

    def test_leading_assistant_gets_placeholder_user_turn(self) -> None:
        result = to_provider_messages([{"role": "assistant", "content": "hello"}])

        assert result[0] == {"role": "user", "content": [{"type": "text", "text": "Continue."}]}
        assert result[1]["role"] == "assistant"

    def test_does_not_mutate_input(self) -> None:
        messages = [
            {"role": "user", "content": [{"type": "text", "text": "a"}]},
            {"role": "user", "content": [{"type": "text", "text": "b"}]},
        ]

        to_provider_messages(messages)

        assert messages[0]["content"] == [{"type": "text", "text": "a"}]


class TestRenderSystemPrompt:
    def test_sections_only_when_present(self) -> None:
        bare = render_system_prompt("", "")
        full = render_system_prompt("REPO BLOCK", "MEMORY BLOCK")

        assert "## Available Repositories" not in bare
        assert "## Context & History" not in bare
        assert "## Available Repositories\nREPO BLOCK" in full
        assert "## Context & History\nMEMORY BLOCK" in full


class TestToolLoop:
    """Tests for the step loop."""

    @pytest.mark.asyncio
    async def test_tool_result_fed_back_to_model(self, store: SessionStore) -> None:
        model = FakeModelClient(
            script=[tool_turn(("echo", {"x": 1}), text="Checking"), text_turn("Echoed.")]
        )

        result = await run_phase(phase_for(store, model), [{"role": "user", "content": "go"}])

        assert result.text == "Echoed."
        assert result.tools_used == ["echo"]
        assistant, tool_results = model.calls[1].messages[-2:]
        assert assistant["content"] == [
            {"type": "text", "text": "Checking"},
            {"type": "tool_use", "id": "call_0_echo", "name": "echo", "input": {"x": 1}},
        ]
        block = tool_results["content"][0]
        assert block["tool_use_id"] == "call_0_echo"
        assert "is_error" not in block
        assert json.loads(block["content"]) == {"success": True, "echo": {"x": 1}}

    @pytest.mark.asyncio
    async def test_tool_schemas_include_end_actions(self, store: SessionStore) -> None:
        model = FakeModelClient()

        await run_phase(phase_for(store, model), [{"role": "user", "content": "go"}])

        names = [tool["name"] for tool in model.calls[0].tools]
        assert names == ["echo", END_ACTIONS_TOOL]

    @pytest.mark.asyncio
    async def test_end_actions_stops_the_loop(self, store: SessionStore) -> None:
        model = FakeModelClient(
            script=[
                tool_turn((END_ACTIONS_TOOL, {"summary": "all done"}), text="Finished"),
                text_turn("never requested"),
            ]
        )

        result = await run_phase(phase_for(store, model), [{"role": "user", "content": "go"}])

        assert len(model.calls) == 1
        assert result.ended_explicitly is True
        assert result.text == "Finished"

    @pytest.mark.asyncio
    async def test_step_budget(self, store: SessionStore) -> None:
        model = FakeModelClient(
            script=[tool_turn(("echo", {"n": n})) for n in range(10)]
        )

        result = await run_phase(
            phase_for(store, model, max_steps=3), [{"role": "user", "content": "go"}]
        )

        assert len(model.calls) == 3
        assert result.text == ""

    @pytest.mark.asyncio
    async def test_unknown_tool_is_reported_to_model(self, store: SessionStore) -> None:
        model = FakeModelClient(script=[tool_turn(("missingTool", {}))])

        await run_phase(phase_for(store, model), [{"role": "user", "content": "go"}])

        block = model.calls[1].messages[-1]["content"][0]
        assert block["is_error"] is True
        assert block["content"] == "Unknown tool: missingTool"

    @pytest.mark.asyncio
    async def test_circuit_breaker_refusal_goes_back_to_model(
        self, store: SessionStore
    ) -> None:
        model = FakeModelClient(
            script=[tool_turn(("echo", {"same": True})) for _ in range(4)]
        )

        await run_phase(phase_for(store, model), [{"role": "user", "content": "go"}])

        refused = model.calls[4].messages[-1]["content"][0]
        assert refused["is_error"] is True
        assert refused["content"].startswith(
            "Circuit breaker activated: echo called 4 times"
        )

    @pytest.mark.asyncio
    async def test_caller_messages_not_mutated_by_loop(
        self, store: SessionStore
    ) -> None:
        messages = [{"role": "user", "content": "go"}]
        model = FakeModelClient(script=[tool_turn(("echo", {}))])

        await run_phase(phase_for(store, model), messages)

        assert messages == [{"role": "user", "content": "go"}]


class TestInterjections:
    @pytest.mark.asyncio
    async def test_interjection_forwarded_with_tool_results(
        self, store: SessionStore
    ) -> None:
        await store.create_active(ActiveSession(session_id="s1", context_id="OTR-1"))
        await store.enqueue_message(
            "s1",
            QueuedMessage(
                content="use the staging branch",
                session_id="s1",
                issue_id="OTR-1",
                timestamp=1_700_000_000_000,
            ),
        )
        model = FakeModelClient(script=[tool_turn(("echo", {}))])

        await run_phase(
            phase_for(store, model),
            [{"role": "user", "content": "go"}],
            activity_log=RecordingActivityLog(),
        )

        blocks = model.calls[1].messages[-1]["content"]
        assert blocks[0]["type"] == "tool_result"
        assert blocks[1] == {
            "type": "text",
            "text": "[INTERJECTION 2023-11-14T22:13:20.000Z] use the staging branch",
        }


class TestContext:
    """Tests for memory and repository context."""

    @pytest.mark.asyncio
    async def test_system_prompt_carries_memory_and_repositories(
        self, store: SessionStore
    ) -> None:
        memory = FakeMemoryStore(
            previous_conversations="\n\nPREVIOUS CONVERSATIONS:\nUser: hi\n",
            issue_history="\n\nPREVIOUS ACTIONS:\nCreated branch\n",
        )
        repositories = FakeRepositorySource(
            [RepoDefinition(id="api", name="API", owner="acme", repo="api")]
        )
        model = FakeModelClient(script=[text_turn("ok")])

        await run_phase(
            phase_for(store, model, memory=memory, repositories=repositories),
            [{"role": "user", "content": "go"}],
        )

        system = model.calls[0].system
        assert "PREVIOUS CONVERSATIONS" in system
        assert "PREVIOUS ACTIONS" in system
        assert "### 1. API (acme/api)" in system
        assert [kind for _, kind, _ in memory.stored] == ["conversation", "conversation"]
        assert memory.stored[0][2]["role"] == "user"
        assert memory.stored[1][2] == {
            "role": "assistant",
            "content": [{"type": "text", "text": "ok"}],
        }

    @pytest.mark.asyncio
    async def test_failing_memory_and_repositories_are_ignored(
        self, store: SessionStore
    ) -> None:
        model = FakeModelClient(script=[text_turn("still fine")])

        result = await run_phase(
            phase_for(
                store,
                model,
                memory=FakeMemoryStore(fail=True),
                repositories=FakeRepositorySource(error=RuntimeError("db down")),
            ),
            [{"role": "user", "content": "go"}],
        )

        assert result.text == "still fine"
        assert "## Available Repositories" not in model.calls[0].system


class TestCancellation:
    @pytest.mark.asyncio
    async def test_token_aborts_in_flight_generation(self, store: SessionStore) -> None:
        token = CancellationToken()
        started = asyncio.Event()

        async def slow(transcript: list[dict[str, Any]]) -> ModelTurn:
            started.set()
            await asyncio.sleep(10)
            return text_turn("too late")

        model = FakeModelClient(script=[slow])

        async def cancel_soon() -> None:
            await started.wait()
            token.cancel("client disconnected")

        canceller = asyncio.create_task(cancel_soon())
        with pytest.raises(Aborted, match="client disconnected"):
            await run_phase(
                phase_for(store, model),
                [{"role": "user", "content": "go"}],
                cancellation_token=token,
            )
        await canceller
