"""Unit tests for SessionDispatcher routing of inbound events.

Tests for:
- Starting a session when the context is free
- Queueing into a live session and the message being consumed
- Stop routing, including contexts whose sessions never drain a queue
"""

from typing import Any

import pytest

from otron.core.errors import StopCommandReceived
from otron.core.models import ActiveSession, ChatContext
from otron.infra.store.session_store import CLAIM_KEY, SessionStore
from otron.orchestration.dispatch import DispatchOutcome, SessionDispatcher
from otron.orchestration.session_lifecycle import (
    PlatformClients,
    SessionLifecycleManager,
)
from otron.pipeline.goal_evaluator import GoalEvaluator
from otron.pipeline.model_call import ModelCallPhase
from otron.pipeline.tool_registry import ToolRegistry, ToolSpec
from tests.fakes import (
    FakeKeyValueClient,
    FakeModelClient,
    RecordingActivityLog,
    text_turn,
    tool_turn,
)

VERDICT = '{"isComplete": true, "confidence": 0.9, "reasoning": "ok"}'


def make_dispatcher(
    store: SessionStore,
    model: FakeModelClient,
    registry: ToolRegistry | None = None,
) -> SessionDispatcher:
    manager = SessionLifecycleManager(
        store=store,
        model_phase=ModelCallPhase(
            model=model, store=store, registry=registry or ToolRegistry()
        ),
        evaluator=GoalEvaluator(FakeModelClient(script=[text_turn(VERDICT)])),
    )
    return SessionDispatcher(manager, store)


async def hold_context(store: SessionStore, context_id: str, session_id: str) -> None:
    await store.create_active(ActiveSession(session_id=session_id, context_id=context_id))
    assert await store.claim_context(context_id, session_id) is None


def queue_keys(kv: FakeKeyValueClient) -> list[str]:
    return [key for key in kv.lists if key.startswith("message_queue:")]


class MidSessionTrigger:
    """Tool registry whose ``notify`` tool dispatches another event.

    ``notify`` stands in for a webhook arriving while the session is
    running; ``echo`` is an ordinary follow-up tool call.
    """

    def __init__(self) -> None:
        self.dispatcher: SessionDispatcher | None = None
        self.outcomes: list[DispatchOutcome] = []
        self.echoed: list[dict[str, Any]] = []
        self.event: dict[str, Any] = {}

    async def notify(self, params: dict[str, Any]) -> dict[str, Any]:
        assert self.dispatcher is not None
        outcome = await self.dispatcher.dispatch(**self.event)
        self.outcomes.append(outcome)
        return {"success": True}

    async def echo(self, params: dict[str, Any]) -> dict[str, Any]:
        self.echoed.append(params)
        return {"success": True}

    def registry(self) -> ToolRegistry:
        return ToolRegistry(
            [
                ToolSpec(name="notify", description="", executor=self.notify),
                ToolSpec(name="echo", description="", executor=self.echo),
            ]
        )


class TestDispatch:
    """Tests for starting sessions vs. queueing into live ones."""

    @pytest.mark.asyncio
    async def test_runs_new_session_when_context_free(
        self, store: SessionStore
    ) -> None:
        model = FakeModelClient(script=[text_turn("Looked into it.")])
        dispatcher = make_dispatcher(store, model)

        outcome = await dispatcher.dispatch(
            [{"role": "user", "content": "What is blocking OTR-12?"}],
            external_session_id="ext-12",
        )

        assert outcome == DispatchOutcome(
            queued=False, session_id="ext-12", response="Looked into it."
        )
        assert len(model.calls) == 1

    @pytest.mark.asyncio
    async def test_second_trigger_is_queued_into_live_session(
        self, store: SessionStore, kv: FakeKeyValueClient
    ) -> None:
        await hold_context(store, "OTR-12", "running")
        model = FakeModelClient()
        dispatcher = make_dispatcher(store, model)

        outcome = await dispatcher.dispatch(
            [{"role": "user", "content": "OTR-12: also update the changelog"}],
            user_id="u-7",
        )

        assert outcome == DispatchOutcome(queued=True, session_id="running")
        assert model.calls == []
        queued = await store.drain_messages("running")
        assert len(queued) == 1
        assert queued[0].content == "OTR-12: also update the changelog"
        assert queued[0].issue_id == "OTR-12"
        assert queued[0].type == "prompted"
        assert queued[0].user_id == "u-7"
        # Only the holder exists; no second active record was created
        assert await store.list_active_ids() == ["running"]

    @pytest.mark.asyncio
    async def test_stop_without_live_session_is_dropped(
        self, store: SessionStore, kv: FakeKeyValueClient
    ) -> None:
        model = FakeModelClient()
        dispatcher = make_dispatcher(store, model)

        outcome = await dispatcher.dispatch(
            [{"role": "user", "content": "stop working on OTR-3"}],
            message_type="stop",
        )

        assert outcome == DispatchOutcome(queued=False)
        assert model.calls == []
        assert kv.lists == {}

    @pytest.mark.asyncio
    async def test_stale_claim_does_not_block_new_session(
        self, store: SessionStore, kv: FakeKeyValueClient
    ) -> None:
        await hold_context(store, "OTR-5", "crashed")
        kv.expire_now("active_session:crashed")
        model = FakeModelClient(script=[text_turn("Picked it up.")])
        dispatcher = make_dispatcher(store, model)

        outcome = await dispatcher.dispatch(
            [{"role": "user", "content": "Retry OTR-5 please"}]
        )

        assert outcome.queued is False
        assert outcome.response == "Picked it up."


class TestDeliveryToRunningSessions:
    """Events routed into a running session are consumed by it."""

    @pytest.mark.asyncio
    async def test_follow_up_reaches_trackable_issue_session(
        self, store: SessionStore, kv: FakeKeyValueClient
    ) -> None:
        trigger = MidSessionTrigger()
        trigger.event = {
            "messages": [{"role": "user", "content": "OTR-12: also update the changelog"}],
        }
        model = FakeModelClient(
            script=[
                tool_turn(("notify", {})),
                tool_turn(("echo", {"step": 2})),
                text_turn("Updated both."),
            ]
        )
        trigger.dispatcher = make_dispatcher(store, model, trigger.registry())

        outcome = await trigger.dispatcher.dispatch(
            [{"role": "user", "content": "Fix OTR-12"}],
            platform_clients=PlatformClients(activity_log=RecordingActivityLog()),
            external_session_id="ext-1",
        )

        assert trigger.outcomes == [DispatchOutcome(queued=True, session_id="ext-1")]
        assert outcome.response == "Updated both."
        forwarded = model.calls[2].messages[-1]["content"]
        texts = [block["text"] for block in forwarded if block["type"] == "text"]
        assert len(texts) == 1
        assert texts[0].endswith("OTR-12: also update the changelog")
        assert queue_keys(kv) == []
        assert CLAIM_KEY.format("OTR-12") not in kv.strings

    @pytest.mark.asyncio
    async def test_stop_reaches_trackable_issue_session(
        self, store: SessionStore, kv: FakeKeyValueClient
    ) -> None:
        trigger = MidSessionTrigger()
        trigger.event = {
            "messages": [{"role": "user", "content": "stop OTR-12"}],
            "message_type": "stop",
        }
        model = FakeModelClient(
            script=[tool_turn(("notify", {})), tool_turn(("echo", {"step": 2}))]
        )
        trigger.dispatcher = make_dispatcher(store, model, trigger.registry())

        with pytest.raises(StopCommandReceived):
            await trigger.dispatcher.dispatch(
                [{"role": "user", "content": "Fix OTR-12"}],
                platform_clients=PlatformClients(activity_log=RecordingActivityLog()),
                external_session_id="ext-2",
            )

        assert trigger.outcomes == [DispatchOutcome(queued=True, session_id="ext-2")]
        assert trigger.echoed == []
        completed = await store.get_completed("ext-2")
        assert completed.final_status == "cancelled"
        assert queue_keys(kv) == []

    @pytest.mark.asyncio
    async def test_stop_for_chat_thread_is_not_delivered(
        self, store: SessionStore, kv: FakeKeyValueClient
    ) -> None:
        trigger = MidSessionTrigger()
        trigger.event = {
            "messages": [{"role": "user", "content": "actually, stop"}],
            "chat_context": ChatContext("C1", "T1"),
            "message_type": "stop",
        }
        model = FakeModelClient(
            script=[
                tool_turn(("notify", {})),
                tool_turn(("echo", {"step": 2})),
                text_turn("finished everything"),
            ]
        )
        trigger.dispatcher = make_dispatcher(store, model, trigger.registry())

        outcome = await trigger.dispatcher.dispatch(
            [{"role": "user", "content": "summarize the thread"}],
            platform_clients=PlatformClients(activity_log=RecordingActivityLog()),
            chat_context=ChatContext("C1", "T1"),
            external_session_id="chat-1",
        )

        # Chat sessions never drain a queue, so nothing is reported as delivered
        assert trigger.outcomes == [DispatchOutcome(queued=False)]
        assert outcome.response == "finished everything"
        assert queue_keys(kv) == []

    @pytest.mark.asyncio
    async def test_issue_session_without_activity_log_does_not_take_events(
        self, store: SessionStore, kv: FakeKeyValueClient
    ) -> None:
        trigger = MidSessionTrigger()
        trigger.event = {
            "messages": [{"role": "user", "content": "OTR-12: also update the changelog"}],
            "external_session_id": "ext-second",
        }
        model = FakeModelClient(
            script=[tool_turn(("notify", {})), text_turn("First run.")]
        )
        first = make_dispatcher(store, model, trigger.registry())
        trigger.dispatcher = make_dispatcher(
            store, FakeModelClient(script=[text_turn("Second run.")])
        )

        outcome = await first.dispatch(
            [{"role": "user", "content": "Fix OTR-12"}],
            external_session_id="ext-first",
        )

        assert outcome.response == "First run."
        assert trigger.outcomes == [
            DispatchOutcome(queued=False, session_id="ext-second", response="Second run.")
        ]
        assert queue_keys(kv) == []
        assert {s.session_id for s in await store.list_completed()} == {
            "ext-first",
            "ext-second",
        }
