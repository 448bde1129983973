"""Unit tests for the tool registry and execution tracking."""

from typing import Any

import pytest

from otron.pipeline.execution_tracker import (
    ExecutionStrategy,
    ExecutionTracker,
    ToolCategory,
    call_signature,
    classify_tool,
    execution_summary,
)
from otron.pipeline.tool_registry import (
    END_ACTIONS_TOOL,
    ToolRegistry,
    ToolSpec,
)


async def noop(params: dict[str, Any]) -> None:
    return None


class TestToolRegistry:
    def test_register_and_schema(self) -> None:
        registry = ToolRegistry()

        @registry.tool(
            "getFileContent",
            "Read a file",
            parameters={"type": "object", "properties": {"file_path": {"type": "string"}}},
        )
        async def read(params: dict[str, Any]) -> str:
            return "content"

        assert "getFileContent" in registry
        assert registry.to_schemas() == [
            {
                "name": "getFileContent",
                "description": "Read a file",
                "input_schema": {
                    "type": "object",
                    "properties": {"file_path": {"type": "string"}},
                },
            }
        ]
        assert registry.get("getFileContent").resolved_category is ToolCategory.READ

    def test_duplicate_rejected(self) -> None:
        registry = ToolRegistry([ToolSpec("a", "", noop)])

        with pytest.raises(ValueError, match="already registered"):
            registry.register(ToolSpec("a", "", noop))

    def test_explicit_category_overrides_table(self) -> None:
        spec = ToolSpec("getFileContent", "", noop, category=ToolCategory.ACTION)

        assert spec.resolved_category is ToolCategory.ACTION
        assert ToolSpec("mystery", "", noop).resolved_category is None

    @pytest.mark.asyncio
    async def test_with_builtins_binds_tracker(self) -> None:
        base = ToolRegistry([ToolSpec("a", "", noop)])
        tracker = ExecutionTracker()

        registry = base.with_builtins(tracker)
        result = await registry.get(END_ACTIONS_TOOL).executor({"summary": "done"})

        assert END_ACTIONS_TOOL not in base
        assert registry.names() == ["a", END_ACTIONS_TOOL]
        assert tracker.ended_explicitly is True
        assert result["summary"] == "done"

    def test_registered_end_actions_takes_precedence(self) -> None:
        custom = ToolSpec(END_ACTIONS_TOOL, "custom", noop)

        registry = ToolRegistry([custom]).with_builtins(ExecutionTracker())

        assert registry.get(END_ACTIONS_TOOL) is custom
        assert len(registry) == 1


class TestExecutionTracker:
    def test_signature_ignores_key_order(self) -> None:
        assert call_signature("t", {"a": 1, "b": 2}) == call_signature("t", {"b": 2, "a": 1})
        assert call_signature("t", None) == "t:{}"

    def test_window_evicts_oldest(self) -> None:
        tracker = ExecutionTracker()
        tracker.record_call("x")
        for n in range(10):
            tracker.record_call(f"other{n}")

        assert tracker.prior_identical_calls("x") == 0
        assert len(tracker.recent_tool_calls) == 10

    def test_classify(self) -> None:
        assert classify_tool("searchSlackMessages") is ToolCategory.SEARCH
        assert classify_tool("createPullRequest") is ToolCategory.ACTION
        assert classify_tool("getDirectoryStructure") is ToolCategory.ANALYSIS
        assert classify_tool("unknown") is None


class TestExecutionStrategy:
    def test_gathering_after_three_information_calls(self) -> None:
        strategy = ExecutionStrategy()

        assert strategy.record("searchEmbeddedCode", ToolCategory.SEARCH) == []
        assert strategy.record("getFileContent", ToolCategory.READ) == []
        notes = strategy.record("getDirectoryStructure", ToolCategory.ANALYSIS)

        assert strategy.phase == "gathering"
        assert notes == [
            "Moving from planning to information gathering. Completed 3 operations."
        ]

    def test_first_action_switches_to_acting(self) -> None:
        strategy = ExecutionStrategy()

        first = strategy.record("createBranch", ToolCategory.ACTION)
        second = strategy.record("createFile", ToolCategory.ACTION)

        assert first == ["Starting to take some action with createBranch"]
        assert second == []
        assert strategy.phase == "acting"
        assert strategy.tool_usage_counts == {"createBranch": 1, "createFile": 1}

    def test_summary_line(self) -> None:
        strategy = ExecutionStrategy()
        strategy.record("createBranch", ToolCategory.ACTION)
        tracker = ExecutionTracker(tools_used={"createBranch"})

        summary = execution_summary(tracker, strategy)

        assert summary.startswith("Phase: acting | Total operations: 1 | Tools used: 1")
