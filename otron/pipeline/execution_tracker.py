"""Per-attempt execution tracking.

ExecutionTracker holds what the goal evaluator needs (tools used,
actions performed, explicit end) plus the circuit breaker's bounded
call history. ExecutionStrategy tracks a descriptive phase and category
counters used only for narration; it never blocks a call.
"""

from __future__ import annotations

import json
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

Phase = Literal["planning", "gathering", "acting", "completing"]

RECENT_CALL_WINDOW = 10
CIRCUIT_BREAKER_THRESHOLD = 3
GATHERING_THRESHOLD = 3


class ToolCategory(Enum):
    """Coarse tool classification used for narration and phase tracking."""

    SEARCH = "search"
    READ = "read"
    ACTION = "action"
    ANALYSIS = "analysis"


TOOL_CATEGORIES: dict[str, ToolCategory] = {
    **dict.fromkeys(
        ("searchEmbeddedCode", "searchLinearIssues", "searchSlackMessages"),
        ToolCategory.SEARCH,
    ),
    **dict.fromkeys(
        ("getFileContent", "getRawFileContent", "readRelatedFiles", "getIssueContext"),
        ToolCategory.READ,
    ),
    **dict.fromkeys(
        (
            "createFile",
            "editCode",
            "addCode",
            "removeCode",
            "editUrl",
            "replaceLines",
            "insertLines",
            "deleteLines",
            "createBranch",
            "createPullRequest",
            "updateIssueStatus",
            "createLinearComment",
            "setIssueParent",
            "addIssueToProject",
            "createAgentActivity",
            "sendSlackMessage",
            "sendChannelMessage",
            "sendDirectMessage",
        ),
        ToolCategory.ACTION,
    ),
    **dict.fromkeys(
        ("analyzeFileStructure", "getRepositoryStructure", "getDirectoryStructure"),
        ToolCategory.ANALYSIS,
    ),
}


def classify_tool(tool_name: str) -> ToolCategory | None:
    return TOOL_CATEGORIES.get(tool_name)


def call_signature(tool_name: str, params: dict[str, Any] | None) -> str:
    """Stable signature of a tool call: name plus canonical JSON of its params."""
    encoded = json.dumps(
        params or {}, sort_keys=True, separators=(",", ":"), default=str
    )
    return f"{tool_name}:{encoded}"


@dataclass
class ExecutionTracker:
    """Outcome bookkeeping for one model-call phase.

    Attributes:
        tools_used: Names of tools that completed successfully.
        actions_performed: Ordered descriptions of action-category results.
        ended_explicitly: Whether the model called the end-of-actions tool.
        recent_tool_calls: Last RECENT_CALL_WINDOW call signatures, any tool.
    """

    tools_used: set[str] = field(default_factory=set)
    actions_performed: list[str] = field(default_factory=list)
    ended_explicitly: bool = False
    recent_tool_calls: deque[str] = field(
        default_factory=lambda: deque(maxlen=RECENT_CALL_WINDOW)
    )

    def prior_identical_calls(self, signature: str) -> int:
        return sum(1 for call in self.recent_tool_calls if call == signature)

    def record_call(self, signature: str) -> None:
        """Remember a call; the oldest entry is evicted past the window."""
        self.recent_tool_calls.append(signature)


@dataclass
class ExecutionStrategy:
    """Descriptive phase and operation counters for narration."""

    phase: Phase = "planning"
    tool_usage_counts: dict[str, int] = field(default_factory=dict)
    search_operations: int = 0
    read_operations: int = 0
    analysis_operations: int = 0
    action_operations: int = 0
    has_started_actions: bool = False

    @property
    def information_operations(self) -> int:
        return self.search_operations + self.read_operations + self.analysis_operations

    @property
    def total_operations(self) -> int:
        return self.information_operations + self.action_operations

    def record(self, tool_name: str, category: ToolCategory | None) -> list[str]:
        """Count a tool call and advance the phase.

        Returns:
            Narration lines for any phase transition that happened.
        """
        self.tool_usage_counts[tool_name] = self.tool_usage_counts.get(tool_name, 0) + 1
        notes: list[str] = []

        if category is ToolCategory.SEARCH:
            self.search_operations += 1
        elif category is ToolCategory.READ:
            self.read_operations += 1
        elif category is ToolCategory.ANALYSIS:
            self.analysis_operations += 1
        elif category is ToolCategory.ACTION:
            self.action_operations += 1
            if not self.has_started_actions:
                notes.append(f"Starting to take some action with {tool_name}")
            self.has_started_actions = True
            self.phase = "acting"

        if (
            self.phase == "planning"
            and self.information_operations >= GATHERING_THRESHOLD
        ):
            self.phase = "gathering"
            notes.append(
                "Moving from planning to information gathering. "
                f"Completed {self.information_operations} operations."
            )
        return notes


def execution_summary(tracker: ExecutionTracker, strategy: ExecutionStrategy) -> str:
    """One-line summary of an attempt for logs."""
    return " | ".join(
        [
            f"Phase: {strategy.phase}",
            f"Total operations: {strategy.total_operations}",
            f"Tools used: {len(tracker.tools_used)}",
            f"Actions performed: {len(tracker.actions_performed)}",
            f"Search: {strategy.search_operations}",
            f"Read: {strategy.read_operations}",
            f"Analysis: {strategy.analysis_operations}",
            f"Action: {strategy.action_operations}",
        ]
    )
