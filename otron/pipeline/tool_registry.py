"""Tool registry.

Maps tool names to descriptors carrying the JSON parameter schema and
the async executor. The registry is built once at startup by whoever
owns the platform clients; the tool supervisor wraps its entries
generically rather than dispatching on tool names.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from otron.pipeline.execution_tracker import ToolCategory, classify_tool

if TYPE_CHECKING:
    from otron.pipeline.execution_tracker import ExecutionTracker

ToolExecutor = Callable[[dict[str, Any]], Awaitable[Any]]

END_ACTIONS_TOOL = "endActions"


@dataclass(frozen=True)
class ToolSpec:
    """A callable tool exposed to the model.

    Attributes:
        name: Tool name as the model sees it.
        description: What the tool does, shown to the model.
        executor: Async callable receiving the parameter dict.
        parameters: JSON schema of the parameter object.
        category: Overrides the built-in category table when set.
    """

    name: str
    description: str
    executor: ToolExecutor
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    category: ToolCategory | None = None

    @property
    def resolved_category(self) -> ToolCategory | None:
        return self.category or classify_tool(self.name)

    def to_schema(self) -> dict[str, Any]:
        """Tool definition in the provider's ``input_schema`` format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }


class ToolRegistry:
    """Ordered mapping from tool name to ToolSpec."""

    def __init__(self, specs: list[ToolSpec] | None = None) -> None:
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs or []:
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        """Add a tool.

        Raises:
            ValueError: If a tool with the same name is already registered.
        """
        if spec.name in self._specs:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._specs[spec.name] = spec

    def tool(
        self,
        name: str,
        description: str,
        parameters: dict[str, Any] | None = None,
        category: ToolCategory | None = None,
    ) -> Callable[[ToolExecutor], ToolExecutor]:
        """Decorator form of register()."""

        def decorator(executor: ToolExecutor) -> ToolExecutor:
            spec = ToolSpec(name=name, description=description, executor=executor)
            if parameters is not None:
                spec = replace(spec, parameters=parameters)
            if category is not None:
                spec = replace(spec, category=category)
            self.register(spec)
            return executor

        return decorator

    def get(self, name: str) -> ToolSpec | None:
        return self._specs.get(name)

    def names(self) -> list[str]:
        return list(self._specs)

    def to_schemas(self) -> list[dict[str, Any]]:
        return [spec.to_schema() for spec in self._specs.values()]

    def with_builtins(self, tracker: ExecutionTracker) -> ToolRegistry:
        """Copy of this registry plus the end-of-actions tool bound to ``tracker``.

        A registered tool with the built-in's name takes precedence.
        """
        registry = ToolRegistry(list(self._specs.values()))
        if END_ACTIONS_TOOL not in registry:
            registry.register(end_actions_tool(tracker))
        return registry

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __iter__(self) -> Iterator[ToolSpec]:
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)


def end_actions_tool(tracker: ExecutionTracker) -> ToolSpec:
    """Built-in tool the model calls to declare its work finished."""

    async def end_actions(params: dict[str, Any]) -> dict[str, Any]:
        tracker.ended_explicitly = True
        return {
            "success": True,
            "message": "Actions ended",
            "summary": params.get("summary", ""),
        }

    return ToolSpec(
        name=END_ACTIONS_TOOL,
        description=(
            "Call this when every requested action is complete and no further "
            "tool calls are needed. Provide a short summary of what was done."
        ),
        executor=end_actions,
        parameters={
            "type": "object",
            "properties": {
                "summary": {
                    "type": "string",
                    "description": "Summary of the actions taken",
                }
            },
            "required": ["summary"],
        },
    )
