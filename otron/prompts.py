"""Shared prompt loading utilities.

Prompt templates live in ``otron/prompts/*.md``. Literal braces in a
template are escaped so only the named placeholders are substituted.
"""

from __future__ import annotations

import functools
from pathlib import Path

# Prompt directory relative to this module
_PROMPT_DIR = Path(__file__).parent / "prompts"

SYSTEM_PROMPT_FILE = _PROMPT_DIR / "system.md"
GOAL_EVALUATION_FILE = _PROMPT_DIR / "goal_evaluation.md"


def _escape_template(template: str, keys: tuple[str, ...]) -> str:
    escaped = template.replace("{", "{{").replace("}", "}}")
    for key in keys:
        escaped = escaped.replace(f"{{{{{key}}}}}", f"{{{key}}}")
    return escaped


@functools.cache
def get_system_prompt_template() -> str:
    """Load the agent system prompt template (cached on first use)."""
    return _escape_template(
        SYSTEM_PROMPT_FILE.read_text(), ("repository_context", "memory_context")
    )


@functools.cache
def get_goal_evaluation_template() -> str:
    """Load the goal evaluation prompt template (cached on first use)."""
    return _escape_template(
        GOAL_EVALUATION_FILE.read_text(),
        (
            "user_request",
            "tools_used",
            "actions_performed",
            "final_response",
            "ended_explicitly",
            "attempt_number",
        ),
    )
