"""Goal completion evaluation.

After each non-final attempt the lifecycle manager asks the evaluator
whether the agent actually satisfied the original request. The verdict
is produced by a model call; when that call or its parsing fails, a
conservative fallback verdict is returned instead of raising.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any

from otron.core.models import GoalEvaluation, message_text
from otron.prompts import get_goal_evaluation_template

if TYPE_CHECKING:
    from collections.abc import Sequence

    from otron.core.models import ExecutionSummary, Message
    from otron.core.protocols import ModelClient

logger = logging.getLogger(__name__)

EVALUATOR_SYSTEM = (
    "You are a precise goal completion evaluator. Always respond with valid JSON."
)
NO_REQUEST = "No clear user request found"


def _extract_json_from_code_blocks(text: str) -> str | None:
    """Return the first fenced code block whose content looks like a JSON object."""
    for match in re.finditer(r"```(?:json)?\s*\n?([\s\S]*?)```", text):
        content = match.group(1).strip()
        if content.startswith("{"):
            return content
    return None


def extract_user_request(messages: Sequence[Message]) -> str:
    """Text of the most recent user message."""
    for message in reversed(messages):
        if message.get("role") == "user":
            return message_text(message)
    return NO_REQUEST


def parse_evaluation(response_text: str) -> GoalEvaluation:
    """Parse the evaluator model's reply.

    Raises:
        ValueError: If no JSON object with the required fields and types
            can be extracted.
    """
    json_str = _extract_json_from_code_blocks(response_text)
    if json_str is None:
        # Try to find a raw JSON object (not in a code block)
        match = re.search(r"\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}", response_text, re.DOTALL)
        json_str = match.group(0) if match else response_text

    try:
        data: Any = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise ValueError(f"Evaluator reply is not JSON: {response_text[:200]}") from e

    if not isinstance(data, dict):
        raise ValueError("Evaluator reply must be a JSON object")
    is_complete = data.get("isComplete")
    confidence = data.get("confidence")
    reasoning = data.get("reasoning")
    if (
        not isinstance(is_complete, bool)
        or isinstance(confidence, bool)
        or not isinstance(confidence, (int, float))
        or not isinstance(reasoning, str)
    ):
        raise ValueError("Invalid evaluation result format")

    missing = data.get("missingActions") or []
    next_steps = data.get("nextSteps")
    return GoalEvaluation(
        is_complete=is_complete,
        confidence=max(0.0, min(1.0, float(confidence))),
        reasoning=reasoning,
        missing_actions=tuple(str(item) for item in missing if item)
        if isinstance(missing, list)
        else (),
        next_steps=next_steps if isinstance(next_steps, str) and next_steps else None,
    )


def fallback_evaluation(summary: ExecutionSummary) -> GoalEvaluation:
    """Verdict used when the evaluator model cannot be consulted."""
    return GoalEvaluation(
        is_complete=summary.ended_explicitly and bool(summary.tools_used),
        confidence=0.5,
        reasoning=(
            "Evaluation failed, using fallback logic. Agent used tools and "
            "ended explicitly."
        ),
        missing_actions=(),
        next_steps="Manual review recommended due to evaluation error.",
    )


class GoalEvaluator:
    """Judges whether an attempt completed the user's request.

    Args:
        model: Model client used for the evaluation call (no tools).
        max_tokens: Output cap for the evaluation reply.
    """

    def __init__(self, model: ModelClient, max_tokens: int = 1024) -> None:
        self._model = model
        self._max_tokens = max_tokens
        self._template = get_goal_evaluation_template()

    async def evaluate_goal_completion(
        self,
        original_messages: Sequence[Message],
        summary: ExecutionSummary,
        attempt_number: int = 1,
    ) -> GoalEvaluation:
        """Evaluate one attempt against the original request.

        Args:
            original_messages: Conversation as it was before any retry
                feedback was injected.
            summary: Outcome of the attempt.
            attempt_number: 1-based attempt counter.

        Returns:
            The parsed verdict, or the fallback verdict on any failure.
        """
        prompt = self._template.format(
            user_request=extract_user_request(original_messages),
            tools_used=", ".join(summary.tools_used),
            actions_performed="; ".join(summary.actions_performed),
            final_response=summary.final_response,
            ended_explicitly=str(summary.ended_explicitly).lower(),
            attempt_number=attempt_number,
        )
        try:
            turn = await self._model.generate(
                system=EVALUATOR_SYSTEM,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self._max_tokens,
            )
            evaluation = parse_evaluation(turn.text)
        except Exception:
            logger.warning("Goal evaluation failed; using fallback", exc_info=True)
            return fallback_evaluation(summary)

        logger.info(
            "Goal evaluation for attempt %d: complete=%s confidence=%.2f",
            attempt_number,
            evaluation.is_complete,
            evaluation.confidence,
        )
        return evaluation

    def generate_retry_feedback(
        self, evaluation: GoalEvaluation, attempt_number: int
    ) -> str:
        """Build the user-role message that drives the next attempt."""
        sections = [
            f"**Goal Completion Review - Attempt {attempt_number}**",
            "**Evaluation Result:** The previous attempt did not fully complete "
            "the intended goal.",
            f"**Reasoning:** {evaluation.reasoning}",
            f"**Confidence Level:** {round(evaluation.confidence * 100)}%",
        ]
        if evaluation.missing_actions:
            sections.append(
                "**Missing Actions:**\n"
                + "\n".join(f"- {action}" for action in evaluation.missing_actions)
            )
        if evaluation.next_steps:
            sections.append(f"**Next Steps:** {evaluation.next_steps}")
        sections.append(
            "**Instructions for this retry:**\n"
            "1. Review what was accomplished in the previous attempt\n"
            "2. Focus on completing the missing actions identified above\n"
            "3. Ensure you fully address the original user request\n"
            "4. Do not end prematurely - complete all necessary steps\n"
            "5. Use appropriate tools to accomplish the remaining tasks"
        )
        sections.append(
            "Please continue from where the previous attempt left off and "
            "complete the goal."
        )
        return "\n\n".join(sections)
