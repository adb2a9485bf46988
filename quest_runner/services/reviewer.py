"""Independent QA review of a finished agent run."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field

from quest_runner.schemas.quest_schema import QuestStep, step_params_dict
from quest_runner.services.context_service import RunContext, apply_substitutions
from quest_runner.services.llm import LlmCapability
from quest_runner.services.prompts import qa_review_prompt
from quest_runner.services.run_state import RunReporter

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


@dataclass
class ReviewResult:
    success: bool
    reason: str
    data: dict = field(default_factory=dict)


def parse_review(text: str) -> ReviewResult:
    """Extract the verdict object from free-form model output.

    Anything that is not a JSON object counts as a failed review.
    """
    match = _JSON_OBJECT.search(text or "")
    if not match:
        return ReviewResult(success=False, reason="Could not parse AI response")
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError:
        return ReviewResult(success=False, reason="Could not parse AI response")
    if not isinstance(payload, dict):
        return ReviewResult(success=False, reason="Could not parse AI response")

    data = payload.get("data")
    return ReviewResult(
        success=payload.get("success") is True,
        reason=str(payload.get("reason") or ""),
        data=data if isinstance(data, dict) else {},
    )


def step_context(steps: list[QuestStep], ctx: RunContext) -> str:
    """Numbered history with placeholders resolved, so typed values are visible."""
    lines = []
    for i, step in enumerate(steps):
        params = json.dumps(apply_substitutions(step_params_dict(step), ctx))
        lines.append(f"Step {i + 1}: {step.kind} {params}")
    return "\n".join(lines)


class Reviewer:
    def __init__(self, llm: LlmCapability, reporter: RunReporter, model_id: str, max_tokens: int = 2000):
        self.llm = llm
        self.reporter = reporter
        self.model_id = model_id
        self.max_tokens = max_tokens

    async def review(
        self,
        quest_description: str,
        steps: list[QuestStep],
        ctx: RunContext,
        expected_output: list[str] | None = None,
    ) -> ReviewResult:
        self.reporter.log("Reviewing the final state with the QA agent...")
        screenshot = await self.reporter.capture_screenshot()
        if not screenshot:
            return ReviewResult(success=False, reason="Failed to capture screenshot")

        prompt = qa_review_prompt(quest_description, step_context(steps, ctx), expected_output)
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "image", "source": {"type": "base64", "media_type": "image/jpeg", "data": screenshot}},
                    {"type": "text", "text": prompt},
                ],
            }
        ]
        try:
            response = await self.llm.invoke(messages, self.model_id, self.max_tokens)
        except Exception as exc:
            logger.exception("Review call failed")
            return ReviewResult(success=False, reason=f"AI Error: {exc}")

        self.reporter.token_usage(response.usage, label="Review")
        result = parse_review(response.text)
        self.reporter.log(f"Review verdict: {'PASS' if result.success else 'FAIL'} - {result.reason}")
        return result
