"""File-based storage for per-run quest logs."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path

from pydantic import ValidationError

from quest_runner.schemas.quest_schema import ClickStep, QuestLog, QuestStep, TypeTextStep
from quest_runner.services.context_service import apply_substitutions

logger = logging.getLogger(__name__)

# Clicks on these labels move through a funnel and say nothing about choices made
_NAVIGATION_LABELS = ("Continue", "Next", "Sign Up")


def _click_label(step: ClickStep) -> str:
    label = (step.description or step.params.selector).replace("AI Action: click ", "").replace('"', "")
    match = re.search(r"\[data-testid='(.+?)'\]", label)
    return match.group(1) if match else label


def build_summary(steps: list[QuestStep], context: dict[str, str] | None = None) -> dict:
    """Derive the choices made during a run from its steps.

    Typed text is reported with context placeholders resolved.
    """
    selections: list[str] = []
    email: str | None = None
    for step in steps:
        if isinstance(step, ClickStep):
            label = _click_label(step)
            if label and not any(word in label for word in _NAVIGATION_LABELS):
                selections.append(f"Clicked: {label}")
        elif isinstance(step, TypeTextStep):
            text = apply_substitutions({"text": step.params.text}, context or {})["text"]
            if "@" in text:
                email = email or text
            else:
                selections.append(f"Typed: {text}")
    return {"selections": selections, "email": email}


class QuestLogRepo:
    """One JSON file per run in ``{base_dir}``, named ``{timestamp}-{quest_id}.json``."""

    def __init__(self, base_dir: str | Path | None = None):
        if base_dir is None:
            base_dir = Path("data/logs")
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def save(self, log: QuestLog) -> QuestLog:
        """Write a log, deriving a summary when the run did not extract one."""
        if log.summary is None:
            log = log.model_copy(update={"summary": build_summary(log.steps, log.context)})
        stamp = re.sub(r"[:.+]", "-", log.timestamp)
        path = self.base_dir / f"{stamp}-{log.quest_id}.json"
        path.write_text(
            json.dumps(log.model_dump(by_alias=True, exclude_none=True), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        return log

    def list(self) -> list[QuestLog]:
        """All logs, newest first."""
        logs = []
        for p in self.base_dir.glob("*.json"):
            try:
                logs.append(QuestLog.model_validate(json.loads(p.read_text(encoding="utf-8"))))
            except (json.JSONDecodeError, OSError, ValidationError):
                logger.warning("Skipping unreadable quest log %s", p.name)
                continue
        return sorted(logs, key=lambda log: log.timestamp, reverse=True)

    def average_steps(self, quest_id: str) -> int:
        """Mean step count over successful runs of a quest, 0 if none."""
        counts = [log.step_count for log in self.list() if log.quest_id == quest_id and log.status == "success"]
        if not counts:
            return 0
        return round(sum(counts) / len(counts))
