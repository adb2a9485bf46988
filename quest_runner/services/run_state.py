"""
Per-run mutable state and event reporting shared by the runner phases.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass, field
from enum import Enum

from quest_runner.errors import RunCancelledError
from quest_runner.schemas.events import EventSink, LogEvent, ScreenshotEvent, TokenUsageEvent, UrlUpdateEvent
from quest_runner.schemas.quest_schema import QuestStep, step_params_dict
from quest_runner.services.browser import BrowserCapability
from quest_runner.services.context_service import RunContext
from quest_runner.services.llm import LlmUsage
from quest_runner.services.step_descriptions import describe_action

logger = logging.getLogger(__name__)


class RunPhase(str, Enum):
    SCRIPT_REPLAY = "script_replay"
    SCRIPT_DONE = "script_done"
    SCRIPT_FAILED = "script_failed"
    AI_HANDOFF = "ai_handoff"
    AI_EXECUTION = "ai_execution"
    AI_REVIEW = "ai_review"
    REVIEW_PASSED = "review_passed"
    REVIEW_FAILED = "review_failed"
    AI_RETRY = "ai_retry"
    SUCCESS = "success"
    FAILED = "failed"


def step_label(step: QuestStep) -> str:
    """The recorded description, or one derived from the params for hand-written steps."""
    return step.description or describe_action(step.kind, step_params_dict(step))


@dataclass
class RunState:
    quest_id: str
    context: RunContext
    max_steps: int
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    recorded_steps: list[QuestStep] = field(default_factory=list)
    script_steps_executed: int = 0
    phase: RunPhase = RunPhase.SCRIPT_REPLAY
    budget_extended: bool = False
    started_at: float = field(default_factory=time.monotonic)

    @property
    def ai_steps_executed(self) -> int:
        return len(self.recorded_steps) - self.script_steps_executed

    def enter(self, phase: RunPhase) -> None:
        logger.info("Quest %s: %s -> %s", self.quest_id, self.phase.value, phase.value)
        self.phase = phase

    def check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise RunCancelledError("Run cancelled")

    def step_history(self) -> str:
        return "\n".join(
            f"{i + 1}. {step_label(s)} ({s.status})" for i, s in enumerate(self.recorded_steps)
        )

    def duration_seconds(self) -> int:
        return round(time.monotonic() - self.started_at)


class RunReporter:
    """Mirrors runner messages to the module logger and the event stream."""

    def __init__(self, browser: BrowserCapability, sink: EventSink | None = None):
        self.browser = browser
        self.sink = sink

    def emit(self, event) -> None:
        if self.sink is not None:
            self.sink(event)

    def log(self, message: str) -> None:
        logger.info(message)
        self.emit(LogEvent(message=f"[Runner] {message}"))

    def token_usage(self, usage: LlmUsage | None, label: str = "AI") -> None:
        if usage is None:
            return
        self.log(f"{label} Token Usage - Input: {usage.input_tokens}, Output: {usage.output_tokens}")
        self.emit(TokenUsageEvent(input=usage.input_tokens, output=usage.output_tokens))

    async def url_update(self) -> str:
        url = await self.browser.current_url()
        self.emit(UrlUpdateEvent(url=url))
        return url

    async def capture_screenshot(self) -> str | None:
        """Base64 JPEG of the page, or None if the capture failed."""
        try:
            image = base64.b64encode(await self.browser.screenshot()).decode("ascii")
        except Exception as exc:
            logger.warning("Screenshot failed: %s", exc)
            self.log("Failed to capture screenshot")
            return None
        self.emit(ScreenshotEvent(image=image))
        return image
