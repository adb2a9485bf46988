"""
Replay of a cached quest script.

Each step gets one automatic retry after a fixed backoff. Clicks are checked
against what the recording observed: a coordinate click first verifies the
recorded element is still under the point, and a click recorded as changing
the URL must change the URL again. DOM-only changes are not re-verified;
their timing varies too much between runs.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from quest_runner.errors import ElementMismatchError, StepExecutionError
from quest_runner.runner_config import RunnerConfig
from quest_runner.schemas.quest_schema import (
    ChangeType,
    ClickAtCoordinatesStep,
    ClickStep,
    ExpectedElement,
    QuestScript,
    QuestStep,
    step_params_dict,
)
from quest_runner.services import page_state
from quest_runner.services.actions import ActionExecutor
from quest_runner.services.browser import BrowserCapability
from quest_runner.services.context_service import RunContext, apply_substitutions
from quest_runner.services.run_state import RunReporter, RunState
from quest_runner.services.step_descriptions import describe_action
from quest_runner.services.validation import validate_all, validate_condition

logger = logging.getLogger(__name__)


def resolve_step(step: QuestStep, ctx: RunContext) -> QuestStep:
    """Copy of the step with context placeholders replaced by literal values."""
    params = type(step.params).model_validate(apply_substitutions(step_params_dict(step), ctx))
    return step.model_copy(update={"params": params})


class ScriptReplayer:
    def __init__(
        self,
        browser: BrowserCapability,
        executor: ActionExecutor,
        config: RunnerConfig,
        state: RunState,
        reporter: RunReporter,
    ):
        self.browser = browser
        self.executor = executor
        self.config = config
        self.state = state
        self.reporter = reporter

    async def replay(self, script: QuestScript) -> int | None:
        """Run the script. Returns the 0-based index where it failed, or None.

        A failure of the global success criteria reports index ``len(steps)``.
        Successful steps are appended to the run's recorded history.
        """
        for index, step in enumerate(script.steps):
            self.state.check_cancelled()
            if not await self.execute_step(step):
                self.reporter.log(f"Script failed at step {index + 1}. Switching to AI mode.")
                return index
            self.state.recorded_steps.append(step)
            self.state.script_steps_executed += 1

        if script.success_criteria:
            self.reporter.log("Script finished. Verifying final success criteria...")
            if not await validate_all(self.browser, script.success_criteria):
                self.reporter.log("Global success criteria failed. Script was incomplete.")
                return len(script.steps)
        return None

    async def execute_step(self, step: QuestStep, retry: bool = True) -> bool:
        resolved = resolve_step(step, self.state.context)
        desc = describe_action(resolved.kind, step_params_dict(resolved), self.config.scroll_amount)
        self.reporter.log(f"[Script]: {resolved.kind} - {desc}")

        try:
            await self._perform(resolved)
            await self.browser.wait_for_timeout(self.config.settle_ms)
            await self.reporter.url_update()
            await self.reporter.capture_screenshot()
            if step.validation and not await validate_condition(self.browser, step.validation):
                raise StepExecutionError("Step validation failed")
        except Exception as exc:
            if retry:
                self.reporter.log(
                    f"Step failed: {exc}. Waiting {self.config.step_retry_backoff_ms // 1000}s and retrying..."
                )
                await self.browser.wait_for_timeout(self.config.step_retry_backoff_ms)
                return await self.execute_step(step, retry=False)
            logger.warning("Step %s failed after retry: %s", step.kind, exc)
            self.reporter.log(f"Step failed after retry: {exc}")
            return False
        return True

    async def _perform(self, step: QuestStep) -> None:
        if isinstance(step, ClickAtCoordinatesStep):
            await self._verified_click(
                lambda: self.executor.perform(step),
                step.expected_change,
                step.expected_element,
                (step.params.x, step.params.y),
            )
        elif isinstance(step, ClickStep):
            await self.browser.wait_for_selector(
                step.params.selector,
                state="visible",
                timeout_ms=self.config.element_timeout_ms,
                iframe_selector=step.params.iframe_selector,
            )
            await self._verified_click(lambda: self.executor.perform(step), step.expected_change)
        else:
            await self.executor.perform(step)

    async def _verified_click(
        self,
        click: Callable[[], Awaitable[None]],
        expected_change: ChangeType | None,
        expected_element: ExpectedElement | None = None,
        coordinates: tuple[float, float] | None = None,
    ) -> None:
        await self.browser.wait_for_load(self.config.element_timeout_ms)

        if expected_element is not None and coordinates is not None:
            x, y = coordinates
            verification = await page_state.verify_element_with_fallback(self.browser, x, y, expected_element)
            if not verification.matches:
                raise ElementMismatchError(
                    f"Element mismatch at ({x}, {y}): expected {verification.expected}, "
                    f"but found {verification.actual}. A popup or layout change may be blocking the target."
                )
            self.reporter.log(f"  Verified: {verification.actual}")

        pre_fingerprint = await page_state.fingerprint(self.browser)
        pre_url = await self.browser.current_url()
        await click()
        actual_change = await page_state.detect_change(
            self.browser,
            pre_url,
            pre_fingerprint,
            self.config.change_timeout_ms,
            self.config.fingerprint_poll_ms,
        )

        if expected_change == "url" and actual_change != "url":
            self.reporter.log("  Retrying click (expected URL change)")
            await self.browser.wait_for_timeout(self.config.click_retry_delay_ms)
            retry_url = await self.browser.current_url()
            await click()
            await self.browser.wait_for_timeout(self.config.navigation_grace_ms)
            if await self.browser.current_url() == retry_url:
                raise StepExecutionError(
                    "Click validation failed: expected URL change but page did not navigate after retry."
                )
