"""Execute a single step against the browser."""

from __future__ import annotations

import random

from quest_runner.runner_config import RunnerConfig
from quest_runner.schemas.quest_schema import (
    ClickAtCoordinatesStep,
    ClickStep,
    NavigateStep,
    PressKeyStep,
    QuestStep,
    RandomWaitStep,
    ScrollStep,
    TypeTextStep,
    WaitStep,
)
from quest_runner.services.browser import BrowserCapability


class ActionExecutor:
    """Performs the browser action a step describes. Step params must already be resolved."""

    def __init__(self, browser: BrowserCapability, config: RunnerConfig, rng: random.Random | None = None):
        self.browser = browser
        self.config = config
        self.rng = rng or random.Random()

    async def perform(self, step: QuestStep) -> None:
        browser = self.browser
        params = step.params
        if isinstance(step, NavigateStep):
            await browser.goto(params.url, timeout_ms=self.config.navigation_timeout_ms)
        elif isinstance(step, TypeTextStep):
            if not params.selector:
                await browser.type_text(params.text)
            else:
                await browser.wait_for_selector(
                    params.selector,
                    state="visible",
                    timeout_ms=self.config.element_timeout_ms,
                    iframe_selector=params.iframe_selector,
                )
                await browser.fill(params.selector, params.text, iframe_selector=params.iframe_selector)
        elif isinstance(step, ClickStep):
            await browser.wait_for_selector(
                params.selector,
                state="visible",
                timeout_ms=self.config.element_timeout_ms,
                iframe_selector=params.iframe_selector,
            )
            await browser.click(params.selector, iframe_selector=params.iframe_selector)
        elif isinstance(step, ClickAtCoordinatesStep):
            await browser.click_at(params.x, params.y)
        elif isinstance(step, ScrollStep):
            await browser.scroll(params.direction, params.amount or self.config.scroll_amount)
        elif isinstance(step, PressKeyStep):
            await browser.press_key(params.key)
        elif isinstance(step, WaitStep):
            await browser.wait_for_timeout(params.duration)
        elif isinstance(step, RandomWaitStep):
            low, high = sorted((params.min_ms, params.max_ms))
            await browser.wait_for_timeout(self.rng.randint(low, high))
        else:
            raise TypeError(f"Unhandled step kind '{step.kind}'")
