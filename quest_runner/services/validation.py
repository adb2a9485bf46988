"""Post-condition checks for steps and scripts."""

from __future__ import annotations

import logging

from quest_runner.schemas.quest_schema import StepValidation
from quest_runner.services.browser import BrowserCapability

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 5000


async def validate_condition(browser: BrowserCapability, validation: StepValidation) -> bool:
    """Wait for the condition to hold. Returns False on timeout or driver error."""
    timeout = validation.timeout_ms or DEFAULT_TIMEOUT_MS
    try:
        if validation.kind == "url_contains":
            await browser.wait_for_url_contains(validation.value, timeout_ms=timeout)
        elif validation.kind == "element_visible":
            await browser.wait_for_selector(validation.value, state="visible", timeout_ms=timeout)
        elif validation.kind == "element_hidden":
            await browser.wait_for_selector(validation.value, state="hidden", timeout_ms=timeout)
        elif validation.kind == "text_present":
            await browser.wait_for_selector(f"text={validation.value}", state="visible", timeout_ms=timeout)
    except Exception as exc:
        logger.info("Condition %s=%r not met: %s", validation.kind, validation.value, exc)
        return False
    return True


async def validate_all(browser: BrowserCapability, criteria: list[StepValidation]) -> bool:
    for criterion in criteria:
        if not await validate_condition(browser, criterion):
            return False
    return True
