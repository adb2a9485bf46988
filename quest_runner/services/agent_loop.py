"""
Agent execution loop.

Drives the model through tool calls until it stops calling tools, the step
budget runs out, or it is judged stuck. Every successful tool call is
recorded as a step (with context values turned back into placeholders) so a
successful run can be saved as the next script.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import ValidationError

from quest_runner.errors import AgentStuckError, StepExecutionError
from quest_runner.runner_config import RunnerConfig
from quest_runner.schemas.events import ResultEvent
from quest_runner.schemas.quest_schema import (
    SELECTOR_KINDS,
    WAIT_KINDS,
    ClickAtCoordinatesStep,
    ClickStep,
    QuestStep,
    build_step,
    step_params_dict,
)
from quest_runner.services import page_state
from quest_runner.services.actions import ActionExecutor
from quest_runner.services.browser import BrowserCapability
from quest_runner.services.context_service import DYNAMIC_EMAIL_KEY, reverse_substitutions
from quest_runner.services.conversation_window import ConversationWindow, prune_screenshots
from quest_runner.services.llm import LlmCapability
from quest_runner.services.prompts import browser_agent_prompt, failed_selectors_note, selector_hints_note
from quest_runner.services.run_state import RunReporter, RunState
from quest_runner.services.step_descriptions import agent_step_description, describe_action
from quest_runner.services.tools import BROWSER_TOOLS, PAGE_CHANGING_TOOLS
from quest_runner.storage.knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)


def _text_turn(text: str) -> dict:
    return {"role": "user", "content": [{"type": "text", "text": text}]}


@dataclass
class SelectorMemory:
    """Selectors that failed on the current page since the last navigation."""
    url: str
    failed: list[str] = field(default_factory=list)
    failures_since_success: int = 0

    def follow(self, url: str) -> None:
        if url != self.url:
            self.url = url
            self.failed = []
            self.failures_since_success = 0

    def record_failure(self, selector: str) -> None:
        if selector not in self.failed:
            self.failed.append(selector)
        self.failures_since_success += 1


@dataclass
class ToolOutcome:
    tool_use_id: str
    name: str
    text: str


class AgentLoop:
    def __init__(
        self,
        browser: BrowserCapability,
        llm: LlmCapability,
        knowledge: KnowledgeBase,
        executor: ActionExecutor,
        config: RunnerConfig,
        state: RunState,
        reporter: RunReporter,
        model_id: str,
    ):
        self.browser = browser
        self.llm = llm
        self.knowledge = knowledge
        self.executor = executor
        self.config = config
        self.state = state
        self.reporter = reporter
        self.model_id = model_id
        self.window = ConversationWindow(config.message_window)

    def _instruction(self, quest_description: str, context: str | None) -> str:
        return browser_agent_prompt(
            quest_description,
            context,
            self.state.context.get(DYNAMIC_EMAIL_KEY, ""),
            self.config.viewport_width,
            self.config.viewport_height,
            self.config.scroll_amount,
        )

    async def run(self, quest_description: str, context: str | None = None) -> None:
        messages: list[dict] = [_text_turn(self._instruction(quest_description, context))]
        memory = SelectorMemory(url=await self.browser.current_url())
        consecutive_waits = 0

        remaining = self.state.max_steps - len(self.state.recorded_steps)
        for i in range(max(0, remaining)):
            self.state.check_cancelled()
            prune_screenshots(messages)

            current_url = await self.browser.current_url()
            memory.follow(current_url)

            hints = self.knowledge.get_proven_selectors(current_url)
            if hints:
                messages.append(_text_turn(selector_hints_note(hints)))
            if memory.failed:
                messages.append(_text_turn(failed_selectors_note(memory.failed)))

            self.reporter.log(f"AI Step {i + 1}: Thinking...")
            response = await self.llm.invoke(
                self.window.trim(messages),
                self.model_id,
                self.config.agent_max_tokens,
                BROWSER_TOOLS,
            )
            self.reporter.token_usage(response.usage)
            messages.append({"role": "assistant", "content": response.content})

            tool_uses = response.tool_uses
            if not tool_uses:
                self.reporter.log("AI finished quest. Proceeding to verification...")
                await self.reporter.capture_screenshot()
                return

            outcomes: list[ToolOutcome] = []
            for tool_use in tool_uses:
                outcomes.append(await self._run_tool(tool_use, current_url, memory))
                if tool_use["name"] in WAIT_KINDS:
                    consecutive_waits += 1
                else:
                    consecutive_waits = 0

            if consecutive_waits >= self.config.max_consecutive_waits:
                message = (
                    f"Mission failed: AI used wait tool {self.config.max_consecutive_waits} times consecutively. "
                    "The agent appears to be stuck and unable to make progress."
                )
                self.reporter.log(message)
                raise AgentStuckError(message)

            screenshot = await self.reporter.capture_screenshot()
            messages.append(self._tool_results_turn(outcomes, screenshot))

        if len(self.state.recorded_steps) >= self.state.max_steps:
            self.reporter.log("Max steps reached. Stopping quest.")
            self.reporter.emit(ResultEvent(text="Quest stopped because the maximum number of steps was reached."))

    def _tool_results_turn(self, outcomes: list[ToolOutcome], screenshot: str | None) -> dict:
        """One tool_result per call; a single screenshot rides on the last one."""
        blocks = []
        for idx, outcome in enumerate(outcomes):
            content: list[dict] = [{"type": "text", "text": outcome.text}]
            is_last = idx == len(outcomes) - 1
            if is_last and screenshot and outcome.name in PAGE_CHANGING_TOOLS:
                content.append(
                    {"type": "image", "source": {"type": "base64", "media_type": "image/jpeg", "data": screenshot}}
                )
            blocks.append({"type": "tool_result", "tool_use_id": outcome.tool_use_id, "content": content})
        return {"role": "user", "content": blocks}

    async def _run_tool(self, tool_use: dict, page_url: str, memory: SelectorMemory) -> ToolOutcome:
        name = tool_use["name"]
        raw_input = dict(tool_use.get("input") or {})
        tool_id = tool_use.get("id") or tool_use.get("tool_use_id") or ""
        self.reporter.log(f"[AI]: {name} - {describe_action(name, raw_input, self.config.scroll_amount)}")

        selector = raw_input.get("selector") if name in SELECTOR_KINDS else None
        try:
            try:
                step = build_step(name, raw_input)
            except ValidationError as exc:
                raise StepExecutionError(f"Invalid input for tool '{name}': {exc.errors()[0]['msg']}") from exc

            if selector and selector in memory.failed:
                raise StepExecutionError(
                    f'You have already tried selector "{selector}" on this page and it failed. '
                    "Do not use it again. Pick a different selector."
                )

            performed = await self._perform(step)
            await self.browser.wait_for_timeout(self.config.settle_ms)
            await self.reporter.url_update()
            self.state.recorded_steps.append(self._record(performed))

            if selector and memory.failures_since_success > 0:
                if self.knowledge.learn(page_url, selector):
                    self.reporter.log(f"Learning: Found working selector '{selector}' after failures.")
                memory.failures_since_success = 0
        except Exception as exc:
            logger.debug("Tool %s failed: %s", name, exc)
            return self._tool_error(tool_id, name, exc, selector, memory)
        return ToolOutcome(tool_use_id=tool_id, name=name, text="Success")

    def _tool_error(
        self, tool_id: str, name: str, exc: Exception, selector: str | None, memory: SelectorMemory
    ) -> ToolOutcome:
        self.reporter.log(f"[Agent] Tool error ({name}): {exc}")
        if selector:
            memory.record_failure(selector)
        return ToolOutcome(tool_use_id=tool_id, name=name, text=f"Error: {exc}")

    async def _perform(self, step: QuestStep) -> QuestStep:
        """Execute the step; clicks come back annotated with what they changed."""
        if isinstance(step, ClickAtCoordinatesStep):
            target = None
            try:
                target = await page_state.element_at(self.browser, step.params.x, step.params.y)
            except Exception as exc:
                logger.debug("Element capture before click failed: %s", exc)
            if target is not None:
                self.reporter.log(f'  Target: {target.tag} "{target.text}"')
            change = await self._click_and_detect(step)
            return step.model_copy(update={"expected_change": change, "expected_element": target})

        if isinstance(step, ClickStep):
            change = await self._click_and_detect(step)
            return step.model_copy(update={"expected_change": change})

        await self.executor.perform(step)
        return step

    async def _click_and_detect(self, step: QuestStep):
        pre_url = await self.browser.current_url()
        pre_fingerprint = await page_state.fingerprint(self.browser)
        await self.executor.perform(step)
        return await page_state.detect_change(
            self.browser,
            pre_url,
            pre_fingerprint,
            self.config.change_timeout_ms,
            self.config.fingerprint_poll_ms,
        )

    def _record(self, step: QuestStep) -> QuestStep:
        """Persistable copy: context values become placeholders again."""
        templated = reverse_substitutions(step_params_dict(step), self.state.context)
        return step.model_copy(
            update={
                "params": type(step.params).model_validate(templated),
                "description": agent_step_description(step.kind, templated),
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "status": "success",
            }
        )
