"""
Quest run orchestrator.

Ties script replay, the agent loop and the QA reviewer together:

  script replay ─ok─> review ─pass─> success (script kept as is)
        │                 └─fail─┐
        └─fail─> agent loop ─> review ─fail─> retry agent loop ─> review ─> success | failed

Every run ends with a saved QuestLog, then a ``result`` or ``error`` event,
then ``done``. The browser is closed on every path.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import time
import uuid
from datetime import datetime, timezone

from quest_runner.errors import AgentStuckError, ConversationInvariantError, RunCancelledError
from quest_runner.llm_config import DEFAULT_MODELS, get_config
from quest_runner.runner_config import RunnerConfig, get_runner_config
from quest_runner.schemas.events import DoneEvent, ErrorEvent, EventSink, ResultEvent
from quest_runner.schemas.quest_schema import (
    WAIT_KINDS,
    QuestDefinition,
    QuestLog,
    QuestScript,
    WaitParams,
    WaitStep,
)
from quest_runner.services.actions import ActionExecutor
from quest_runner.services.agent_loop import AgentLoop
from quest_runner.services.browser import BrowserCapability
from quest_runner.services.context_service import generate_context
from quest_runner.services.llm import LlmCapability
from quest_runner.services.prompts import script_failed_context, script_retry_context
from quest_runner.services.reviewer import Reviewer, ReviewResult
from quest_runner.services.run_state import RunPhase, RunReporter, RunState, step_label
from quest_runner.services.script_replay import ScriptReplayer
from quest_runner.storage.knowledge_base import KnowledgeBase
from quest_runner.storage.quest_definitions_repo import QuestDefinitionsRepo
from quest_runner.storage.quest_log_repo import QuestLogRepo
from quest_runner.storage.script_store import ScriptStore

logger = logging.getLogger(__name__)

# A retry this close to the budget edge gets one extension
_BUDGET_EDGE = 5


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _log_id() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class QuestRunner:
    """Runs one quest at a time against the browser it was given."""

    def __init__(
        self,
        browser: BrowserCapability,
        llm: LlmCapability,
        scripts: ScriptStore,
        knowledge: KnowledgeBase,
        logs: QuestLogRepo,
        config: RunnerConfig | None = None,
        events: EventSink | None = None,
        model_id: str | None = None,
        definitions: QuestDefinitionsRepo | None = None,
        rng: random.Random | None = None,
    ):
        self.browser = browser
        self.llm = llm
        self.scripts = scripts
        self.knowledge = knowledge
        self.logs = logs
        self.config = config or get_runner_config()
        self.reporter = RunReporter(browser, events)
        self.model_id = model_id or get_config().model or DEFAULT_MODELS["anthropic"]
        self.definitions = definitions
        self.rng = rng or random.Random()

    def _definition(self, quest_id: str) -> QuestDefinition | None:
        if self.definitions is None:
            return None
        return self.definitions.get(quest_id)

    async def run(
        self,
        quest_id: str,
        quest_description: str,
        cancel_event: asyncio.Event | None = None,
    ) -> QuestLog:
        context = generate_context(self.config, rng=self.rng)
        state = RunState(
            quest_id=quest_id,
            context=context,
            max_steps=self.config.max_steps,
            cancel_event=cancel_event or asyncio.Event(),
        )
        reporter = self.reporter
        reporter.log(f"Starting quest {quest_id}")
        average = self.logs.average_steps(quest_id)
        if average:
            reporter.log(f"Historical average for this quest: {average} steps")
        reporter.log(f"Run context: {json.dumps(dict(context))}")

        try:
            await self.browser.launch()
            log = await self._run(state, quest_description)
        except RunCancelledError:
            state.enter(RunPhase.FAILED)
            reporter.log("Run cancelled.")
            log = self._save_log(state, "failed")
            reporter.emit(ErrorEvent(message="Run cancelled"))
        except AgentStuckError as exc:
            state.enter(RunPhase.FAILED)
            log = self._save_log(state, "failed")
            reporter.emit(ErrorEvent(message=str(exc)))
        except ConversationInvariantError as exc:
            logger.exception("Conversation invariant broken for quest %s", quest_id)
            self._save_log(state, "failed")
            reporter.emit(ErrorEvent(message=f"Execution failed: {exc}"))
            raise
        except Exception as exc:
            logger.exception("Quest %s failed", quest_id)
            reporter.log(f"Execution failed: {exc}")
            log = self._save_log(state, "failed")
            reporter.emit(ErrorEvent(message=f"Execution failed: {exc}"))
        finally:
            try:
                await self.browser.close()
            except Exception as exc:
                logger.warning("Failed to close browser: %s", exc)
            reporter.emit(DoneEvent())
        return log

    async def _run(self, state: RunState, quest_description: str) -> QuestLog:
        reporter = self.reporter
        definition = self._definition(state.quest_id)
        expected_output = definition.expected_output if definition else None
        executor = ActionExecutor(self.browser, self.config, self.rng)
        reviewer = Reviewer(self.llm, reporter, self.model_id, self.config.review_max_tokens)
        agent = AgentLoop(
            self.browser, self.llm, self.knowledge, executor, self.config, state, reporter, self.model_id
        )

        agent_context: str | None = None
        script = self.scripts.get(state.quest_id)
        if script is not None:
            reporter.log(f"Found cached script with {len(script.steps)} steps. Replaying...")
            state.enter(RunPhase.SCRIPT_REPLAY)
            failed_index = await ScriptReplayer(self.browser, executor, self.config, state, reporter).replay(script)
            state.check_cancelled()

            if failed_index is None:
                state.enter(RunPhase.SCRIPT_DONE)
                state.enter(RunPhase.AI_REVIEW)
                review = await reviewer.review(quest_description, state.recorded_steps, state.context, expected_output)
                state.check_cancelled()
                if review.success:
                    state.enter(RunPhase.SUCCESS)
                    return self._succeed(state, review)
                reporter.log(f"Script replay finished but review failed: {review.reason}")
                agent_context = script_retry_context(review.reason, state.step_history())
            else:
                state.enter(RunPhase.SCRIPT_FAILED)
                last = step_label(state.recorded_steps[-1]) if state.recorded_steps else None
                agent_context = script_failed_context(
                    failed_index + 1, state.step_history(), last or "None (failed at first step)"
                )
        else:
            reporter.log("No cached script. Starting AI agent...")

        state.enter(RunPhase.AI_HANDOFF)
        state.enter(RunPhase.AI_EXECUTION)
        await agent.run(quest_description, agent_context)
        state.check_cancelled()

        state.enter(RunPhase.AI_REVIEW)
        review = await reviewer.review(quest_description, state.recorded_steps, state.context, expected_output)
        state.check_cancelled()
        if not review.success:
            state.enter(RunPhase.REVIEW_FAILED)
            reporter.log(f"Review failed: {review.reason}. Retrying once...")
            state.enter(RunPhase.AI_RETRY)
            if not state.budget_extended and len(state.recorded_steps) >= state.max_steps - _BUDGET_EDGE:
                state.max_steps += self.config.budget_extension
                state.budget_extended = True
                reporter.log(f"Extending step budget to {state.max_steps} for the retry.")
            await agent.run(quest_description, script_retry_context(review.reason, state.step_history()))
            state.check_cancelled()

            state.enter(RunPhase.AI_REVIEW)
            review = await reviewer.review(quest_description, state.recorded_steps, state.context, expected_output)

        state.check_cancelled()
        if review.success:
            state.enter(RunPhase.REVIEW_PASSED)
            self._save_script(state, quest_description, script, definition)
            state.enter(RunPhase.SUCCESS)
            return self._succeed(state, review)

        state.enter(RunPhase.FAILED)
        log = self._save_log(state, "failed")
        reporter.emit(ErrorEvent(message=f"Mission flagged by AI Review: {review.reason}"))
        return log

    def _succeed(self, state: RunState, review: ReviewResult) -> QuestLog:
        log = self._save_log(state, "success", review.data or None)
        text = f"Quest completed successfully. {review.reason}".strip()
        if review.data:
            text += f"\nExtracted data: {json.dumps(review.data)}"
        self.reporter.emit(ResultEvent(text=text))
        return log

    def _save_script(
        self,
        state: RunState,
        quest_description: str,
        previous: QuestScript | None,
        definition: QuestDefinition | None,
    ) -> QuestScript:
        steps = list(state.recorded_steps)
        if not steps or steps[-1].kind not in WAIT_KINDS:
            steps.append(
                WaitStep(
                    params=WaitParams(duration=self.config.final_wait_ms),
                    description="Final wait for actions to settle",
                    timestamp=_now_iso(),
                )
            )
        if definition is not None:
            name = definition.name
        elif previous is not None:
            name = previous.name
        else:
            name = state.quest_id
        script = QuestScript(
            id=state.quest_id,
            name=name,
            description=quest_description,
            steps=steps,
            last_updated=_now_iso(),
            success_criteria=previous.success_criteria if previous else None,
        )
        saved = self.scripts.save(state.quest_id, script)
        self.reporter.log(f"Saved script with {len(saved.steps)} steps.")
        return saved

    def _save_log(self, state: RunState, status: str, summary: dict | None = None) -> QuestLog:
        steps = list(state.recorded_steps)
        log = QuestLog(
            id=_log_id(),
            quest_id=state.quest_id,
            timestamp=_now_iso(),
            duration_seconds=state.duration_seconds(),
            status=status,
            steps=steps,
            step_count=len(steps),
            ai_step_count=state.ai_steps_executed,
            script_step_count=state.script_steps_executed,
            context=dict(state.context),
            summary=summary,
        )
        saved = self.logs.save(log)
        logger.info("Saved %s log for quest %s (%d steps)", status, state.quest_id, len(steps))
        return saved
