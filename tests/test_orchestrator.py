import asyncio

import pytest

from conftest import PASS, FakeBrowser, FakeLlm, text_reply, tool_call
from quest_runner.errors import ConversationInvariantError
from quest_runner.schemas.quest_schema import QuestDefinition, QuestLog, QuestScript, build_step
from quest_runner.services import agent_loop
from quest_runner.services.orchestrator import QuestRunner
from quest_runner.storage.knowledge_base import KnowledgeBase
from quest_runner.storage.quest_definitions_repo import QuestDefinitionsRepo
from quest_runner.storage.quest_log_repo import QuestLogRepo
from quest_runner.storage.script_store import ScriptStore

FAIL = '{"success": false, "reason": "No confirmation message visible"}'


class Harness:
    def __init__(self, browser, llm, config, rng):
        self.events = []
        self.definitions = QuestDefinitionsRepo(config.definitions_file)
        self.scripts = ScriptStore(config.scripts_dir, definitions=self.definitions)
        self.logs = QuestLogRepo(config.logs_dir)
        self.runner = QuestRunner(
            browser=browser,
            llm=llm,
            scripts=self.scripts,
            knowledge=KnowledgeBase(config.knowledge_file),
            logs=self.logs,
            config=config,
            events=self.events.append,
            model_id="anthropic/claude-sonnet-4-5",
            definitions=self.definitions,
            rng=rng,
        )

    def types(self):
        return [e.type for e in self.events]

    def last(self, kind):
        return [e for e in self.events if e.type == kind][-1]


def cached_script(*steps) -> QuestScript:
    return QuestScript(id="signup", name="Sign up", steps=list(steps), last_updated="2026-10-01T00:00:00+00:00")


class TestQuestRunner:
    @pytest.mark.asyncio
    async def test_clean_replay_counts_script_steps_only(self, browser: FakeBrowser, config, rng):
        llm = FakeLlm(reviews=[PASS])
        h = Harness(browser, llm, config, rng)
        saved = h.scripts.save("signup", cached_script(
            build_step("navigate", {"url": "https://shop.test/"}),
            build_step("press_key", {"key": "Enter"}),
        ))

        log = await h.runner.run("signup", "Sign up for the newsletter")

        assert log.status == "success"
        assert log.ai_step_count == 0
        assert log.script_step_count == log.step_count == 2
        assert llm.agent_calls == []
        assert h.scripts.get("signup").expires_at == saved.expires_at
        assert h.types()[-2:] == ["result", "done"]
        assert browser.launched and browser.closed

    @pytest.mark.asyncio
    async def test_fresh_run_saves_script_with_final_wait(self, browser: FakeBrowser, config, rng):
        llm = FakeLlm(
            agent=[
                tool_call("navigate", {"url": "https://shop.test/signup"}, "n1"),
                tool_call("type_text", {"selector": "#email", "text": "Ada Lovelace"}, "t1"),
            ],
            reviews=['{"success": true, "reason": "Account created", "data": {"plan": "Free"}}'],
        )
        h = Harness(browser, llm, config, rng)
        h.definitions.save(QuestDefinition(id="signup", name="Newsletter signup", expected_output=["plan"]))

        log = await h.runner.run("signup", "Sign up")

        script = h.scripts.get("signup")
        assert script.name == "Newsletter signup"
        assert [s.kind for s in script.steps] == ["navigate", "type_text", "wait"]
        assert script.steps[-1].params.duration == config.final_wait_ms
        assert log.status == "success"
        assert log.ai_step_count == 2 and log.script_step_count == 0
        assert log.summary == {"plan": "Free"}
        assert "Extracted data" in h.last("result").text
        assert '"plan"' in llm.review_calls[0][0]["content"][1]["text"]

    @pytest.mark.asyncio
    async def test_no_extra_wait_when_last_step_waits(self, browser: FakeBrowser, config, rng):
        llm = FakeLlm(agent=[tool_call("scroll", {}, "s1"), tool_call("random_wait", {}, "w1")], reviews=[PASS])
        h = Harness(browser, llm, config, rng)
        await h.runner.run("signup", "Browse")
        assert [s.kind for s in h.scripts.get("signup").steps] == ["scroll", "random_wait"]

    @pytest.mark.asyncio
    async def test_handoff_after_script_failure_keeps_history(self, browser: FakeBrowser, config, rng):
        browser.failing_selectors.add("#old-button")
        llm = FakeLlm(agent=[tool_call("click", {"selector": "#new-button"})], reviews=[PASS])
        h = Harness(browser, llm, config, rng)
        h.scripts.save("signup", cached_script(
            build_step("navigate", {"url": "https://shop.test/"}, description="Open shop"),
            build_step("click", {"selector": "#old-button"}),
            build_step("press_key", {"key": "Enter"}),
        ))

        log = await h.runner.run("signup", "Sign up")

        instruction = llm.agent_calls[0][0]["content"][0]["text"]
        assert "failed at step 2" in instruction
        assert "The last successful action was: Open shop" in instruction
        assert log.script_step_count == 1 and log.ai_step_count == 1
        steps = h.scripts.get("signup").steps
        assert [s.kind for s in steps] == ["navigate", "click", "wait"]
        assert steps[1].params.selector == "#new-button"

    @pytest.mark.asyncio
    async def test_review_failure_retries_once_then_succeeds(self, browser: FakeBrowser, config, rng):
        llm = FakeLlm(
            agent=[tool_call("scroll", {}, "s1"), text_reply("done"), tool_call("press_key", {"key": "Enter"}, "p1")],
            reviews=[FAIL, PASS],
        )
        h = Harness(browser, llm, config, rng)
        log = await h.runner.run("signup", "Sign up")
        assert log.status == "success"
        assert len(llm.review_calls) == 2
        retry_instruction = llm.agent_calls[-1][0]["content"][0]["text"]
        assert "REASON: No confirmation message visible" in retry_instruction

    @pytest.mark.asyncio
    async def test_second_review_failure_is_terminal(self, browser: FakeBrowser, config, rng):
        llm = FakeLlm(reviews=[FAIL, FAIL])
        h = Harness(browser, llm, config, rng)
        log = await h.runner.run("signup", "Sign up")
        assert log.status == "failed"
        assert h.scripts.get("signup") is None
        assert h.last("error").message == "Mission flagged by AI Review: No confirmation message visible"
        assert h.types()[-2:] == ["error", "done"]
        assert [entry.status for entry in h.logs.list()] == ["failed"]

    @pytest.mark.asyncio
    async def test_budget_extended_for_retry_near_edge(self, browser: FakeBrowser, config, rng):
        config.max_steps = 6
        agent = [tool_call("scroll", {}, f"s{i}") for i in range(6)]
        agent += [tool_call("press_key", {"key": "Tab"}, f"k{i}") for i in range(10)]
        llm = FakeLlm(agent=agent, reviews=[FAIL, PASS])
        h = Harness(browser, llm, config, rng)
        log = await h.runner.run("signup", "Fill form")
        assert log.step_count == 16
        assert any("Extending step budget to 16" in e.message for e in h.events if e.type == "log")

    @pytest.mark.asyncio
    async def test_stuck_agent_fails_run(self, browser: FakeBrowser, config, rng):
        llm = FakeLlm(agent=[tool_call("wait", {}, f"w{i}") for i in range(3)])
        h = Harness(browser, llm, config, rng)
        log = await h.runner.run("signup", "Sign up")
        assert log.status == "failed"
        assert "wait tool 3 times" in h.last("error").message
        assert llm.review_calls == []
        assert h.types()[-2:] == ["error", "done"]
        assert browser.closed

    @pytest.mark.asyncio
    async def test_driver_error_fails_run_and_closes_browser(self, browser: FakeBrowser, config, rng):
        async def broken_launch():
            raise RuntimeError("chromium missing")

        browser.launch = broken_launch
        h = Harness(browser, FakeLlm(), config, rng)
        log = await h.runner.run("signup", "Sign up")
        assert log.status == "failed"
        assert h.last("error").message == "Execution failed: chromium missing"
        assert browser.closed
        assert h.types()[-1] == "done"

    @pytest.mark.asyncio
    async def test_cancelled_run(self, browser: FakeBrowser, config, rng):
        cancel = asyncio.Event()
        cancel.set()
        h = Harness(browser, FakeLlm(), config, rng)
        log = await h.runner.run("signup", "Sign up", cancel_event=cancel)
        assert log.status == "failed"
        assert h.last("error").message == "Run cancelled"

    @pytest.mark.asyncio
    async def test_conversation_defect_propagates(self, browser: FakeBrowser, config, rng, monkeypatch):
        def broken_trim(self, messages):
            raise ConversationInvariantError("orphaned tool result")

        monkeypatch.setattr(agent_loop.ConversationWindow, "trim", broken_trim)
        h = Harness(browser, FakeLlm(), config, rng)
        with pytest.raises(ConversationInvariantError):
            await h.runner.run("signup", "Sign up")
        assert h.types()[-2:] == ["error", "done"]
        assert browser.closed
        assert [entry.status for entry in h.logs.list()] == ["failed"]

    @pytest.mark.asyncio
    async def test_historical_average_logged(self, browser: FakeBrowser, config, rng):
        h = Harness(browser, FakeLlm(reviews=[PASS]), config, rng)
        h.logs.save(QuestLog(
            id="old", quest_id="signup", timestamp="2026-10-01T10:00:00+00:00", duration_seconds=30,
            status="success", steps=[], step_count=3, ai_step_count=3, script_step_count=0,
        ))
        await h.runner.run("signup", "Sign up")
        messages = [e.message for e in h.events if e.type == "log"]
        assert "[Runner] Historical average for this quest: 3 steps" in messages


class CancellingLlm(FakeLlm):
    """Sets the cancel signal while the agent (or the review) call is in flight."""

    def __init__(self, cancel: asyncio.Event, during: str = "agent", **kwargs):
        super().__init__(**kwargs)
        self.cancel = cancel
        self.during = during

    async def invoke(self, messages, model_id, max_tokens, tools=None):
        if (tools and self.during == "agent") or (not tools and self.during == "review"):
            self.cancel.set()
        return await super().invoke(messages, model_id, max_tokens, tools)


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_during_agent_turn_skips_review(self, browser: FakeBrowser, config, rng):
        cancel = asyncio.Event()
        llm = CancellingLlm(cancel, reviews=[PASS])
        h = Harness(browser, llm, config, rng)

        log = await h.runner.run("signup", "Sign up", cancel_event=cancel)

        assert log.status == "failed"
        assert llm.review_calls == []
        assert h.scripts.get("signup") is None
        assert "result" not in h.types()
        assert h.types()[-2:] == ["error", "done"]
        assert h.last("error").message == "Run cancelled"

    @pytest.mark.asyncio
    async def test_cancel_during_last_replay_step(self, browser: FakeBrowser, config, rng):
        cancel = asyncio.Event()

        async def press_and_cancel(key):
            browser.actions.append(("press", key))
            cancel.set()

        browser.press_key = press_and_cancel
        llm = FakeLlm(reviews=[PASS])
        h = Harness(browser, llm, config, rng)
        original = h.scripts.save("signup", cached_script(
            build_step("navigate", {"url": "https://shop.test/"}),
            build_step("press_key", {"key": "Enter"}),
        ))

        log = await h.runner.run("signup", "Sign up", cancel_event=cancel)

        assert log.status == "failed"
        assert log.script_step_count == 2
        assert llm.review_calls == []
        assert llm.agent_calls == []
        assert h.scripts.get("signup").last_updated == original.last_updated
        assert "result" not in h.types()

    @pytest.mark.asyncio
    async def test_cancel_during_review_does_not_save_script(self, browser: FakeBrowser, config, rng):
        cancel = asyncio.Event()
        llm = CancellingLlm(cancel, during="review", reviews=[PASS])
        h = Harness(browser, llm, config, rng)

        log = await h.runner.run("signup", "Sign up", cancel_event=cancel)

        assert log.status == "failed"
        assert len(llm.review_calls) == 1
        assert h.scripts.get("signup") is None
        assert h.last("error").message == "Run cancelled"


class TestHandoffHistory:
    @pytest.mark.asyncio
    async def test_steps_without_description_are_labelled_from_params(self, browser: FakeBrowser, config, rng):
        browser.failing_selectors.add("#old-button")
        llm = FakeLlm(reviews=[PASS])
        h = Harness(browser, llm, config, rng)
        h.scripts.save("signup", cached_script(
            build_step("navigate", {"url": "https://shop.test/"}),
            build_step("click", {"selector": "#old-button"}),
        ))

        await h.runner.run("signup", "Sign up")

        instruction = llm.agent_calls[0][0]["content"][0]["text"]
        assert "1. https://shop.test/ (success)" in instruction
        assert "None (success)" not in instruction
        assert "The last successful action was: https://shop.test/" in instruction
