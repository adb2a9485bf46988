import pytest

from conftest import FakeBrowser
from quest_runner.runner_config import RunnerConfig, load_runner_config
from quest_runner.schemas.quest_schema import StepValidation, build_step, dump_step
from quest_runner.services.actions import ActionExecutor
from quest_runner.services.step_descriptions import agent_step_description, describe_action
from quest_runner.services.validation import validate_all, validate_condition


class TestActionExecutor:
    @pytest.mark.asyncio
    async def test_each_kind_reaches_browser(self, browser: FakeBrowser, config, rng):
        executor = ActionExecutor(browser, config, rng)
        for kind, params in [
            ("navigate", {"url": "https://shop.test/a"}),
            ("type_text", {"text": "hello"}),
            ("type_text", {"text": "x", "selector": "#q"}),
            ("click", {"selector": "#go"}),
            ("click_at_coordinates", {"x": 1, "y": 2}),
            ("scroll", {"direction": "up"}),
            ("press_key", {"key": "Tab"}),
        ]:
            await executor.perform(build_step(kind, params))
        assert browser.actions == [
            ("goto", "https://shop.test/a"),
            ("type", "hello"),
            ("fill", "#q", "x"),
            ("click", "#go"),
            ("click_at", 1, 2),
            ("scroll", "up", config.scroll_amount),
            ("press", "Tab"),
        ]

    @pytest.mark.asyncio
    async def test_waits(self, browser: FakeBrowser, config, rng):
        executor = ActionExecutor(browser, config, rng)
        await executor.perform(build_step("wait", {"duration": 750}))
        await executor.perform(build_step("random_wait", {"min": 500, "max": 2000}))
        assert browser.waits[0] == 750
        assert 500 <= browser.waits[1] <= 2000


class TestValidation:
    @pytest.mark.asyncio
    async def test_url_contains(self, browser: FakeBrowser):
        assert await validate_condition(browser, StepValidation(kind="url_contains", value="shop.test"))
        assert not await validate_condition(browser, StepValidation(kind="url_contains", value="/done"))

    @pytest.mark.asyncio
    async def test_all_must_hold(self, browser: FakeBrowser):
        browser.failing_selectors.add("#receipt")
        criteria = [
            StepValidation(kind="url_contains", value="shop.test"),
            StepValidation(kind="element_visible", value="#receipt", timeoutMs=100),
        ]
        assert not await validate_all(browser, criteria)
        assert await validate_all(browser, criteria[:1])


class TestStepModel:
    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            build_step("hover", {"selector": "#menu"})

    def test_wire_names(self):
        step = build_step(
            "type_text",
            {"text": "4111", "selector": "#card", "iframeSelector": "iframe[title='pay']"},
            expected_change="dom",
        )
        dumped = dump_step(step)
        assert dumped["params"]["iframeSelector"] == "iframe[title='pay']"
        assert dumped["expectedChange"] == "dom"


class TestDescriptions:
    def test_describe_action(self):
        assert describe_action("click", {"selector": "text=Sign Up"}) == '"Sign Up"'
        assert describe_action("click", {"selector": "button:has-text('Next')"}) == '"Next"'
        assert describe_action("type_text", {"text": "a" * 40, "selector": "#bio"}) == f'"{"a" * 30}..." into #bio'
        assert describe_action("scroll", {"direction": "down"}, scroll_amount=384) == "down 384px"
        assert describe_action("wait", {"duration": 1000}) == "1000ms"

    def test_agent_description(self):
        assert agent_step_description("click_at_coordinates", {"x": 5, "y": 6, "description": "Buy"}) == (
            "AI Action: click at (5, 6) - Buy"
        )
        assert agent_step_description("scroll", {}) == "AI Action: scroll"


class TestRunnerConfig:
    def test_env_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("QUEST_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("QUEST_MAX_STEPS", "12")
        monkeypatch.setenv("QUEST_HEADLESS", "false")
        monkeypatch.setenv("QUEST_MESSAGE_WINDOW", "not-a-number")
        config = load_runner_config()
        assert config.max_steps == 12
        assert config.headless is False
        assert config.message_window == RunnerConfig().message_window
        assert config.scripts_dir == tmp_path / "scripts"
