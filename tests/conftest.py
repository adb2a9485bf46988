"""In-memory fakes for the browser and LLM capabilities."""

from __future__ import annotations

import random
from pathlib import Path

import pytest

from quest_runner.runner_config import RunnerConfig
from quest_runner.services import page_state
from quest_runner.services.llm import LlmResponse, LlmUsage


class FakeBrowser:
    """Scriptable single-page browser.

    ``navigations`` maps a selector or an ``(x, y)`` point to the URL a click
    there leads to; ``dom_changes`` maps them to the new page text. Every
    wait returns immediately.
    """

    def __init__(self, url: str = "https://shop.test/"):
        self.url = url
        self.title = "Shop"
        self.text = "Welcome"
        self.fields: list = []
        self.elements: dict[tuple[float, float], dict] = {}
        self.nearby: dict[tuple[float, float], list[dict]] = {}
        self.failing_selectors: set[str] = set()
        self.navigations: dict = {}
        self.dom_changes: dict = {}
        self.missing_text: set[str] = set()
        self.screenshot_fails = False
        self.launched = False
        self.closed = False
        self.actions: list[tuple] = []
        self.waits: list[int] = []

    async def launch(self) -> None:
        self.launched = True

    async def close(self) -> None:
        self.closed = True

    async def goto(self, url: str, timeout_ms: int = 30000) -> None:
        self.actions.append(("goto", url))
        self.url = url

    def _apply(self, target) -> None:
        if target in self.navigations:
            self.url = self.navigations[target]
        if target in self.dom_changes:
            self.text = self.dom_changes[target]

    async def click(self, selector: str, iframe_selector: str | None = None) -> None:
        if selector in self.failing_selectors:
            raise TimeoutError(f"Timeout waiting for {selector}")
        self.actions.append(("click", selector))
        self._apply(selector)

    async def click_at(self, x: float, y: float) -> None:
        self.actions.append(("click_at", x, y))
        self._apply((x, y))

    async def fill(self, selector: str, text: str, iframe_selector: str | None = None) -> None:
        if selector in self.failing_selectors:
            raise TimeoutError(f"Timeout waiting for {selector}")
        self.actions.append(("fill", selector, text))
        self.fields.append([selector, text])

    async def type_text(self, text: str) -> None:
        self.actions.append(("type", text))

    async def press_key(self, key: str) -> None:
        self.actions.append(("press", key))

    async def scroll(self, direction: str, amount: int) -> None:
        self.actions.append(("scroll", direction, amount))

    async def screenshot(self) -> bytes:
        if self.screenshot_fails:
            raise RuntimeError("page crashed")
        return b"\xff\xd8fake-jpeg"

    async def evaluate(self, script: str, arg=None):
        if script == page_state._SNAPSHOT_JS:
            return {"url": self.url, "title": self.title, "focused": "", "fields": self.fields, "text": self.text}
        if script == page_state._ELEMENT_AT_JS:
            return self.elements.get(tuple(arg))
        if script == page_state._HIERARCHY_SEARCH_JS:
            x, y, tag, text = arg
            needle = (text or "").strip().lower()
            for node in self.nearby.get((x, y), []):
                if node["tag"] == tag and needle in node["text"].lower():
                    return dict(node)
            return None
        raise AssertionError("unexpected script")

    async def current_url(self) -> str:
        return self.url

    async def wait_for_selector(self, selector, state="visible", timeout_ms=5000, iframe_selector=None) -> None:
        if selector in self.failing_selectors:
            raise TimeoutError(f"Timeout waiting for {selector}")
        if selector.startswith("text=") and selector[5:] in self.missing_text:
            raise TimeoutError(f"Timeout waiting for {selector}")

    async def wait_for_url_contains(self, value: str, timeout_ms: int = 5000) -> None:
        if value not in self.url:
            raise TimeoutError(f"URL does not contain {value}")

    async def wait_for_load(self, timeout_ms: int = 5000) -> None:
        return None

    async def wait_for_timeout(self, ms: int) -> None:
        self.waits.append(ms)


def tool_call(name: str, tool_input: dict, call_id: str = "toolu_1") -> LlmResponse:
    return LlmResponse(
        content=[{"type": "tool_use", "id": call_id, "name": name, "input": tool_input}],
        usage=LlmUsage(input_tokens=100, output_tokens=20),
    )


def text_reply(text: str) -> LlmResponse:
    return LlmResponse(content=[{"type": "text", "text": text}], usage=LlmUsage(input_tokens=50, output_tokens=10))


PASS = '{"success": true, "reason": "Goal reached", "data": {}}'


class FakeLlm:
    """Agent calls (with tools) and review calls (without) draw from separate queues."""

    def __init__(self, agent: list[LlmResponse] | None = None, reviews: list[str] | None = None):
        self.agent = list(agent or [])
        self.reviews = list(reviews or [])
        self.agent_calls: list[list[dict]] = []
        self.review_calls: list[list[dict]] = []

    async def invoke(self, messages, model_id, max_tokens, tools=None) -> LlmResponse:
        if tools:
            self.agent_calls.append(messages)
            if self.agent:
                return self.agent.pop(0)
            return text_reply("Done.")
        self.review_calls.append(messages)
        if not self.reviews:
            raise AssertionError("no review response queued")
        reply = self.reviews.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return text_reply(reply)


@pytest.fixture
def browser() -> FakeBrowser:
    return FakeBrowser()


@pytest.fixture
def config(tmp_path: Path) -> RunnerConfig:
    return RunnerConfig(data_dir=tmp_path)


@pytest.fixture
def rng() -> random.Random:
    return random.Random(7)
