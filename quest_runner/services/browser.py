"""
Browser capability consumed by the runner, and its Playwright session.

The runner only decides when and how to act; every page interaction goes
through ``BrowserCapability``. ``PlaywrightBrowser`` is an explicit session
object owned by one run: ``launch`` opens one page, ``close`` releases it.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from playwright.async_api import (
    Browser,
    Locator,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

logger = logging.getLogger(__name__)


class BrowserCapability(Protocol):
    async def launch(self) -> None: ...

    async def close(self) -> None: ...

    async def goto(self, url: str, timeout_ms: int = 30000) -> None: ...

    async def click(self, selector: str, iframe_selector: str | None = None) -> None: ...

    async def click_at(self, x: float, y: float) -> None: ...

    async def fill(self, selector: str, text: str, iframe_selector: str | None = None) -> None: ...

    async def type_text(self, text: str) -> None: ...

    async def press_key(self, key: str) -> None: ...

    async def scroll(self, direction: str, amount: int) -> None: ...

    async def screenshot(self) -> bytes: ...

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    async def current_url(self) -> str: ...

    async def wait_for_selector(
        self,
        selector: str,
        state: str = "visible",
        timeout_ms: int = 5000,
        iframe_selector: str | None = None,
    ) -> None: ...

    async def wait_for_url_contains(self, value: str, timeout_ms: int = 5000) -> None: ...

    async def wait_for_load(self, timeout_ms: int = 5000) -> None: ...

    async def wait_for_timeout(self, ms: int) -> None: ...


class PlaywrightBrowser:
    """Chromium session with a single page at a fixed viewport."""

    def __init__(self, headless: bool = True, viewport_width: int = 1024, viewport_height: int = 768):
        self.headless = headless
        self.viewport = {"width": viewport_width, "height": viewport_height}
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._page: Page | None = None

    async def __aenter__(self) -> "PlaywrightBrowser":
        await self.launch()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser not launched")
        return self._page

    async def launch(self) -> None:
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.headless)
        self._page = await self._browser.new_page(viewport=self.viewport)
        logger.info("Browser launched (headless=%s)", self.headless)

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        self._page = None

    def _locator(self, selector: str, iframe_selector: str | None) -> Locator:
        if iframe_selector:
            return self.page.frame_locator(iframe_selector).locator(selector).first
        return self.page.locator(selector).first

    async def goto(self, url: str, timeout_ms: int = 30000) -> None:
        await self.page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)

    async def click(self, selector: str, iframe_selector: str | None = None) -> None:
        await self._locator(selector, iframe_selector).click()

    async def click_at(self, x: float, y: float) -> None:
        await self.page.mouse.click(x, y)

    async def fill(self, selector: str, text: str, iframe_selector: str | None = None) -> None:
        await self._locator(selector, iframe_selector).fill(text)

    async def type_text(self, text: str) -> None:
        await self.page.keyboard.type(text)

    async def press_key(self, key: str) -> None:
        await self.page.keyboard.press(key)

    async def scroll(self, direction: str, amount: int) -> None:
        delta = -amount if direction == "up" else amount
        await self.page.mouse.wheel(0, delta)

    async def screenshot(self) -> bytes:
        return await self.page.screenshot(type="jpeg", quality=60)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self.page.evaluate(script, arg)

    async def current_url(self) -> str:
        return self.page.url

    async def wait_for_selector(
        self,
        selector: str,
        state: str = "visible",
        timeout_ms: int = 5000,
        iframe_selector: str | None = None,
    ) -> None:
        await self._locator(selector, iframe_selector).wait_for(state=state, timeout=timeout_ms)

    async def wait_for_url_contains(self, value: str, timeout_ms: int = 5000) -> None:
        await self.page.wait_for_url(lambda url: value in url, timeout=timeout_ms)

    async def wait_for_load(self, timeout_ms: int = 5000) -> None:
        try:
            await self.page.wait_for_load_state("networkidle", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            logger.debug("Page did not reach network idle within %sms", timeout_ms)

    async def wait_for_timeout(self, ms: int) -> None:
        await self.page.wait_for_timeout(ms)
