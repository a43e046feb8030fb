"""
Page-control capability consumed by the automation step runner.

`PageControl` is the narrow surface the runner drives; the Playwright
implementation below is the production binding.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager, contextmanager
from typing import Any, Iterator, Protocol

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from app.migration.logging_utils import log_event

logger = logging.getLogger(__name__)

URL_CONDITION_PREFIX = "url:"


class PageControlError(Exception):
    """Raised when a page action fails."""


class PageTimeoutError(PageControlError):
    """Raised when a page action does not complete within its timeout."""


class PageControl(Protocol):
    async def navigate(self, url: str, *, timeout: float) -> None:
        ...

    async def fill(self, selector: str, value: str, *, timeout: float) -> None:
        ...

    async def click(self, selector: str, *, timeout: float) -> None:
        ...

    async def wait_for_any(self, conditions: Sequence[str], *, timeout: float) -> str | None:
        """
        Wait until one condition holds and return it, or None on timeout.

        A condition is a CSS selector (visible element) or `url:<regex>`.
        """
        ...

    async def is_present(self, selector: str) -> bool:
        ...

    async def current_url(self) -> str:
        ...

    async def get_cookies(self) -> list[dict[str, Any]]:
        ...

    async def set_cookies(self, cookies: list[dict[str, Any]]) -> None:
        ...

    async def set_input_file(self, selector: str, path: str, *, timeout: float) -> None:
        ...


@contextmanager
def _playwright_errors(action: str) -> Iterator[None]:
    try:
        yield
    except PlaywrightTimeoutError as exc:
        raise PageTimeoutError(f"{action} timed out") from exc
    except PlaywrightError as exc:
        raise PageControlError(f"{action} failed: {exc.message}") from exc


class PlaywrightPageControl:
    """
    `PageControl` over one Playwright page and its browser context.
    """

    def __init__(self, *, page: Page, context: BrowserContext) -> None:
        self._page = page
        self._context = context

    async def navigate(self, url: str, *, timeout: float) -> None:
        with _playwright_errors("navigate"):
            await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout * 1000)

    async def fill(self, selector: str, value: str, *, timeout: float) -> None:
        with _playwright_errors("fill"):
            await self._page.locator(selector).first.fill(value, timeout=timeout * 1000)

    async def click(self, selector: str, *, timeout: float) -> None:
        with _playwright_errors("click"):
            await self._page.locator(selector).first.click(timeout=timeout * 1000)

    async def wait_for_any(self, conditions: Sequence[str], *, timeout: float) -> str | None:
        if not conditions:
            return None

        waiters = {
            asyncio.ensure_future(self._wait_condition(condition, timeout * 1000)): condition
            for condition in conditions
        }
        pending = set(waiters)
        failure: BaseException | None = None
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for waiter in done:
                    exc = waiter.exception()
                    if exc is None:
                        return waiters[waiter]
                    if not isinstance(exc, PlaywrightTimeoutError) and failure is None:
                        failure = exc
        finally:
            for waiter in pending:
                waiter.cancel()

        if isinstance(failure, PlaywrightError):
            raise PageControlError(f"wait failed: {failure.message}") from failure
        if failure is not None:
            raise failure
        return None

    async def _wait_condition(self, condition: str, timeout_ms: float) -> None:
        if condition.startswith(URL_CONDITION_PREFIX):
            pattern = re.compile(condition[len(URL_CONDITION_PREFIX) :])
            if pattern.search(self._page.url):
                return
            await self._page.wait_for_url(pattern, timeout=timeout_ms)
            return
        await self._page.wait_for_selector(condition, state="visible", timeout=timeout_ms)

    async def is_present(self, selector: str) -> bool:
        if selector.startswith(URL_CONDITION_PREFIX):
            return re.search(selector[len(URL_CONDITION_PREFIX) :], self._page.url) is not None
        with _playwright_errors("probe"):
            return await self._page.locator(selector).count() > 0

    async def current_url(self) -> str:
        return self._page.url

    async def get_cookies(self) -> list[dict[str, Any]]:
        with _playwright_errors("read cookies"):
            return [dict(cookie) for cookie in await self._context.cookies()]

    async def set_cookies(self, cookies: list[dict[str, Any]]) -> None:
        with _playwright_errors("restore cookies"):
            await self._context.add_cookies(cookies)

    async def set_input_file(self, selector: str, path: str, *, timeout: float) -> None:
        with _playwright_errors("attach file"):
            await self._page.locator(selector).first.set_input_files(path, timeout=timeout * 1000)


class PlaywrightPageFactory:
    """
    Owns one Chromium browser; hands out isolated pages per attempt.
    """

    def __init__(
        self,
        *,
        headless: bool = True,
        viewport_width: int = 1280,
        viewport_height: int = 720,
        user_agent: str | None = None,
    ) -> None:
        self._headless = headless
        self._viewport = {"width": viewport_width, "height": viewport_height}
        self._user_agent = user_agent
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._start_lock = asyncio.Lock()

    async def start(self) -> None:
        async with self._start_lock:
            if self._browser is not None:
                return
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self._headless,
                args=["--no-sandbox"],
            )
            log_event(logger, logging.INFO, "browser_started", headless=self._headless)

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            log_event(logger, logging.INFO, "browser_stopped")

    @asynccontextmanager
    async def open_page(self) -> AsyncIterator[PageControl]:
        context_options: dict[str, Any] = {"viewport": self._viewport}
        if self._user_agent:
            context_options["user_agent"] = self._user_agent
        with _playwright_errors("open browser"):
            await self.start()
            assert self._browser is not None
            context = await self._browser.new_context(**context_options)
        try:
            with _playwright_errors("open page"):
                page = await context.new_page()
            yield PlaywrightPageControl(page=page, context=context)
        finally:
            await context.close()
