"""
tests/conftest.py

Shared fixtures: a scripted in-memory destination page and the matching
destination-site adapter.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any

import pytest

from app.domain.migration import DestinationCredentials, Product
from app.migration.config.models import DestinationSiteConfig
from app.migration.page_control import PageTimeoutError
from app.migration.session.file_store import FileSessionStore

BASE_URL = "https://dest.test"
LOGIN_URL = f"{BASE_URL}/login"
CREATE_URL = f"{BASE_URL}/products/new"
LIST_URL = f"{BASE_URL}/products"


class FakePage:
    """
    Simulated destination UI driven through the page-control surface.

    `login_outcome` / `submit_outcome` pick what a click on the login or
    save button reveals: "success", "error", "challenge" or "silent".
    """

    def __init__(self) -> None:
        self.url = "about:blank"
        self.visible: set[str] = set()
        self.authenticated = False
        self.accept_cookies = True
        self.login_outcome = "success"
        self.submit_outcome = "success"
        self.challenge_urls: set[str] = set()
        self.listed_titles: set[str] = set()
        self.fail_fill: set[str] = set()
        self.submit_delay = 0.0
        self.login_delay = 0.0
        self.server_sessions: set[str] | None = None
        self.issued_cookies: list[dict[str, Any]] = [{"name": "sid", "value": "fresh"}]
        self.restored_cookies: list[dict[str, Any]] | None = None
        self.fills: dict[str, str] = {}
        self.files: dict[str, str] = {}
        self.navigations: list[str] = []
        self.clicks: list[str] = []
        self.submit_clicks = 0
        self.submits_completed = 0
        self.opened = 0

    async def navigate(self, url: str, *, timeout: float) -> None:
        self.navigations.append(url)
        self.url = url
        if url in self.challenge_urls:
            self.visible = {"#captcha"}
        elif url == LOGIN_URL:
            self.visible = set() if self.authenticated else {"#login-form", "#email", "#password", "#login-btn"}
        elif url == CREATE_URL:
            self.visible = {"#product-form", "#title", "#description", "#price", "#file", "#image", "#save"}
        elif url == LIST_URL:
            self.visible = {f'text="{title}"' for title in self.listed_titles}
        else:
            self.visible = set()

    async def fill(self, selector: str, value: str, *, timeout: float) -> None:
        if selector in self.fail_fill:
            raise PageTimeoutError("fill timed out")
        self.fills[selector] = value

    async def click(self, selector: str, *, timeout: float) -> None:
        self.clicks.append(selector)
        if selector == "#login-btn":
            if self.login_delay:
                await asyncio.sleep(self.login_delay)
            self._reveal(self.login_outcome, success_url=f"{BASE_URL}/dashboard", success_marker=None)
            if self.login_outcome == "success":
                self.authenticated = True
                if self.server_sessions is not None:
                    self.server_sessions.update(cookie["value"] for cookie in self.issued_cookies)
        elif selector == "#save":
            self.submit_clicks += 1
            if self.submit_delay:
                await asyncio.sleep(self.submit_delay)
            if self.submit_outcome in {"success", "silent"}:
                self.listed_titles.add(self.fills.get("#title", ""))
            self._reveal(self.submit_outcome, success_url=f"{BASE_URL}/products/p-1", success_marker=".alert-success")
            self.submits_completed += 1

    def _reveal(self, outcome: str, *, success_url: str, success_marker: str | None) -> None:
        if outcome == "success":
            self.url = success_url
            self.visible = {success_marker} if success_marker else set()
        elif outcome == "error":
            self.visible = {".login-error", ".alert-danger"}
        elif outcome == "challenge":
            self.visible = {"#captcha"}
        else:
            self.visible = set()

    async def wait_for_any(self, conditions: Sequence[str], *, timeout: float) -> str | None:
        for condition in conditions:
            if self._holds(condition):
                return condition
        return None

    async def is_present(self, selector: str) -> bool:
        return self._holds(selector)

    def _holds(self, condition: str) -> bool:
        if condition.startswith("url:"):
            return re.search(condition[4:], self.url) is not None
        return condition in self.visible

    async def current_url(self) -> str:
        return self.url

    async def get_cookies(self) -> list[dict[str, Any]]:
        return [dict(cookie) for cookie in self.issued_cookies]

    async def set_cookies(self, cookies: list[dict[str, Any]]) -> None:
        self.restored_cookies = cookies
        if self.server_sessions is not None:
            self.authenticated = any(cookie.get("value") in self.server_sessions for cookie in cookies)
        elif self.accept_cookies:
            self.authenticated = True

    async def set_input_file(self, selector: str, path: str, *, timeout: float) -> None:
        self.files[selector] = path


def build_site(*, with_product_list: bool = False) -> DestinationSiteConfig:
    pages = {"login": LOGIN_URL, "create_product": CREATE_URL}
    if with_product_list:
        pages["product_list"] = LIST_URL
    return DestinationSiteConfig(
        name="testshop",
        base_url=BASE_URL,
        pages=pages,
        selectors={
            "login_form": ["#login-form"],
            "login_email": ["#email"],
            "login_password": ["#password"],
            "login_submit": ["#login-btn"],
            "login_success_indicator": ["url:/dashboard"],
            "login_error_indicator": [".login-error"],
            "bot_challenge_indicator": ["#captcha"],
            "product_form": ["#product-form"],
            "product_title": ["#title"],
            "product_description": ["#description"],
            "product_price": ["#price"],
            "product_file": ["#file"],
            "product_image": ["#image"],
            "product_submit": ["#save"],
            "submit_success_indicator": [".alert-success"],
            "submit_error_indicator": [".alert-danger"],
        },
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_page() -> FakePage:
    return FakePage()


@pytest.fixture()
def page_factory(fake_page: FakePage):
    @asynccontextmanager
    async def open_page() -> AsyncIterator[FakePage]:
        fake_page.opened += 1
        yield fake_page

    return open_page


@pytest.fixture()
def site() -> DestinationSiteConfig:
    return build_site()


@pytest.fixture()
def file_store(tmp_path) -> FileSessionStore:
    return FileSessionStore(directory=tmp_path / "sessions")


@pytest.fixture()
def credentials() -> DestinationCredentials:
    return DestinationCredentials(account_key="seller@example.com", email="seller@example.com", password="s3cret")


@pytest.fixture()
def product() -> Product:
    return Product(
        source_id="p-1",
        title="Lightroom Presets",
        description="<p><b>Bold</b> text</p>",
        price=Decimal("19"),
    )


@pytest.fixture()
def site_with_product_list() -> DestinationSiteConfig:
    return build_site(with_product_list=True)


class PagePool:
    """
    Opens a fresh FakePage per attempt. All pages share one set of
    server-side sessions, so cookies issued by one login authenticate the others.
    """

    def __init__(self, *, login_delay: float = 0.0) -> None:
        self.login_delay = login_delay
        self.server_sessions: set[str] = set()
        self.pages: list[FakePage] = []

    @asynccontextmanager
    async def open_page(self) -> AsyncIterator[FakePage]:
        page = FakePage()
        page.login_delay = self.login_delay
        page.server_sessions = self.server_sessions
        page.opened += 1
        self.pages.append(page)
        yield page

    def login_clicks(self) -> int:
        return sum(page.clicks.count("#login-btn") for page in self.pages)


@pytest.fixture()
def page_pool() -> PagePool:
    return PagePool(login_delay=0.05)


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture()
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()
