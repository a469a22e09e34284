# tests/conftest.py
import os
import re
from pathlib import Path
from types import SimpleNamespace

# Ensure Qt can run headless (CI runners have no display server)
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest
from PyQt6.QtWidgets import QApplication
from pytestqt.qtbot import QtBot

from steam_achievements.core.browser import BrowserCookie, BrowserView, CookieBrowser

FIXTURES_DIR = Path(__file__).parent / "fixtures"

STEAM_ID = "76561198000000001"


@pytest.fixture(scope="session")
def qapp():
    """QApplication instance for all Qt tests."""
    app = QApplication.instance()
    if app is None:
        app = QApplication([])
    yield app


@pytest.fixture
def qtbot(qapp, request):
    """Provide qtbot fixture with automatic cleanup."""
    bot = QtBot(request)
    yield bot
    if hasattr(bot, "cleanup"):
        bot.cleanup()


# ---------------------------------------------------------------------------
# Browser fakes
# ---------------------------------------------------------------------------


class FakeView(BrowserView):
    """Off-screen view that resolves URLs through the browser's redirect map."""

    def __init__(self, browser: "FakeBrowser") -> None:
        self.browser = browser
        self.url = ""
        self.closed = False

    def navigate(self, url: str, timeout: float) -> bool:
        self.browser.navigations.append(url)
        self.url = self.browser.redirects.get(url, url)
        return True

    def current_url(self) -> str:
        return self.url

    def cookies(self) -> list[BrowserCookie]:
        return list(self.browser.store)

    def close(self) -> None:
        self.closed = True


class FakeBrowser(CookieBrowser):
    """In-memory cookie store with scripted navigation and login."""

    def __init__(self) -> None:
        self.store: list[BrowserCookie] = []
        self.navigations: list[str] = []
        self.redirects: dict[str, str] = {}
        self.deleted_patterns: list[str] = []
        self.login_url: str | None = None
        self.login_final_url = ""
        self.login_cookies: list[BrowserCookie] = []

    def create_offscreen_view(self) -> BrowserView:
        return FakeView(self)

    def get_cookies(self) -> list[BrowserCookie]:
        return list(self.store)

    def delete_cookies(self, domain_pattern: str) -> None:
        self.deleted_patterns.append(domain_pattern)
        pattern = re.compile(domain_pattern, re.IGNORECASE)
        self.store = [c for c in self.store if not pattern.search(c.domain.lstrip("."))]

    def run_login_dialog(self, url, is_complete) -> bool:
        self.login_url = url
        self.store.extend(self.login_cookies)
        return is_complete(self.login_final_url, list(self.store))


@pytest.fixture
def fake_browser() -> FakeBrowser:
    """Empty fake browser."""
    return FakeBrowser()


@pytest.fixture
def login_cookie() -> BrowserCookie:
    """A steamLoginSecure cookie carrying the test SteamID64."""
    return BrowserCookie(
        name="steamLoginSecure",
        value=f"{STEAM_ID}%7C%7CeyJhbGciOiJFZERTQSJ9",
        domain=".steamcommunity.com",
        secure=True,
        http_only=True,
    )


@pytest.fixture
def logged_in_browser(fake_browser: FakeBrowser, login_cookie: BrowserCookie) -> FakeBrowser:
    """Fake browser holding a Steam login and session id."""
    fake_browser.store = [
        login_cookie,
        BrowserCookie(name="sessionid", value="abc123", domain="steamcommunity.com"),
        BrowserCookie(name="tracker", value="1", domain=".example.com"),
    ]
    return fake_browser


# ---------------------------------------------------------------------------
# Settings and fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> SimpleNamespace:
    """Settings object with credentials and no request delay."""
    return SimpleNamespace(
        STEAM_USER_ID=STEAM_ID,
        STEAM_API_KEY="TESTKEY",
        STEAM_LANGUAGE="english",
        SCAN_DELAY_MS=0,
        MAX_RETRY_ATTEMPTS=2,
        INCLUDE_LOCKED=True,
    )


@pytest.fixture
def load_fixture():
    """Returns a loader for HTML files under tests/fixtures."""

    def _load(name: str) -> str:
        return (FIXTURES_DIR / name).read_text(encoding="utf-8")

    return _load
