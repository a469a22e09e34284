"""Tests for the browser-backed Steam session manager."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from steam_achievements.core.browser import BrowserCookie
from steam_achievements.core.errors import SteamAuthError
from steam_achievements.core.steam_session_manager import (
    COOKIE_REFRESH_INTERVAL,
    SessionStatus,
    SteamSessionManager,
    extract_steam_id,
    is_login_page_url,
    is_steam_domain,
    needs_refresh,
)
from steam_achievements.utils.i18n import t

STEAM_ID = "76561198000000001"
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def no_settle_delay():
    """Removes the post-navigation settle delay."""
    with patch("steam_achievements.core.steam_session_manager._SETTLE_DELAY", 0):
        yield


def _manager(browser, user_id: str | None = None) -> SteamSessionManager:
    return SteamSessionManager(browser, SimpleNamespace(STEAM_USER_ID=user_id), clock=lambda: NOW)


class TestNeedsRefresh:
    """Tests for the pure refresh policy."""

    def test_forced(self) -> None:
        """force always refreshes."""
        assert needs_refresh(NOW, NOW, force=True)

    def test_never_refreshed(self) -> None:
        """No previous refresh means refresh."""
        assert needs_refresh(NOW, None)

    def test_recent_attempt(self) -> None:
        """A recent attempt is kept, whatever it found."""
        assert not needs_refresh(NOW, NOW)

    def test_interval(self) -> None:
        """The interval boundary triggers a refresh."""
        assert not needs_refresh(NOW, NOW - COOKIE_REFRESH_INTERVAL + timedelta(seconds=1))
        assert needs_refresh(NOW, NOW - COOKIE_REFRESH_INTERVAL)


class TestHelpers:
    """Tests for the cookie and URL helpers."""

    def test_extract_steam_id(self) -> None:
        """The 17-digit id is pulled from an encoded cookie value."""
        assert extract_steam_id(f"{STEAM_ID}%7C%7CeyJhbGci") == STEAM_ID
        assert extract_steam_id("garbage") is None
        assert extract_steam_id(None) is None

    def test_is_steam_domain(self) -> None:
        """Community and store domains count, others do not."""
        assert is_steam_domain(".steamcommunity.com")
        assert is_steam_domain("store.steampowered.com")
        assert not is_steam_domain("example.com")
        assert not is_steam_domain("")

    def test_is_login_page_url(self) -> None:
        """Login and OpenID URLs are recognised."""
        assert is_login_page_url("https://steamcommunity.com/login/home/")
        assert is_login_page_url("https://steamcommunity.com/openid/login")
        assert not is_login_page_url("https://steamcommunity.com/my/friends")
        assert not is_login_page_url(None)


class TestHeadlessRefresh:
    """Tests for refresh_cookies_headless."""

    def test_success_sets_user_id(self, logged_in_browser) -> None:
        """A login cookie yields the id and the authenticated state."""
        manager = _manager(logged_in_browser)

        assert manager.refresh_cookies_headless(force=True)
        assert manager.cached_user_id == STEAM_ID
        assert manager.status is SessionStatus.AUTHENTICATED
        assert manager.state.last_cookie_refresh_utc == NOW
        assert logged_in_browser.navigations == ["https://steamcommunity.com/"]

    def test_failure_still_stamps_refresh_time(self, fake_browser) -> None:
        """A failed refresh is not retried on every call."""
        manager = _manager(fake_browser)

        assert not manager.refresh_cookies_headless(force=True)
        assert manager.status is SessionStatus.UNAUTHENTICATED
        assert manager.state.last_cookie_refresh_utc == NOW

    def test_skipped_when_fresh(self, logged_in_browser) -> None:
        """Without force a fresh session is not reloaded."""
        manager = _manager(logged_in_browser)
        manager.refresh_cookies_headless(force=True)
        logged_in_browser.navigations.clear()

        assert manager.refresh_cookies_headless()
        assert logged_in_browser.navigations == []


class TestUserSteamId:
    """Tests for get_user_steam_id."""

    def test_resolves_after_refresh(self, logged_in_browser) -> None:
        """The id is found through a refresh."""
        assert _manager(logged_in_browser).get_user_steam_id() == STEAM_ID

    def test_raises_without_login(self, fake_browser) -> None:
        """No cookie and no cached id raise SteamAuthError."""
        with pytest.raises(SteamAuthError):
            _manager(fake_browser).get_user_steam_id()

    def test_cookie_without_id_uses_configured_id(self, fake_browser) -> None:
        """A login cookie with no readable id falls back to the configured SteamID64."""
        fake_browser.store = [BrowserCookie(name="steamLoginSecure", value="opaque", domain="steamcommunity.com")]
        manager = _manager(fake_browser, STEAM_ID)

        assert manager.get_user_steam_id() == STEAM_ID
        assert manager.get_user_steam_id() == STEAM_ID
        assert fake_browser.navigations == ["https://steamcommunity.com/"]

    def test_failed_lookup_is_not_repeated(self, fake_browser) -> None:
        """Within the interval a failed refresh does not navigate again."""
        fake_browser.store = [BrowserCookie(name="steamLoginSecure", value="opaque", domain="steamcommunity.com")]
        manager = _manager(fake_browser)

        for _ in range(3):
            with pytest.raises(SteamAuthError):
                manager.get_user_steam_id()

        assert fake_browser.navigations == ["https://steamcommunity.com/"]
        assert not manager.refresh_cookies_headless()

    def test_configured_user_id(self, fake_browser) -> None:
        """Only numeric configured ids are exposed."""
        assert _manager(fake_browser, STEAM_ID).configured_user_id == STEAM_ID
        assert _manager(fake_browser, "vanity").configured_user_id is None


class TestInteractiveLogin:
    """Tests for authenticate_interactive."""

    def test_success(self, fake_browser, login_cookie: BrowserCookie) -> None:
        """Old cookies are cleared and the new login is adopted."""
        fake_browser.store = [BrowserCookie(name="steamLoginSecure", value="stale", domain="steamcommunity.com")]
        fake_browser.login_cookies = [login_cookie]
        fake_browser.login_final_url = f"https://steamcommunity.com/profiles/{STEAM_ID}/"
        manager = _manager(fake_browser)

        ok, message = manager.authenticate_interactive()

        assert ok
        assert message == t("auth.saved")
        assert manager.cached_user_id == STEAM_ID
        assert manager.status is SessionStatus.AUTHENTICATED
        assert fake_browser.login_url.startswith("https://steamcommunity.com/login/home/?goto=")
        assert all(c.value != "stale" for c in fake_browser.store)

    def test_cancelled_dialog(self, fake_browser) -> None:
        """Closing the dialog without logging in reports the missing cookie."""
        manager = _manager(fake_browser)

        ok, message = manager.authenticate_interactive()

        assert not ok
        assert message == t("auth.cookies_not_found")
        assert manager.status is SessionStatus.UNAUTHENTICATED


class TestProbe:
    """Tests for probe_logged_in."""

    def test_logged_in(self, logged_in_browser) -> None:
        """Staying on the friends page means logged in."""
        manager = _manager(logged_in_browser)

        logged_in, final_url = manager.probe_logged_in()

        assert logged_in
        assert final_url == "https://steamcommunity.com/my/friends"
        assert manager.cached_user_id == STEAM_ID

    def test_redirected_to_login(self, fake_browser) -> None:
        """A redirect to the login page means logged out."""
        fake_browser.redirects["https://steamcommunity.com/my/friends"] = "https://steamcommunity.com/login/home/"
        manager = _manager(fake_browser)

        assert manager.probe_logged_in() == (False, "https://steamcommunity.com/login/home/")

    def test_blank_final_url(self, fake_browser) -> None:
        """A navigation that produced no URL is not logged in."""
        fake_browser.redirects["https://steamcommunity.com/my/friends"] = ""
        assert _manager(fake_browser).probe_logged_in() == (False, "")


class TestCookies:
    """Tests for cookie access and clearing."""

    def test_steam_cookies_filtered(self, logged_in_browser) -> None:
        """Non-Steam cookies are dropped and the id picked up."""
        manager = _manager(logged_in_browser)

        names = {c.name for c in manager.get_steam_cookies()}

        assert names == {"steamLoginSecure", "sessionid"}
        assert manager.cached_user_id == STEAM_ID
        assert manager.has_session_cookies()

    def test_clear_session(self, logged_in_browser) -> None:
        """Signing out deletes Steam cookies and resets state."""
        manager = _manager(logged_in_browser)
        manager.get_steam_cookies()

        manager.clear_session()

        assert [c.name for c in logged_in_browser.store] == ["tracker"]
        assert manager.cached_user_id is None
        assert manager.status is SessionStatus.UNAUTHENTICATED
