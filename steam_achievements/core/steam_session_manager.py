"""Steam session lifecycle backed by an embedded browser's cookie store.

Owns the authenticated SteamID64 and decides when browser cookies need a
refresh. The refresh policy itself is the pure ``needs_refresh`` function.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from urllib.parse import quote, unquote

from steam_achievements.core.browser import BrowserCookie, CookieBrowser
from steam_achievements.core.cancellation import CancellationToken
from steam_achievements.core.errors import SteamAuthError
from steam_achievements.utils.i18n import t

logger = logging.getLogger("steamach.session")

__all__ = [
    "COOKIE_REFRESH_INTERVAL",
    "SESSION_COOKIE_NAMES",
    "STEAM_LOGIN_COOKIE",
    "SessionState",
    "SessionStatus",
    "SteamSessionManager",
    "extract_steam_id",
    "find_login_cookie",
    "is_login_page_url",
    "is_steam_domain",
    "needs_refresh",
]

COOKIE_REFRESH_INTERVAL = timedelta(hours=6)
STEAM_LOGIN_COOKIE = "steamLoginSecure"
SESSION_COOKIE_NAMES = (STEAM_LOGIN_COOKIE, "sessionid")

_COMMUNITY_ROOT = "https://steamcommunity.com/"
_PROBE_URL = "https://steamcommunity.com/my/friends"
_LOGIN_URL = "https://steamcommunity.com/login/home/?goto=" + quote("https://steamcommunity.com/my/", safe="")
_NAVIGATION_TIMEOUT = 30.0
_SETTLE_DELAY = 1.0
_STEAM_ID_RE = re.compile(r"\d{17}")
_LOGGED_IN_URL_MARKERS = ("steamcommunity.com/id/", "steamcommunity.com/profiles/", "steamcommunity.com/my")
_LOGIN_DIALOG_DOMAINS = (".steamcommunity.com", "steamcommunity.com", ".steampowered.com", "steampowered.com")
_CLEAR_DOMAIN_PATTERNS = (
    r"(^|\.)steamcommunity\.com$",
    r"(^|\.)steampowered\.com$",
    r"^store\.steampowered\.com$",
    r"^login\.steampowered\.com$",
    r"^help\.steampowered\.com$",
)


class SessionStatus(Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


@dataclass
class SessionState:
    """Mutable session facts, owned by ``SteamSessionManager``.

    Attributes:
        cached_user_id: SteamID64 extracted from the login cookie.
        last_cookie_refresh_utc: Time of the last refresh attempt.
    """

    cached_user_id: str | None = None
    last_cookie_refresh_utc: datetime | None = None


def needs_refresh(
    now: datetime,
    last_refresh: datetime | None,
    force: bool = False,
) -> bool:
    """Decides whether browser cookies must be refreshed.

    Args:
        now: Current UTC time.
        last_refresh: Time of the last refresh attempt, None if never.
        force: Caller demands a refresh.

    Returns:
        True when forced, never attempted, or when the interval elapsed.
    """
    if force or last_refresh is None:
        return True
    return now - last_refresh >= COOKIE_REFRESH_INTERVAL


def extract_steam_id(cookie_value: str | None) -> str | None:
    """Pulls the SteamID64 out of a ``steamLoginSecure`` cookie value."""
    if not cookie_value or not cookie_value.strip():
        return None
    match = _STEAM_ID_RE.search(unquote(cookie_value))
    return match.group(0) if match else None


def is_steam_domain(domain: str | None) -> bool:
    if not domain or not domain.strip():
        return False
    host = domain.strip().lstrip(".").lower()
    return host.endswith("steamcommunity.com") or host.endswith("steampowered.com")


def is_login_page_url(url: str | None) -> bool:
    if not url:
        return False
    lowered = url.lower()
    return "/login" in lowered or "openid" in lowered or "login.steampowered.com" in lowered


def find_login_cookie(cookies: list[BrowserCookie] | None) -> BrowserCookie | None:
    for cookie in cookies or ():
        if cookie.name.lower() == STEAM_LOGIN_COOKIE.lower():
            return cookie
    return None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SteamSessionManager:
    """Tracks the Steam login held by the embedded browser.

    Args:
        browser: Cookie source and navigation surface.
        settings: Read-only settings; ``STEAM_USER_ID`` seeds the fallback ID.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        browser: CookieBrowser,
        settings: object | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._browser = browser
        self._settings = settings
        self._clock = clock
        self._lock = threading.RLock()
        self.state = SessionState()
        self._status = SessionStatus.UNAUTHENTICATED

    @property
    def browser(self) -> CookieBrowser:
        return self._browser

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def cached_user_id(self) -> str | None:
        return self.state.cached_user_id

    @property
    def configured_user_id(self) -> str | None:
        """SteamID64 from settings, if it is numeric."""
        value = str(getattr(self._settings, "STEAM_USER_ID", "") or "").strip()
        return value if value.isdigit() else None

    def needs_refresh(self, force: bool = False) -> bool:
        with self._lock:
            return needs_refresh(
                self._clock(),
                self.state.last_cookie_refresh_utc,
                force=force,
            )

    def _set_user_id(self, steam_id: str) -> None:
        with self._lock:
            self.state.cached_user_id = steam_id
            self._status = SessionStatus.AUTHENTICATED

    def refresh_cookies_headless(self, token: CancellationToken | None = None, force: bool = False) -> bool:
        """Re-derives the session by loading the community site off-screen.

        The refresh timestamp is updated before the attempt, so a failing
        refresh is not retried on every call.

        Args:
            token: Cancellation for the navigation and settle delay.
            force: Refresh even if the interval has not elapsed.

        Returns:
            True if a login cookie is present and an ID is known.
        """
        if not force and not self.needs_refresh():
            logger.debug("Cookie refresh skipped, not needed yet")
            return self.state.cached_user_id is not None

        with self._lock:
            self.state.last_cookie_refresh_utc = self._clock()
            self._status = SessionStatus.AUTHENTICATING

        if token is not None:
            token.raise_if_cancelled()

        extracted: str | None = None
        found_cookie = False
        with self._browser.create_offscreen_view() as view:
            logger.debug("Navigating to %s to refresh session", _COMMUNITY_ROOT)
            view.navigate(_COMMUNITY_ROOT, _NAVIGATION_TIMEOUT)
            # Let the browser commit cookies to its store.
            if token is not None:
                token.wait(_SETTLE_DELAY)
            else:
                time.sleep(_SETTLE_DELAY)
            auth_cookie = find_login_cookie(view.cookies())
            if auth_cookie is not None:
                found_cookie = True
                extracted = (
                    extract_steam_id(auth_cookie.value) or self.state.cached_user_id or self.configured_user_id
                )

        if found_cookie and extracted:
            self._set_user_id(extracted)
            logger.info("Session refreshed successfully")
            return True

        with self._lock:
            self._status = SessionStatus.UNAUTHENTICATED
        logger.warning("Session check failed (auth cookie not found); continuing with cached cookies if any")
        return False

    def get_user_steam_id(self, token: CancellationToken | None = None) -> str:
        """Returns the SteamID64, refreshing cookies first if due.

        Raises:
            SteamAuthError: If no ID could be determined.
        """
        if self.needs_refresh():
            self.refresh_cookies_headless(token)
        steam_id = self.state.cached_user_id
        if not steam_id:
            raise SteamAuthError("Could not determine SteamID64. Please ensure you are logged into Steam.")
        return steam_id

    def authenticate_interactive(self, token: CancellationToken | None = None) -> tuple[bool, str]:
        """Shows the Steam login page until the user has signed in.

        Existing Steam cookies are removed first so a stale login cannot
        complete the dialog on its own.

        Returns:
            (success, user-facing message).
        """
        if token is not None:
            token.raise_if_cancelled()

        with self._lock:
            self._status = SessionStatus.AUTHENTICATING

        for domain in _LOGIN_DIALOG_DOMAINS:
            self._browser.delete_cookies("^" + re.escape(domain) + "$")

        def is_complete(url: str, cookies: list[BrowserCookie]) -> bool:
            lowered = (url or "").lower()
            on_profile = any(marker in lowered for marker in _LOGGED_IN_URL_MARKERS)
            return on_profile and find_login_cookie(cookies) is not None

        self._browser.run_login_dialog(_LOGIN_URL, is_complete)

        auth_cookie = find_login_cookie(self._browser.get_cookies())
        steam_id = extract_steam_id(auth_cookie.value) if auth_cookie is not None else None
        if not steam_id:
            with self._lock:
                self._status = SessionStatus.UNAUTHENTICATED
            logger.warning("Interactive Steam login finished without a session cookie")
            return False, t("auth.cookies_not_found")

        self._set_user_id(steam_id)
        with self._lock:
            self.state.last_cookie_refresh_utc = self._clock()
        logger.info("Interactive Steam login completed for %s", steam_id)
        return True, t("auth.saved")

    def probe_logged_in(self, token: CancellationToken | None = None) -> tuple[bool, str]:
        """Checks the login by loading a page only members can see.

        Only the final URL is inspected. A redirect to a login page means
        the session is gone.

        Returns:
            (is_logged_in, final_url).
        """
        if token is not None:
            token.raise_if_cancelled()

        with self._browser.create_offscreen_view() as view:
            view.navigate(_PROBE_URL, _NAVIGATION_TIMEOUT)
            final_url = view.current_url() or ""

        if not final_url.strip():
            return False, final_url

        logged_in = not is_login_page_url(final_url)
        if logged_in:
            self.get_user_steam_id(token)
        else:
            with self._lock:
                self._status = SessionStatus.UNAUTHENTICATED
        return logged_in, final_url

    def get_steam_cookies(self) -> list[BrowserCookie]:
        """Returns the browser's Steam cookies, updating the ID on the way."""
        cookies = [c for c in self._browser.get_cookies() if is_steam_domain(c.domain)]
        auth_cookie = find_login_cookie(cookies)
        if auth_cookie is not None:
            steam_id = extract_steam_id(auth_cookie.value)
            if steam_id:
                self._set_user_id(steam_id)
        return cookies

    def has_session_cookies(self) -> bool:
        names = {n.lower() for n in SESSION_COOKIE_NAMES}
        return any(c.name.lower() in names for c in self.get_steam_cookies())

    def clear_session(self) -> None:
        """Signs out: deletes Steam cookies and forgets the cached ID."""
        for pattern in _CLEAR_DOMAIN_PATTERNS:
            self._browser.delete_cookies(pattern)
        with self._lock:
            self.state = SessionState()
            self._status = SessionStatus.UNAUTHENTICATED
        logger.info("Steam session cleared")
