"""HTTP transport for Steam Community stats pages.

Holds two transports: a cookie-bearing session for community pages,
mirrored from the embedded browser's cookie store, and a cookie-free
session for the key-authenticated Web API. Page fetches refresh the
Steam session once when the first response looks logged out.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from urllib.parse import urlsplit

import requests

from steam_achievements.core.cancellation import CancellationToken
from steam_achievements.core.single_flight import SingleFlightCache
from steam_achievements.core.steam_session_manager import (
    STEAM_LOGIN_COOKIE,
    SteamSessionManager,
    is_login_page_url,
    is_steam_domain,
)
from steam_achievements.integrations.achievement_page_parser import AchievementPageParser
from steam_achievements.integrations.datetime_audit_log import DatetimeAuditLog
from steam_achievements.integrations.stats_page_classifier import looks_unauthenticated
from steam_achievements.integrations.steam_web_api import SteamWebAPI
from steam_achievements.models.achievements import PlayerSummary, ScrapedAchievementRow
from steam_achievements.models.scrape import SteamPageResult
from steam_achievements.utils.steam_time_parser import timezone_offset_cookie_value

logger = logging.getLogger("steamach.http")

__all__ = ["SteamHttpClient", "build_achievements_url"]

_COMMUNITY_HOST = "steamcommunity.com"
_COMMUNITY_BASE = "https://steamcommunity.com/"
_STORE_BASE = "https://store.steampowered.com/"
_ACHIEVEMENTS_URL = "https://steamcommunity.com/profiles/{steam_id}/stats/{key}/?tab=achievements&l={language}"
_MAX_ATTEMPTS = 3
# (connect, read); a cancel waits for the blocking call to return
_REQUEST_TIMEOUT = (5, 15)
_COOKIE_SYNC_INTERVAL = 30.0
_AUTH_FAILURE_STATUSES = frozenset({401, 403})

_HEADERS: dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8"
    ),
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
}


def build_achievements_url(steam_id: str, stats_key: int | str, language: str | None) -> str:
    """Stats page URL for an app ID or a canonical stats key."""
    return _ACHIEVEMENTS_URL.format(
        steam_id=steam_id,
        key=str(stats_key).strip(),
        language=language or "english",
    )


def _sanitize_cookie_value(value: str | None) -> str:
    return (value or "").replace(",", "%2C")


class SteamHttpClient:
    """Fetches stats pages with the browser's Steam session.

    Args:
        session_manager: Source of browser cookies and session refreshes.
        api_key: Steam Web API key for the cookie-free API client.
        audit_log: Receives timestamps the page parser could not read.
        session: Cookie-bearing session to reuse, mainly for tests.
        api_session: Cookie-free session for the Web API.
        clock: Monotonic seconds, used to cap cookie re-syncs.
    """

    def __init__(
        self,
        session_manager: SteamSessionManager,
        api_key: str | None = None,
        audit_log: DatetimeAuditLog | None = None,
        session: requests.Session | None = None,
        api_session: requests.Session | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_manager = session_manager
        self._session = session or requests.Session()
        self._session.headers.update(_HEADERS)
        self._clock = clock

        self._cookie_lock = threading.Lock()
        self._sync_state_lock = threading.Lock()
        self._last_cookie_sync: float | None = None

        self.api = SteamWebAPI(api_key, session=api_session)
        self.audit_log = audit_log
        self.parser = AchievementPageParser(audit_log)
        self._has_achievements_cache: SingleFlightCache[int, bool | None] = SingleFlightCache(
            evict_if=lambda has: has is None
        )

        self._sync_cookies_if_due(force=True)

    def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    def get_required_steam_id(self, token: CancellationToken | None = None) -> str:
        return self._session_manager.get_user_steam_id(token)

    def ensure_session(self, force: bool = False, token: CancellationToken | None = None) -> bool:
        """Makes sure the cookie jar carries a Steam login.

        Without ``force`` and within the refresh interval, only the periodic
        cookie re-sync runs. Otherwise the browser session is refreshed and
        the jar rebuilt from it.

        Returns:
            True if the jar holds a login cookie or the refresh succeeded.
        """
        if token is not None:
            token.raise_if_cancelled()

        if not force and not self._session_manager.needs_refresh():
            # Browser cookies can change behind our back; keep the jar in step.
            self._sync_cookies_if_due(force=False)
            if self.has_login_cookie():
                return True

        logger.debug("Refreshing Steam session (force=%s)", force)
        refreshed = self._session_manager.refresh_cookies_headless(token, force)
        self._sync_cookies_if_due(force=True)
        if self.has_login_cookie():
            return True
        return refreshed

    def has_login_cookie(self) -> bool:
        with self._cookie_lock:
            return any(cookie.name.lower() == STEAM_LOGIN_COOKIE.lower() for cookie in self._session.cookies)

    def _sync_cookies_if_due(self, force: bool) -> None:
        now = self._clock()
        with self._sync_state_lock:
            if (
                not force
                and self._last_cookie_sync is not None
                and now - self._last_cookie_sync < _COOKIE_SYNC_INTERVAL
            ):
                return
            self._last_cookie_sync = now
        self._load_cookies_from_browser()

    def _load_cookies_from_browser(self) -> None:
        """Copies the browser's Steam cookies into the transport's jar."""
        cookies = self._session_manager.get_steam_cookies()
        with self._cookie_lock:
            jar = self._session.cookies
            for cookie in cookies:
                domain = cookie.domain.strip().lstrip(".")
                if not domain:
                    continue
                jar.set(
                    cookie.name,
                    _sanitize_cookie_value(cookie.value),
                    domain=domain,
                    path=cookie.path or "/",
                    secure=cookie.secure,
                    expires=int(cookie.expires) if cookie.expires else None,
                    rest={"HttpOnly": None} if cookie.http_only else {},
                )
            # Ask Steam to render unlock times in its own base time zone.
            jar.set(
                "timezoneOffset",
                _sanitize_cookie_value(timezone_offset_cookie_value()),
                domain=_COMMUNITY_HOST,
                path="/",
            )
        logger.debug("Loaded %d Steam cookies from the browser", len(cookies))

    # ------------------------------------------------------------------
    # Web API passthrough
    # ------------------------------------------------------------------

    def get_playtimes(self, steam_id: str, include_played_free_games: bool = True) -> dict[int, int]:
        return self.api.get_owned_games(steam_id, include_played_free_games)

    def get_player_summaries(
        self,
        steam_ids: Iterable[int | str],
        token: CancellationToken | None = None,
    ) -> list[PlayerSummary]:
        if not self.api.has_key:
            logger.warning("An API key is required to fetch Steam player summaries")
            return []
        return self.api.get_player_summaries(steam_ids, token)

    def get_app_has_achievements(self, app_id: int, language: str = "english") -> bool | None:
        """Cached schema probe, fetched at most once per app. None if unknown."""
        if app_id <= 0 or not self.api.has_key:
            return False
        return self._has_achievements_cache.get_or_load(app_id, lambda: self.api.has_achievements(app_id, language))

    # ------------------------------------------------------------------
    # Stats pages
    # ------------------------------------------------------------------

    def get_achievements_page(
        self,
        steam_id: str,
        app_id: int,
        language: str | None,
        token: CancellationToken | None = None,
    ) -> SteamPageResult:
        return self.get_steam_page(build_achievements_url(steam_id, app_id, language), True, token)

    def get_achievements_page_by_key(
        self,
        steam_id: str,
        stats_key: str | None,
        language: str | None,
        token: CancellationToken | None = None,
    ) -> SteamPageResult:
        if not stats_key or not stats_key.strip():
            return SteamPageResult(requested_url="")
        return self.get_steam_page(build_achievements_url(steam_id, stats_key, language), True, token)

    def parse_achievements(
        self,
        html: str | None,
        include_locked: bool,
        language: str = "english",
        game_name: str | None = None,
    ) -> list[ScrapedAchievementRow]:
        return self.parser.parse(html, include_locked, language, game_name)

    def get_steam_page(
        self,
        url: str,
        requires_cookies: bool = True,
        token: CancellationToken | None = None,
    ) -> SteamPageResult:
        """GETs a page with browser-like headers.

        On the first attempt only, a 401/403, a redirect to a login page or
        a logged-out stats body forces a session refresh and one more try.
        Network errors are retried up to three attempts in total.

        Args:
            url: Absolute URL to fetch.
            requires_cookies: Whether the request needs the Steam login.
            token: Cancellation token, checked before every attempt.

        Returns:
            The final page. ``status_code`` is 0 when no response arrived.

        Raises:
            OperationCancelledError: If cancelled.
        """
        result = SteamPageResult(requested_url=url, final_url=url)
        if not url or not url.strip():
            return result

        parts = urlsplit(url)
        if not parts.scheme or not parts.netloc:
            return result

        is_steam_auth = is_steam_domain(parts.hostname)
        needs_auth = requires_cookies and is_steam_auth
        if needs_auth:
            self.ensure_session(token=token)

        headers: dict[str, str] = {}
        if is_steam_auth:
            headers["Referer"] = _STORE_BASE if "store" in (parts.hostname or "") else _COMMUNITY_BASE

        for attempt in range(1, _MAX_ATTEMPTS + 1):
            if token is not None:
                token.raise_if_cancelled()

            try:
                with self._cookie_lock:
                    logger.debug("Request to %s will send %d cookies", url, len(self._session.cookies))
                response = self._session.get(url, headers=headers, timeout=_REQUEST_TIMEOUT, allow_redirects=True)
            except requests.RequestException as exc:
                logger.error("Request for %s failed on attempt %d: %s", url, attempt, exc)
                continue

            if token is not None:
                token.raise_if_cancelled()

            final_url = response.url or url
            was_redirected = final_url.lower() != url.lower()

            if needs_auth and attempt == 1:
                if response.status_code in _AUTH_FAILURE_STATUSES or is_login_page_url(final_url):
                    logger.warning(
                        "Steam rejected the session for %s (status=%d, final_url=%s); refreshing",
                        url,
                        response.status_code,
                        final_url,
                    )
                    self.ensure_session(force=True, token=token)
                    continue

            html = response.text
            if needs_auth and attempt == 1 and looks_unauthenticated(html, final_url):
                logger.warning(
                    "Logged-out stats payload for %s (status=%d, url=%s); refreshing session and retrying once",
                    url,
                    response.status_code,
                    final_url,
                )
                self.ensure_session(force=True, token=token)
                continue

            return SteamPageResult(
                requested_url=url,
                final_url=final_url,
                status_code=response.status_code,
                html=html,
                was_redirected=was_redirected,
            )

        return result
