"""Steam achievement scan orchestration.

For every game: fetch the official schema, scrape the user's stats page,
and reconcile the two by icon filename. Games are processed strictly in
order under the rate limiter; a failing game is skipped, never fatal.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlsplit

from steam_achievements.core.cancellation import CancellationToken
from steam_achievements.core.errors import (
    OperationCancelledError,
    SteamAuthError,
    SteamTransientError,
    is_transient_error,
)
from steam_achievements.core.single_flight import SingleFlightCache
from steam_achievements.core.steam_session_manager import SteamSessionManager, is_login_page_url
from steam_achievements.integrations.achievement_page_parser import extract_icon_filename
from steam_achievements.integrations.datetime_audit_log import AUDIT_FILE_NAME
from steam_achievements.integrations.stats_page_classifier import StatsPage, has_any_achievement_rows
from steam_achievements.integrations.steam_http_client import SteamHttpClient, build_achievements_url
from steam_achievements.integrations.steam_web_api import GameSchema
from steam_achievements.models.achievements import (
    AchievementDetail,
    GameAchievementData,
    GameRef,
    ScanSummary,
    SchemaAchievement,
    ScrapedAchievementRow,
)
from steam_achievements.models.scrape import ScrapeDetail, ScrapeOutcome, SteamPageResult
from steam_achievements.services.rate_limiter import RateLimiter
from steam_achievements.utils.i18n import t

logger = logging.getLogger("steamach.scanner")

__all__ = [
    "AchievementScanner",
    "extract_stats_key",
    "index_schema_icons",
    "is_stats_for_app",
    "looks_logged_out",
    "match_scraped_row",
    "should_retry_for_language_loss",
]

_CONSECUTIVE_ERROR_THRESHOLD = 3
_UNLOCK_TIME_MARKER = "achieveunlocktime"

ProgressCallback = Callable[[str, int, int], None]
GameScannedCallback = Callable[[GameRef, GameAchievementData | None], None]


# ------------------------------------------------------------------
# URL helpers
# ------------------------------------------------------------------


def extract_stats_key(url: str | None) -> str | None:
    """Path segment following ``/stats/``, e.g. an app ID or a named key."""
    if not url:
        return None
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return None
    segments = [s for s in parts.path.split("/") if s]
    for index, segment in enumerate(segments[:-1]):
        if segment.lower() == "stats":
            return segments[index + 1]
    return None


def is_stats_for_app(url: str | None) -> bool:
    """Whether a URL is a profile stats route."""
    if not url:
        return False
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return False
    path = parts.path.rstrip("/").lower()
    return "/stats/" in path and ("/profiles/" in path or "/id/" in path)


def should_retry_for_language_loss(final_url: str | None, requested_language: str | None) -> bool:
    """Whether a redirect dropped or changed the ``l=`` language parameter.

    English pages are exempt since Steam falls back to English anyway.
    """
    if not final_url or not requested_language or not requested_language.strip():
        return False
    expected = requested_language.strip().lower()
    if expected == "english":
        return False

    parts = urlsplit(final_url)
    if not parts.scheme or not parts.netloc:
        return False
    if "/stats/" not in parts.path.lower():
        return False

    query = {key.lower(): values for key, values in parse_qs(parts.query, keep_blank_values=True).items()}
    if "l" not in query:
        return True
    return query["l"][0].strip().lower() != expected


def looks_logged_out(html: str | None, final_url: str | None) -> bool:
    """Broad logged-out check run before row extraction."""
    if is_login_page_url(final_url):
        return True
    if not html:
        return False

    page = StatsPage(html, final_url)
    if page.looks_unauthenticated() or page.looks_logged_out_header():
        return True

    lowered = html.lower()
    has_anonymous_id = 'g_steamid = "0"' in lowered or "g_steamid = false" in lowered
    return has_anonymous_id and not has_any_achievement_rows(html)


# ------------------------------------------------------------------
# Reconciliation
# ------------------------------------------------------------------


def index_schema_icons(achievements: Iterable[SchemaAchievement]) -> dict[str, list[SchemaAchievement]]:
    """Maps lowercased icon filenames (colour and gray) to schema entries."""
    index: dict[str, list[SchemaAchievement]] = {}
    for achievement in achievements:
        if not achievement.name.strip():
            continue
        for url in (achievement.icon_url, achievement.icon_gray_url):
            filename = extract_icon_filename(url)
            if not filename:
                continue
            bucket = index.setdefault(filename.lower(), [])
            if achievement not in bucket:
                bucket.append(achievement)
    return index


def match_scraped_row(
    row: ScrapedAchievementRow,
    icon_index: dict[str, list[SchemaAchievement]],
) -> str | None:
    """Finds the schema name of a scraped row by its icon.

    When several achievements share the icon, an exact description match
    decides, then an exact display-name match. Rows that stay ambiguous
    are not matched.

    Returns:
        The schema API name, or None.
    """
    filename = extract_icon_filename(row.icon_url)
    if not filename:
        return None
    candidates = icon_index.get(filename.lower())
    if not candidates:
        return None
    if len(candidates) == 1:
        return candidates[0].name

    description = row.description.casefold()
    by_description = [a for a in candidates if a.description.casefold() == description]
    if len(by_description) == 1:
        return by_description[0].name

    display_name = row.display_name.casefold()
    pool = by_description or candidates
    by_name = [a for a in pool if a.display_name.casefold() == display_name]
    if len(by_name) == 1:
        return by_name[0].name
    return None


@dataclass
class _UnlockState:
    """Scraped unlock facts keyed by lowercased schema name."""

    playtime_seconds: int = 0
    unlocked: set[str] = field(default_factory=set)
    unlock_times: dict[str, datetime] = field(default_factory=dict)
    progress: dict[str, tuple[int | None, int | None]] = field(default_factory=dict)

    def apply(self, api_name: str, row: ScrapedAchievementRow) -> None:
        key = api_name.lower()
        self.progress[key] = (row.progress_num, row.progress_denom)
        if row.is_unlocked:
            self.unlocked.add(key)
            if row.unlock_time_utc is not None:
                self.unlock_times[key] = row.unlock_time_utc


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ------------------------------------------------------------------
# Scanner
# ------------------------------------------------------------------


class AchievementScanner:
    """Runs achievement scans for a list of Steam games.

    Args:
        settings: Read-only settings providing ``STEAM_USER_ID``,
            ``STEAM_API_KEY``, ``STEAM_LANGUAGE``, ``SCAN_DELAY_MS``,
            ``MAX_RETRY_ATTEMPTS`` and ``INCLUDE_LOCKED``.
        http_client: Stats page transport and Web API holder.
        session_manager: Login probe and SteamID64 source.
        rng: Jitter source for the rate limiter.
        clock: Returns the current UTC time for ``last_updated_utc``.
    """

    def __init__(
        self,
        settings: object,
        http_client: SteamHttpClient,
        session_manager: SteamSessionManager,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._settings = settings
        self._http = http_client
        self._session_manager = session_manager
        self._rng = rng
        self._clock = clock
        self._playtime_cache: SingleFlightCache[str, dict[int, int]] = SingleFlightCache(
            evict_if=lambda playtimes: not playtimes
        )

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    @property
    def language(self) -> str:
        return (getattr(self._settings, "STEAM_LANGUAGE", "") or "").strip() or "english"

    @property
    def _user_id(self) -> str:
        return str(getattr(self._settings, "STEAM_USER_ID", "") or "").strip()

    @property
    def _api_key(self) -> str:
        return str(getattr(self._settings, "STEAM_API_KEY", "") or "").strip()

    @property
    def _include_locked(self) -> bool:
        return bool(getattr(self._settings, "INCLUDE_LOCKED", True))

    def _make_rate_limiter(self) -> RateLimiter:
        return RateLimiter(
            getattr(self._settings, "SCAN_DELAY_MS", 200),
            getattr(self._settings, "MAX_RETRY_ATTEMPTS", 3),
            rng=self._rng,
        )

    # ------------------------------------------------------------------
    # Scan loop
    # ------------------------------------------------------------------

    def refresh(
        self,
        games: Sequence[GameRef],
        token: CancellationToken,
        on_progress: ProgressCallback | None = None,
        on_game_scanned: GameScannedCallback | None = None,
        on_auth_required: Callable[[], None] | None = None,
        on_notification: Callable[[str], None] | None = None,
    ) -> ScanSummary:
        """Scans ``games`` in order and reports each result.

        A failed login probe aborts the run before any game is touched.
        Per-game failures are retried under the rate limiter, then the
        game is skipped. Cancellation stops the run at the next blocking
        point and is reported through ``ScanSummary.cancelled``.

        Args:
            games: Games to scan, in the order results are reported.
            token: Cancellation for every network call and delay.
            on_progress: Called before each game with (name, current, total).
            on_game_scanned: Called once per attempted game with its result,
                or None if it was skipped after errors.
            on_auth_required: Called when the run aborts for missing login.
            on_notification: Receives end-of-run user notifications.

        Returns:
            Counts for the run.
        """
        summary = ScanSummary(games_total=len(games or ()))
        if self._http.audit_log is not None:
            self._http.audit_log.reset_scan()

        try:
            self._run(games or (), token, summary, on_progress, on_game_scanned, on_auth_required, on_notification)
        except OperationCancelledError:
            logger.info("Achievement scan cancelled after %d game(s)", summary.games_refreshed)
            summary.cancelled = True
        finally:
            self._report_parse_failures(summary, on_notification)

        logger.info(
            "Achievement scan finished: refreshed=%d with=%d without=%d skipped=%d",
            summary.games_refreshed,
            summary.games_with_achievements,
            summary.games_without_achievements,
            summary.games_skipped,
        )
        return summary

    def _run(
        self,
        games: Sequence[GameRef],
        token: CancellationToken,
        summary: ScanSummary,
        on_progress: ProgressCallback | None,
        on_game_scanned: GameScannedCallback | None,
        on_auth_required: Callable[[], None] | None,
        on_notification: Callable[[str], None] | None,
    ) -> None:
        if not self._user_id or not self._api_key:
            logger.warning("Missing Steam credentials, cannot scan achievements")
            if on_notification is not None:
                on_notification(t("scan.missing_credentials"))
            return

        logger.info("Probing Steam login status before scan")
        try:
            logged_in, final_url = self._session_manager.probe_logged_in(token)
        except SteamAuthError as exc:
            logged_in, final_url = False, str(exc)
        if not logged_in:
            logger.warning("Steam web auth check failed (final_url=%s), aborting scan", final_url)
            summary.auth_required = True
            if on_auth_required is not None:
                on_auth_required()
            if on_notification is not None:
                on_notification(t("scan.auth_required"))
            return
        logger.info("Steam web auth verified")

        if not games:
            logger.info("No games to scan")
            return

        playtimes = self.get_playtimes(self._user_id, token)
        limiter = self._make_rate_limiter()
        consecutive_errors = 0
        total = len(games)
        first = True

        for current, game in enumerate(games, start=1):
            token.raise_if_cancelled()

            app_id = game.app_id
            if app_id is None:
                logger.warning("Skipping game without valid app ID: %s", game.name)
                summary.games_skipped += 1
                continue

            if not first:
                limiter.delay_before_next(token)
            first = False

            name = game.name.strip() if game.name and game.name.strip() else t("scan.unnamed_game", app_id=app_id)
            if on_progress is not None:
                on_progress(name, current, total)

            try:
                data = limiter.execute_with_retry(
                    lambda: self.fetch_game_data(app_id, name, playtimes, token),
                    is_transient_error,
                    token,
                )
            except OperationCancelledError:
                raise
            except Exception as exc:
                consecutive_errors += 1
                summary.games_skipped += 1
                summary.failed_app_ids.append(app_id)
                logger.warning(
                    "Skipping game after retries: %s (appid=%d). Consecutive errors=%d. %s: %s",
                    name,
                    app_id,
                    consecutive_errors,
                    type(exc).__name__,
                    exc,
                )
                if on_game_scanned is not None:
                    on_game_scanned(game, None)
                if consecutive_errors >= _CONSECUTIVE_ERROR_THRESHOLD:
                    limiter.delay_after_error(consecutive_errors, token)
                continue

            consecutive_errors = 0
            if on_game_scanned is not None:
                on_game_scanned(game, data)
            summary.games_refreshed += 1
            if data.has_achievements:
                summary.games_with_achievements += 1
            else:
                summary.games_without_achievements += 1

    def _report_parse_failures(
        self,
        summary: ScanSummary,
        on_notification: Callable[[str], None] | None,
    ) -> None:
        audit_log = self._http.audit_log
        if audit_log is None:
            return
        count = audit_log.consume_scan_count()
        summary.parse_failures = count
        if count <= 0:
            return

        persisted = audit_log.flush()
        if persisted < count:
            logger.warning(
                "Datetime parse failures detected=%d, persisted_to_csv=%d (repeats are written once)",
                count,
                persisted,
            )

        message = t("scan.parse_failures", count=count, file=AUDIT_FILE_NAME)
        logger.warning(message)
        if on_notification is not None:
            on_notification(message)

    # ------------------------------------------------------------------
    # Playtime cache
    # ------------------------------------------------------------------

    def get_playtimes(self, steam_id: str, token: CancellationToken | None = None) -> dict[int, int]:
        """Owned-game playtimes in minutes, cached per resolved SteamID64.

        Empty results are not kept, so a later call fetches again.
        """
        resolved = self._resolve_steam_id(steam_id, token)
        if not resolved or not self._api_key:
            return {}
        return self._playtime_cache.get_or_load(resolved, lambda: self._http.get_playtimes(resolved, True)) or {}

    # ------------------------------------------------------------------
    # Game data
    # ------------------------------------------------------------------

    def fetch_game_data(
        self,
        app_id: int,
        game_name: str,
        playtimes: dict[int, int],
        token: CancellationToken,
    ) -> GameAchievementData:
        """Builds the reconciled result for one game.

        Raises:
            SteamTransientError: If the scrape should be retried.
            OperationCancelledError: If cancelled.
        """
        schema = self._http.api.get_schema(app_id, self.language, token)
        state = self.fetch_unlocked(app_id, game_name, playtimes, schema, token)
        has_achievements = schema is not None and bool(schema.achievements)

        achievements: list[AchievementDetail] = []
        if has_achievements:
            for schema_achievement in schema.achievements:
                name = schema_achievement.name
                if not name.strip():
                    continue
                key = name.lower()
                progress_num, progress_denom = state.progress.get(key, (None, None))
                achievements.append(
                    AchievementDetail(
                        api_name=name,
                        display_name=schema_achievement.display_name or name,
                        description=schema_achievement.description,
                        unlocked_icon_path=schema_achievement.icon_url,
                        locked_icon_path=schema_achievement.icon_gray_url,
                        hidden=schema_achievement.hidden,
                        global_percent_unlocked=schema.global_percent(name),
                        unlocked=key in state.unlocked,
                        unlock_time_utc=state.unlock_times.get(key),
                        progress_num=progress_num,
                        progress_denom=progress_denom,
                    )
                )

        return GameAchievementData(
            app_id=app_id,
            game_name=game_name,
            has_achievements=has_achievements,
            playtime_seconds=state.playtime_seconds,
            last_updated_utc=self._clock(),
            achievements=tuple(achievements),
        )

    def fetch_unlocked(
        self,
        app_id: int,
        game_name: str | None,
        playtimes: dict[int, int],
        schema: GameSchema | None,
        token: CancellationToken,
    ) -> _UnlockState:
        """Scrapes the stats page and maps rows onto schema names."""
        state = _UnlockState(playtime_seconds=max(0, (playtimes or {}).get(app_id, 0)) * 60)

        # Without achievements in the schema there is nothing to reconcile against.
        if schema is None or not schema.achievements:
            return state

        try:
            outcome = self.scrape_achievements(
                self._user_id,
                app_id,
                token,
                include_locked=self._include_locked,
                game_name=game_name,
            )
        except OperationCancelledError:
            raise
        except Exception as exc:
            if is_transient_error(exc):
                raise SteamTransientError(
                    ScrapeDetail.NONE, f"Transient scrape exception for appid={app_id}"
                ) from exc
            logger.debug("Achievement scrape failed (non-transient, appid=%d): %s", app_id, exc)
            return state

        if outcome.transient_failure:
            raise SteamTransientError(
                outcome.detail,
                f"Transient scrape result for appid={app_id}: detail={outcome.detail.value}, "
                f"status={outcome.status_code}",
            )

        icon_index = index_schema_icons(schema.achievements)
        matched = 0
        for row in outcome.rows:
            api_name = match_scraped_row(row, icon_index)
            if api_name is None:
                continue
            state.apply(api_name, row)
            matched += 1
        logger.debug("Reconciled %d of %d scraped rows for appid=%d", matched, len(outcome.rows), app_id)
        return state

    # ------------------------------------------------------------------
    # Scraping
    # ------------------------------------------------------------------

    def scrape_achievements(
        self,
        steam_id: str,
        app_id: int,
        token: CancellationToken,
        include_locked: bool = False,
        game_name: str | None = None,
    ) -> ScrapeOutcome:
        """Fetches, classifies and parses the stats page of one app.

        Follows up once when a redirect lost the page language and once
        with the canonical stats key when the first result is ambiguous.
        """
        outcome = ScrapeOutcome()
        resolved = self._resolve_steam_id(steam_id, token)
        if not resolved:
            return outcome.set_detail(ScrapeDetail.NO_STEAM_SESSION, transient=True)

        language = self.language
        page = self._http.get_achievements_page(resolved, app_id, language, token)
        outcome.apply_page(page)
        if page.status_code == 429:
            return outcome.set_detail(ScrapeDetail.TOO_MANY_REQUESTS, transient=True)

        # appid -> stats key redirects can drop l=, which changes the unlock-time locale.
        if should_retry_for_language_loss(outcome.final_url, language):
            stats_key = extract_stats_key(outcome.final_url) or str(app_id)
            logger.debug(
                "Redirect dropped the page language (requested=%s, final_url=%s); retrying with key '%s'",
                language,
                outcome.final_url,
                stats_key,
            )
            if stats_key.lower() == str(app_id):
                page = self._http.get_achievements_page(resolved, app_id, language, token)
            else:
                page = self._http.get_achievements_page_by_key(resolved, stats_key, language, token)
            outcome.apply_page(page)
            if page.status_code == 429:
                return outcome.set_detail(ScrapeDetail.TOO_MANY_REQUESTS, transient=True)

        html = page.html
        if looks_logged_out(html, outcome.final_url):
            detail = StatsPage(html, outcome.final_url).unavailable_detail()
            if detail is not None:
                return outcome.set_detail(detail, unavailable=True)
            return outcome.set_detail(ScrapeDetail.COOKIES_BAD_AFTER_REFRESH, transient=True)

        if page.was_redirected and not is_stats_for_app(outcome.final_url):
            outcome.set_detail(ScrapeDetail.REDIRECT_OFF_STATS, unavailable=True)
            self._classify_no_achievements_by_schema(outcome, app_id)
            return outcome

        result = self._classify_scrape_or_private(outcome, html, include_locked, language, game_name)

        if result.transient_failure and result.detail == ScrapeDetail.NO_ROWS_UNKNOWN:
            canonical_key = extract_stats_key(result.final_url)
            if canonical_key and canonical_key.lower() != str(app_id):
                logger.debug(
                    "No rows for appid=%d; retrying once with canonical stats key '%s'",
                    app_id,
                    canonical_key,
                )
                fallback = self._fetch_by_canonical_key(
                    resolved, canonical_key, include_locked, language, game_name, token
                )
                if fallback is not None:
                    return fallback

        self._classify_no_achievements_by_schema(result, app_id)
        return result

    def _fetch_by_canonical_key(
        self,
        steam_id: str,
        stats_key: str,
        include_locked: bool,
        language: str,
        game_name: str | None,
        token: CancellationToken,
    ) -> ScrapeOutcome | None:
        page: SteamPageResult = self._http.get_achievements_page_by_key(steam_id, stats_key, language, token)
        outcome = ScrapeOutcome().apply_page(page)
        if not outcome.requested_url:
            outcome.requested_url = build_achievements_url(steam_id, stats_key, language)
        if page.status_code == 429:
            return outcome.set_detail(ScrapeDetail.TOO_MANY_REQUESTS, transient=True)
        if looks_logged_out(page.html, outcome.final_url):
            return None

        classified = self._classify_scrape_or_private(outcome, page.html, include_locked, language, game_name)
        return classified if classified.success_with_rows else None

    def _classify_scrape_or_private(
        self,
        outcome: ScrapeOutcome,
        html: str,
        include_locked: bool,
        language: str = "english",
        game_name: str | None = None,
    ) -> ScrapeOutcome:
        outcome.rows = []
        outcome.set_detail(ScrapeDetail.NO_ROWS_UNKNOWN, transient=True)

        rows = self._http.parse_achievements(html, include_locked, language, game_name)
        if rows:
            outcome.rows = rows
            return outcome.set_detail(ScrapeDetail.SCRAPED)

        page = StatsPage(html, outcome.final_url)
        detail = page.unavailable_detail()
        if detail is not None:
            return outcome.set_detail(detail, unavailable=True)

        if has_any_achievement_rows(html):
            if page.has_only_hidden_rows():
                return outcome.set_detail(ScrapeDetail.ALL_HIDDEN)

            has_unlock_markers = _UNLOCK_TIME_MARKER in html.lower()
            if not has_unlock_markers and not include_locked:
                return outcome.set_detail(ScrapeDetail.ALL_HIDDEN)

            return outcome.set_detail(
                ScrapeDetail.UNLOCKED_MARKER_BUT_PARSE_FAILED
                if has_unlock_markers
                else ScrapeDetail.ROWS_MARKER_BUT_PARSE_FAILED,
                transient=True,
            )

        return outcome

    def _classify_no_achievements_by_schema(self, outcome: ScrapeOutcome, app_id: int) -> None:
        """Relabels an unavailable outcome when the schema has no achievements."""
        if app_id <= 0 or not outcome.stats_unavailable or not self._api_key:
            return
        if self._http.get_app_has_achievements(app_id, self.language) is False:
            outcome.set_detail(ScrapeDetail.NO_ACHIEVEMENTS, unavailable=True)

    def _resolve_steam_id(self, steam_id: str | None, token: CancellationToken | None) -> str | None:
        cached = (self._session_manager.cached_user_id or "").strip()
        if cached.isdigit():
            return cached
        candidate = (steam_id or "").strip()
        if candidate.isdigit():
            return candidate
        try:
            return self._http.get_required_steam_id(token).strip()
        except SteamAuthError as exc:
            logger.debug("Could not resolve SteamID64: %s", exc)
            return None
