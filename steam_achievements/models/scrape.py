"""Result types for a single stats page fetch, classify and parse cycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from steam_achievements.models.achievements import ScrapedAchievementRow

__all__ = ["ScrapeDetail", "ScrapeOutcome", "SteamPageResult"]


class ScrapeDetail(str, Enum):
    """Why a scrape produced the rows it did.

    Values keep the short codes written to logs and persisted diagnostics.
    """

    NONE = "none"
    NO_STEAM_SESSION = "no_steam_session"
    TOO_MANY_REQUESTS = "429"
    COOKIES_BAD_AFTER_REFRESH = "cookies_bad_after_refresh"
    REDIRECT_OFF_STATS = "redirect_off_stats"
    PROFILE_PRIVATE = "profile_private"
    REQUIRES_LOGIN_FOR_STATS = "requires_login_for_stats"
    PROFILE_NOT_FOUND = "profile_not_found"
    NO_ACHIEVEMENTS = "no_achievements"
    NO_ROWS_UNKNOWN = "no_rows_unknown"
    SCRAPED = "scraped"
    UNAVAILABLE = "unavailable"
    ALL_HIDDEN = "all_hidden"
    UNLOCKED_MARKER_BUT_PARSE_FAILED = "unlocked_marker_but_parse_failed"
    ROWS_MARKER_BUT_PARSE_FAILED = "rows_marker_but_parse_failed"


@dataclass(frozen=True)
class SteamPageResult:
    """Raw outcome of one HTTP page fetch.

    Attributes:
        requested_url: URL that was requested.
        final_url: URL after redirects, empty if the request never completed.
        status_code: HTTP status, 0 if no response was received.
        html: Response body.
        was_redirected: Whether the final URL differs from the requested one.
    """

    requested_url: str
    final_url: str = ""
    status_code: int = 0
    html: str = ""
    was_redirected: bool = False


@dataclass
class ScrapeOutcome:
    """Tagged result of a stats page scrape.

    ``transient_failure`` and ``stats_unavailable`` are mutually exclusive.
    Callers never retry an outcome with ``stats_unavailable`` set.
    """

    rows: list[ScrapedAchievementRow] = field(default_factory=list)
    transient_failure: bool = False
    stats_unavailable: bool = False
    detail: ScrapeDetail = ScrapeDetail.NONE
    status_code: int = 0
    requested_url: str = ""
    final_url: str = ""

    @property
    def has_rows(self) -> bool:
        return bool(self.rows)

    @property
    def success_with_rows(self) -> bool:
        return self.has_rows and not self.transient_failure and not self.stats_unavailable

    def set_detail(
        self,
        detail: ScrapeDetail,
        *,
        transient: bool = False,
        unavailable: bool = False,
    ) -> ScrapeOutcome:
        """Sets the classification, keeping the two terminal flags exclusive."""
        self.detail = detail
        self.transient_failure = transient and not unavailable
        self.stats_unavailable = unavailable
        return self

    def apply_page(self, page: SteamPageResult) -> ScrapeOutcome:
        """Copies the transport facts of ``page`` onto this outcome."""
        self.status_code = page.status_code
        self.requested_url = page.requested_url
        self.final_url = page.final_url
        return self
