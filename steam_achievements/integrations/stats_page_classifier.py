"""Classification of Steam achievement stats pages.

Decides whether a fetched page is a real stats page and, if it carries no
rows, why: logged out, private profile, unknown profile or a generic
Steam error. Checks run from most to least specific, and the presence of
achievement rows overrides every negative verdict.
"""

from __future__ import annotations

import re
from urllib.parse import urlsplit

from steam_achievements.models.scrape import ScrapeDetail
from steam_achievements.utils.html_query import HtmlNode, parse_html

__all__ = [
    "StatsPage",
    "classify_stats_page",
    "has_any_achievement_rows",
    "has_only_hidden_achievement_rows",
    "is_hidden_row",
    "looks_logged_out_header",
    "looks_private_or_restricted",
    "looks_profile_not_found",
    "looks_structurally_unavailable",
    "looks_unauthenticated",
    "select_achievement_rows",
]

_UNAUTH_STEAM_ID_RE = re.compile(r"g_steamID\s*=\s*(?:false|\"0\"|0)\s*;", re.IGNORECASE)
_LOGGED_OUT_FLAGS = ('"logged_in":false', "&quot;logged_in&quot;:false")
_HEADER_LOGIN_LINK_RE = re.compile(
    r"<a[^>]+class\s*=\s*[\"'][^\"']*\bglobal_action_link\b[^\"']*[\"'][^>]+href\s*=\s*[\"'][^\"']*/login[^\"']*[\"']",
    re.IGNORECASE | re.DOTALL,
)
_STATS_LAYOUT_IDS = ("mainContents", "topSummaryBoxContent", "personalAchieve", "tabs")
_ROW_MARKERS = ("achievements_list", "achieverow", "achieveimgholder")


def _has_row_content(node: HtmlNode) -> bool:
    return node.exists("h3") or node.exists("div", class_contains="achieveUnlockTime")


def select_achievement_rows(doc: HtmlNode) -> tuple[list[HtmlNode], bool]:
    """Finds achievement rows using the modern, legacy, then generic layout.

    Returns:
        (rows, is_legacy_layout). The first selector with matches wins.
    """
    rows = doc.find_all("div", class_contains="achieveRow")
    if rows:
        return rows, False

    # Older titles keep the text in achieveTxtHolder and the icon in a preceding sibling.
    rows = doc.find_all("div", class_contains="achieveTxtHolder")
    if rows:
        return rows, True

    return doc.find_all(class_contains="achievement", predicate=_has_row_content), False


def is_hidden_row(row: HtmlNode) -> bool:
    return row.exists("div", class_contains="achieveHiddenBox")


class StatsPage:
    """A fetched page, parsed once, with every classification predicate.

    Args:
        html: Raw response body.
        final_url: URL after redirects, used to recognise the stats route.
    """

    def __init__(self, html: str | None, final_url: str | None = None) -> None:
        self.html = html or ""
        self.final_url = final_url or ""
        self.is_blank = not self.html.strip()
        self.doc = parse_html(self.html)

    # ------------------------------------------------------------------
    # Structural markers
    # ------------------------------------------------------------------

    def has_stats_route_in_url(self) -> bool:
        if not self.final_url:
            return False
        parts = urlsplit(self.final_url)
        if not parts.scheme or not parts.netloc:
            return False
        return "/stats/" in parts.path.lower()

    def has_stats_layout_markers(self) -> bool:
        if any(self.doc.exists("div", id_equals=marker) for marker in _STATS_LAYOUT_IDS):
            return True
        return self.doc.exists("link", attr_contains=("href", "playerstats_generic.css"))

    def looks_like_stats_page(self) -> bool:
        return self.has_stats_route_in_url() or self.has_stats_layout_markers()

    def has_achievement_rows(self) -> bool:
        return self.doc.exists("div", class_contains="achieveRow")

    def has_fatal_error_block(self) -> bool:
        return self.doc.exists(class_contains="profile_fatalerror")

    def has_error_container(self) -> bool:
        return self.doc.exists(class_contains="error_ctn")

    def has_profile_header(self) -> bool:
        return self.doc.exists(class_contains="profile_small_header_bg") or self.doc.exists(
            class_contains="profile_header_bg"
        )

    def has_private_markers(self) -> bool:
        return self.doc.exists("body", class_contains="private_profile") or self.doc.exists(
            class_contains="profile_private_info"
        )

    def has_header_login_link(self) -> bool:
        for link in self.doc.find_all("a", attr_contains=("href", "/login")):
            classes = link.class_attr.lower()
            if "global_action_link" in classes or "menuitem" in classes:
                return True
        return False

    def has_logged_out_identity(self) -> bool:
        """Inline script state says the viewer is anonymous."""
        if _UNAUTH_STEAM_ID_RE.search(self.html):
            return True
        compact = re.sub(r"[ \r\n\t]", "", self.html).lower()
        return any(flag in compact for flag in _LOGGED_OUT_FLAGS)

    def _is_candidate_error_page(self) -> bool:
        return not self.is_blank and self.looks_like_stats_page() and not self.has_achievement_rows()

    # ------------------------------------------------------------------
    # Verdicts
    # ------------------------------------------------------------------

    def looks_unauthenticated(self) -> bool:
        if not self._is_candidate_error_page():
            return False
        return self.has_logged_out_identity() and (self.has_header_login_link() or self.has_fatal_error_block())

    def looks_private_or_restricted(self) -> bool:
        if not self._is_candidate_error_page() or self.looks_unauthenticated():
            return False
        return self.has_private_markers() or self.has_fatal_error_block()

    def looks_profile_not_found(self) -> bool:
        if not self._is_candidate_error_page() or self.has_fatal_error_block():
            return False
        return self.has_error_container() and not self.has_profile_header()

    def looks_structurally_unavailable(self) -> bool:
        if not self._is_candidate_error_page():
            return False
        if self.looks_unauthenticated() or self.looks_private_or_restricted() or self.looks_profile_not_found():
            return False
        return self.has_fatal_error_block() or self.has_error_container()

    def looks_logged_out_header(self) -> bool:
        if self.is_blank:
            return False
        return self.has_header_login_link() or bool(_HEADER_LOGIN_LINK_RE.search(self.html))

    def has_only_hidden_rows(self) -> bool:
        if self.is_blank:
            return False
        rows, _ = select_achievement_rows(self.doc)
        return bool(rows) and all(is_hidden_row(row) for row in rows)

    def unavailable_detail(self) -> ScrapeDetail | None:
        """The specific reason an error page has no rows, if any."""
        if self.looks_unauthenticated():
            return ScrapeDetail.REQUIRES_LOGIN_FOR_STATS
        if self.looks_private_or_restricted():
            return ScrapeDetail.PROFILE_PRIVATE
        if self.looks_profile_not_found():
            return ScrapeDetail.PROFILE_NOT_FOUND
        if self.looks_structurally_unavailable():
            return ScrapeDetail.UNAVAILABLE
        return None

    def classify(self) -> ScrapeDetail:
        """Reduces the page to exactly one verdict.

        Returns:
            SCRAPED when visible rows exist, ALL_HIDDEN when every row is a
            hidden placeholder, one of the unavailable details, or
            NO_ROWS_UNKNOWN when nothing conclusive was found.
        """
        if not self.is_blank:
            rows, _ = select_achievement_rows(self.doc)
            if rows:
                if all(is_hidden_row(row) for row in rows):
                    return ScrapeDetail.ALL_HIDDEN
                return ScrapeDetail.SCRAPED
        return self.unavailable_detail() or ScrapeDetail.NO_ROWS_UNKNOWN


def classify_stats_page(html: str | None, final_url: str | None = None) -> ScrapeDetail:
    return StatsPage(html, final_url).classify()


def looks_unauthenticated(html: str | None, final_url: str | None = None) -> bool:
    return StatsPage(html, final_url).looks_unauthenticated()


def looks_private_or_restricted(html: str | None, final_url: str | None = None) -> bool:
    return StatsPage(html, final_url).looks_private_or_restricted()


def looks_profile_not_found(html: str | None, final_url: str | None = None) -> bool:
    return StatsPage(html, final_url).looks_profile_not_found()


def looks_structurally_unavailable(html: str | None, final_url: str | None = None) -> bool:
    return StatsPage(html, final_url).looks_structurally_unavailable()


def looks_logged_out_header(html: str | None) -> bool:
    return StatsPage(html).looks_logged_out_header()


def has_only_hidden_achievement_rows(html: str | None) -> bool:
    return StatsPage(html).has_only_hidden_rows()


def has_any_achievement_rows(html: str | None) -> bool:
    """Cheap text check for any achievement list markup."""
    if not html or not html.strip():
        return False
    lowered = html.lower()
    return any(marker in lowered for marker in _ROW_MARKERS)
