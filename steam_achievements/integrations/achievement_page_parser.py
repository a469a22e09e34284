"""Extraction of achievement rows from a Steam stats page.

Unlock state comes primarily from the page's "X of Y" summary: Steam
lists unlocked achievements first, so the first X rows are unlocked
regardless of language. Without a summary, the per-row unlock-time
marker decides.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime

from steam_achievements.integrations.datetime_audit_log import DatetimeAuditLog
from steam_achievements.integrations.stats_page_classifier import is_hidden_row, select_achievement_rows
from steam_achievements.models.achievements import ScrapedAchievementRow
from steam_achievements.utils.html_query import HtmlNode, parse_html
from steam_achievements.utils.steam_time_parser import parse_steam_unlock_time

logger = logging.getLogger("steamach.page_parser")

__all__ = ["AchievementPageParser", "extract_icon_filename", "parse_progress_text", "parse_unlocked_and_total"]

_MIN_PAGE_LENGTH = 200
_NUMBER_RE = re.compile(r"\b(\d+)\b")
# "n / d" anywhere in the text; digits may carry grouping separators
_PROGRESS_RE = re.compile(r"(\d[\d.,'\u00a0\u202f]*)\s*/\s*(\d[\d.,'\u00a0\u202f]*)")
_NON_DIGIT_RE = re.compile(r"\D")
_DISPLAY_NONE_RE = re.compile(r"display\s*:\s*none", re.IGNORECASE)


def parse_progress_text(text: str | None) -> tuple[int | None, int | None]:
    """Reads a "1,234 / 5,000" progress fraction embedded in ``text``."""
    match = _PROGRESS_RE.search(text or "")
    if not match:
        return None, None
    num, denom = (_NON_DIGIT_RE.sub("", group) for group in match.groups())
    return int(num), int(denom)


def parse_unlocked_and_total(text: str | None) -> tuple[int, int] | None:
    """Reads "(unlocked, total)" from the first two numbers in a summary.

    Works for any language since only the number order matters, e.g.
    "12 of 15 (80%) achievements earned" or "12 von 15 (80%) ...".
    """
    if not text or not text.strip():
        return None
    numbers = _NUMBER_RE.findall(text)
    if len(numbers) < 2:
        return None
    unlocked, total = int(numbers[0]), int(numbers[1])
    if total <= 0:
        return None
    return max(0, min(unlocked, total)), total


def extract_icon_filename(url: str | None) -> str | None:
    """Last path segment of an icon URL without its query string."""
    if not url or not url.strip():
        return None
    path = url.strip().split("?", 1)[0].split("#", 1)[0].rstrip("/")
    name = path.rsplit("/", 1)[-1]
    return name or None


def _is_decorative_image(url: str) -> bool:
    if not url or not url.strip():
        return True
    lowered = url.lower()
    return "achievebg" in lowered or "/trans.gif" in lowered


def _image_src(node: HtmlNode | None) -> str:
    if node is None:
        return ""
    return node.attr("src").strip()


def _first_line(node: HtmlNode | None) -> str:
    if node is None:
        return ""
    raw = node.text
    if not raw.strip():
        return ""
    for line in raw.splitlines():
        if line.strip():
            return line.strip()
    return raw.strip()


class AchievementPageParser:
    """Turns stats page HTML into ``ScrapedAchievementRow`` objects.

    Args:
        audit_log: Receives timestamps that failed to parse. Optional.
        steam_now: Reference-time provider for the timestamp parser; tests
            pin it.
    """

    def __init__(
        self,
        audit_log: DatetimeAuditLog | None = None,
        steam_now: datetime | None = None,
    ) -> None:
        self.audit_log = audit_log
        self.steam_now = steam_now

    def parse(
        self,
        html: str | None,
        include_locked: bool = True,
        language: str = "english",
        game_name: str | None = None,
    ) -> list[ScrapedAchievementRow]:
        """Parses every visible achievement row on the page.

        Args:
            html: Page body.
            include_locked: Also return rows that are not unlocked.
            language: Steam language of the page, passed to the time parser.
            game_name: Used only for audit entries.

        Returns:
            Rows in document order. Empty for short or unrecognised pages.
        """
        if not html or len(html) < _MIN_PAGE_LENGTH:
            return []

        doc = parse_html(html)
        rows, legacy = select_achievement_rows(doc)
        if not rows:
            return []

        counts = self._parse_summary_counts(doc)
        unlocked_count = 0
        if counts is not None:
            unlocked_count = min(counts[0], len(rows))

        results: list[ScrapedAchievementRow] = []
        # Hidden placeholder rows still occupy a position in the unlock ordering.
        for index, row in enumerate(rows):
            if is_hidden_row(row):
                continue

            unlock_node = row.find("div", class_contains="achieveUnlockTime")
            has_marker = unlock_node is not None
            unlock_text = _first_line(unlock_node)
            unlock_utc = parse_steam_unlock_time(unlock_text, language, self.steam_now) if unlock_text else None
            title = (row.find("h3").text if row.exists("h3") else "").strip()
            description = (row.find("h5").text if row.exists("h5") else "").strip()

            is_unlocked = index < unlocked_count if counts is not None else has_marker

            if has_marker and unlock_utc is None and unlock_text:
                self._report_parse_failure(unlock_text, language, game_name, title, counts is not None)

            if not include_locked and not is_unlocked:
                continue

            progress_num, progress_denom = self._parse_progress(row)
            icon_url = self._resolve_icon_url(row, legacy)

            primary = title or icon_url
            secondary = description or (unlock_utc.isoformat() if unlock_utc else "")
            results.append(
                ScrapedAchievementRow(
                    key=f"{primary}|{secondary}".strip(),
                    display_name=title,
                    description=description,
                    icon_url=icon_url,
                    unlock_time_utc=unlock_utc,
                    is_unlocked=is_unlocked,
                    progress_num=progress_num,
                    progress_denom=progress_denom,
                )
            )

        return results

    def _report_parse_failure(
        self,
        unlock_text: str,
        language: str,
        game_name: str | None,
        title: str,
        has_summary: bool,
    ) -> None:
        if self.audit_log is not None:
            self.audit_log.record(language, unlock_text, game_name, title)

        snippet = unlock_text[:50].encode("utf-8").hex("-").upper()
        # The summary already decided unlock state; the time is only a nicety then.
        log = logger.debug if has_summary else logger.warning
        log("Failed to parse unlock time (lang=%s) from '%s' (hex: %s)", language, unlock_text, snippet)

    @staticmethod
    def _parse_summary_counts(doc: HtmlNode) -> tuple[int, int] | None:
        summary = doc.find("div", id_equals="topSummaryAchievements")
        if summary is not None:
            text_node = next(
                (child for child in summary.children() if child.name == "div" and "achieveBar" not in child.class_attr),
                None,
            )
            counts = parse_unlocked_and_total((text_node or summary).text)
            if counts is not None:
                return counts

        legacy = doc.find("div", id_equals="achievementStats_all")
        if legacy is None:
            legacy = doc.find(
                "div",
                id_startswith="achievementStats_",
                predicate=lambda node: not _DISPLAY_NONE_RE.search(node.attr("style")),
            )
        if legacy is None:
            return None
        status = legacy.find("div", class_contains="achievementStatusText") or legacy
        return parse_unlocked_and_total(status.text)

    @staticmethod
    def _parse_progress(row: HtmlNode) -> tuple[int | None, int | None]:
        bar = row.find("div", class_contains="achievementProgressBar")
        if bar is None:
            return None, None
        text_node = bar.find("div", class_contains="progressText")
        if text_node is None:
            return None, None
        return parse_progress_text(text_node.text)

    @staticmethod
    def _resolve_icon_url(row: HtmlNode, legacy: bool) -> str:
        if legacy:
            holder = row.previous_sibling("div", class_contains="achieveImgHolder")
            candidate = _image_src(holder.find("img") if holder else None)
            if not _is_decorative_image(candidate):
                return candidate

        holder = row.find("div", class_contains="achieveImgHolder")
        candidate = _image_src(holder.find("img") if holder else None)
        if not _is_decorative_image(candidate):
            return candidate

        for img in row.find_all("img"):
            candidate = _image_src(img)
            if not _is_decorative_image(candidate):
                return candidate
        return ""
