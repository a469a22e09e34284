"""Durable CSV log of unlock timestamps the parser could not read.

Entries are queued during a scan and written in one batch at the end, so
unparsed formats can be collected from users and added to the parser.
"""

from __future__ import annotations

import csv
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger("steamach.datetime_audit")

__all__ = ["AUDIT_FILE_NAME", "DatetimeAuditLog", "DatetimeParseFailure"]

AUDIT_FILE_NAME = "failed_steam_datetimes.csv"

_HEADER: tuple[str, ...] = (
    "error_time_utc",
    "steam_language",
    "game_name",
    "achievement_name",
    "raw_scraped_time",
)
_LEGACY_HEADER = "error_time_utc,steam_language,raw_scraped_time"


@dataclass(frozen=True)
class DatetimeParseFailure:
    """One unparseable unlock timestamp.

    Attributes:
        error_time_utc: ISO 8601 time the failure was recorded.
        steam_language: Steam language the page was rendered in.
        game_name: Game the row belongs to.
        achievement_name: Title of the achievement row.
        raw_scraped_time: The text that failed to parse.
    """

    error_time_utc: str
    steam_language: str
    game_name: str
    achievement_name: str
    raw_scraped_time: str

    def as_row(self) -> tuple[str, ...]:
        return (
            self.error_time_utc,
            self.steam_language,
            self.game_name,
            self.achievement_name,
            self.raw_scraped_time,
        )

    @property
    def dedupe_key(self) -> tuple[str, ...]:
        return self.as_row()[1:]


class DatetimeAuditLog:
    """Thread-safe queue of parse failures with a per-scan counter.

    Args:
        path: CSV file to append to. None disables persistence.
    """

    def __init__(self, path: Path | None) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._file_lock = threading.Lock()
        self._pending: list[DatetimeParseFailure] = []
        self._pending_keys: set[tuple[str, ...]] = set()
        self._scan_count = 0

    def record(
        self,
        language: str | None,
        raw_text: str | None,
        game_name: str | None = None,
        achievement_name: str | None = None,
    ) -> None:
        """Counts a failure and queues it for the next flush.

        Repeats of an entry already waiting to be written are counted but
        not queued twice.
        """
        entry = DatetimeParseFailure(
            error_time_utc=datetime.now(timezone.utc).isoformat(),
            steam_language=(language or "").strip() or "english",
            game_name=(game_name or "").strip(),
            achievement_name=(achievement_name or "").strip(),
            raw_scraped_time=raw_text or "",
        )
        with self._lock:
            self._scan_count += 1
            if entry.dedupe_key not in self._pending_keys:
                self._pending_keys.add(entry.dedupe_key)
                self._pending.append(entry)

    def reset_scan(self) -> None:
        """Clears the counter and drops anything not yet written."""
        with self._lock:
            self._scan_count = 0
            self._pending.clear()
            self._pending_keys.clear()

    def consume_scan_count(self) -> int:
        """Returns the failures counted since the last call and resets it."""
        with self._lock:
            count, self._scan_count = self._scan_count, 0
        return count

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def _drain(self) -> list[DatetimeParseFailure]:
        with self._lock:
            drained = self._pending
            self._pending = []
            self._pending_keys = set()
        return drained

    def _requeue(self, entries: list[DatetimeParseFailure]) -> None:
        with self._lock:
            for entry in entries:
                if entry.dedupe_key not in self._pending_keys:
                    self._pending_keys.add(entry.dedupe_key)
                    self._pending.append(entry)

    def flush(self) -> int:
        """Appends all pending entries to the CSV file.

        Returns:
            Number of entries written. 0 when nothing was pending, when
            persistence is disabled, or when the write failed. A failed
            write puts the entries back in the queue.
        """
        drained = self._drain()
        if self.path is None or not drained:
            return 0

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._file_lock:
                self._rotate_legacy_file()
                write_header = not self.path.exists()
                with open(self.path, "a", newline="", encoding="utf-8") as f:
                    writer = csv.writer(f)
                    if write_header:
                        writer.writerow(_HEADER)
                    for entry in drained:
                        writer.writerow(entry.as_row())
        except OSError as exc:
            self._requeue(drained)
            logger.warning("Failed to write datetime parse failures to %s: %s", self.path, exc)
            return 0

        return len(drained)

    def _rotate_legacy_file(self) -> None:
        """Moves a file in the old 3-column layout aside before appending."""
        if not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8-sig") as f:
                first_line = f.readline().strip()
            if first_line.lower() != _LEGACY_HEADER:
                return
            stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
            self.path.rename(self.path.with_name(f"failed_steam_datetimes_legacy_{stamp}.csv"))
        except OSError as exc:
            logger.debug("Could not rotate legacy datetime CSV %s: %s", self.path, exc)
