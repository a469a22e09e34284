"""Tests for the unparsed-datetime CSV audit log."""

from __future__ import annotations

import csv
from pathlib import Path
from unittest.mock import patch

from steam_achievements.integrations.datetime_audit_log import AUDIT_FILE_NAME, DatetimeAuditLog


def _read_rows(path: Path) -> list[list[str]]:
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.reader(f))


class TestRecording:
    """Tests for counting and queueing failures."""

    def test_counts_every_failure_but_queues_once(self) -> None:
        """Repeats increase the count without duplicating the entry."""
        audit = DatetimeAuditLog(None)
        audit.record("german", "irgendwann", "Game", "Ach")
        audit.record("german", "irgendwann", "Game", "Ach")
        audit.record("french", "un jour", "Game", "Ach")

        assert audit.pending_count == 2
        assert audit.consume_scan_count() == 3
        assert audit.consume_scan_count() == 0

    def test_reset_scan_drops_pending(self) -> None:
        """reset_scan clears both counter and queue."""
        audit = DatetimeAuditLog(None)
        audit.record("german", "x")
        audit.reset_scan()

        assert audit.pending_count == 0
        assert audit.consume_scan_count() == 0

    def test_blank_language_defaults_to_english(self, tmp_path: Path) -> None:
        """Entries without a language are written as english."""
        audit = DatetimeAuditLog(tmp_path / AUDIT_FILE_NAME)
        audit.record("  ", "sometime")
        audit.flush()

        rows = _read_rows(tmp_path / AUDIT_FILE_NAME)
        assert rows[1][1] == "english"


class TestFlush:
    """Tests for writing the CSV file."""

    def test_writes_header_once(self, tmp_path: Path) -> None:
        """The header is written for a new file only."""
        path = tmp_path / AUDIT_FILE_NAME
        audit = DatetimeAuditLog(path)

        audit.record("german", "a", "Game A", "Ach A")
        assert audit.flush() == 1
        audit.record("german", "b", "Game B", "Ach B")
        assert audit.flush() == 1

        rows = _read_rows(path)
        assert rows[0] == [
            "error_time_utc",
            "steam_language",
            "game_name",
            "achievement_name",
            "raw_scraped_time",
        ]
        assert [r[4] for r in rows[1:]] == ["a", "b"]
        assert rows[1][2:4] == ["Game A", "Ach A"]

    def test_nothing_pending_writes_nothing(self, tmp_path: Path) -> None:
        """An empty queue does not create the file."""
        path = tmp_path / AUDIT_FILE_NAME
        assert DatetimeAuditLog(path).flush() == 0
        assert not path.exists()

    def test_disabled_persistence(self) -> None:
        """Without a path, flush drains and reports nothing written."""
        audit = DatetimeAuditLog(None)
        audit.record("german", "a")
        assert audit.flush() == 0
        assert audit.pending_count == 0

    def test_failed_write_requeues(self, tmp_path: Path) -> None:
        """An OSError keeps the entries for the next flush."""
        audit = DatetimeAuditLog(tmp_path / AUDIT_FILE_NAME)
        audit.record("german", "a")

        with patch("builtins.open", side_effect=OSError("disk full")):
            assert audit.flush() == 0
        assert audit.pending_count == 1

        assert audit.flush() == 1

    def test_legacy_file_is_rotated(self, tmp_path: Path) -> None:
        """A three-column file is moved aside before appending."""
        path = tmp_path / AUDIT_FILE_NAME
        path.write_text("error_time_utc,steam_language,raw_scraped_time\n2020,english,x\n", encoding="utf-8")
        audit = DatetimeAuditLog(path)
        audit.record("german", "a")

        assert audit.flush() == 1

        legacy = list(tmp_path.glob("failed_steam_datetimes_legacy_*.csv"))
        assert len(legacy) == 1
        assert _read_rows(path)[0][2] == "game_name"
