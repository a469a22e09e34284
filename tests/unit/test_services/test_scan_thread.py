"""Tests for the background scan thread signals."""

from __future__ import annotations

from unittest.mock import MagicMock

from steam_achievements.models.achievements import GameRef, ScanSummary
from steam_achievements.services.scan_thread import AchievementScanThread
from steam_achievements.utils.i18n import t


def _thread(scanner: MagicMock) -> AchievementScanThread:
    thread = AchievementScanThread(scanner)
    thread.configure([GameRef("TF2", 440)])
    return thread


class TestAchievementScanThread:
    """Tests for AchievementScanThread.run, called synchronously."""

    def test_forwards_callbacks_and_summary(self, qapp) -> None:
        """Progress text, per-game results and the summary are emitted."""
        summary = ScanSummary(games_total=1, games_refreshed=1, games_with_achievements=1)
        scanner = MagicMock()

        def refresh(games, token, on_progress, on_game_scanned, on_auth_required, on_notification):
            on_progress("TF2", 1, 1)
            on_game_scanned(games[0], None)
            return summary

        scanner.refresh.side_effect = refresh
        thread = _thread(scanner)
        progress, scanned, notes, finished = [], [], [], []
        thread.progress.connect(lambda text, current, total: progress.append((text, current, total)))
        thread.game_scanned.connect(lambda game, data: scanned.append(game))
        thread.notification.connect(notes.append)
        thread.finished_scan.connect(finished.append)

        thread.run()

        assert progress == [(t("scan.progress_game", name="TF2", current=1, total=1), 1, 1)]
        assert scanned == [GameRef("TF2", 440)]
        assert notes == [
            t("scan.summary", refreshed=1, with_achievements=1, without_achievements=0, skipped=0)
        ]
        assert finished == [summary]

    def test_no_summary_notification_for_empty_run(self, qapp) -> None:
        """A run that touched no game emits no summary text."""
        scanner = MagicMock()
        scanner.refresh.return_value = ScanSummary(auth_required=True)
        thread = _thread(scanner)
        notes, finished = [], []
        thread.notification.connect(notes.append)
        thread.finished_scan.connect(finished.append)

        thread.run()

        assert notes == []
        assert finished[0].auth_required

    def test_unexpected_error_emits_error(self, qapp) -> None:
        """Fatal errors are reported and no summary is sent."""
        scanner = MagicMock()
        scanner.refresh.side_effect = RuntimeError("boom")
        thread = _thread(scanner)
        errors, finished = [], []
        thread.error.connect(errors.append)
        thread.finished_scan.connect(finished.append)

        thread.run()

        assert errors == ["boom"]
        assert finished == []

    def test_cancel_trips_token(self, qapp) -> None:
        """cancel() reaches the token passed to the scanner."""
        scanner = MagicMock()
        scanner.refresh.return_value = ScanSummary()
        thread = _thread(scanner)

        thread.cancel()
        thread.run()

        token = scanner.refresh.call_args.args[1]
        assert token.is_cancelled

    def test_configure_arms_new_token(self, qapp) -> None:
        """A new run starts with a fresh token."""
        scanner = MagicMock()
        scanner.refresh.return_value = ScanSummary()
        thread = _thread(scanner)
        thread.cancel()

        thread.configure([GameRef("Portal", 620)])
        thread.run()

        games, token = scanner.refresh.call_args.args
        assert games == [GameRef("Portal", 620)]
        assert not token.is_cancelled
