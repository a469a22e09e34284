"""Background thread for Steam achievement scans.

Runs ``AchievementScanner.refresh`` off the GUI thread and forwards its
callbacks as Qt signals, which arrive on the receiver's thread in the
order the games were scanned.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from PyQt6.QtCore import QThread, pyqtSignal

from steam_achievements.core.cancellation import CancellationToken
from steam_achievements.models.achievements import GameRef
from steam_achievements.services.achievement_scanner import AchievementScanner
from steam_achievements.utils.i18n import t

logger = logging.getLogger("steamach.scan_thread")

__all__ = ["AchievementScanThread"]


class AchievementScanThread(QThread):
    """Background thread for one achievement scan run.

    Signals:
        progress: Emitted before each game (status_text, current, total).
        game_scanned: Emitted per game (GameRef, GameAchievementData or None).
        auth_required: Emitted when the run aborts because Steam login is missing.
        notification: Emitted with user-facing end-of-run messages.
        finished_scan: Emitted on completion or cancellation (ScanSummary).
        error: Emitted on unexpected fatal errors (error_message).
    """

    progress = pyqtSignal(str, int, int)
    game_scanned = pyqtSignal(object, object)
    auth_required = pyqtSignal()
    notification = pyqtSignal(str)
    finished_scan = pyqtSignal(object)
    error = pyqtSignal(str)

    def __init__(self, scanner: AchievementScanner, parent: Any = None) -> None:
        """Initializes the scan thread.

        Args:
            scanner: Scanner that performs the run.
            parent: Parent QObject.
        """
        super().__init__(parent)
        self._scanner = scanner
        self._games: list[GameRef] = []
        self._token = CancellationToken()

    def configure(self, games: Iterable[GameRef]) -> None:
        """Sets the games for the next run and arms a fresh cancellation token."""
        self._games = list(games)
        self._token = CancellationToken()

    def cancel(self) -> None:
        """Requests cancellation; pending delays end immediately."""
        self._token.cancel()

    def run(self) -> None:
        """Executes the scan in the background thread."""
        try:
            summary = self._scanner.refresh(
                self._games,
                self._token,
                on_progress=self._emit_progress,
                on_game_scanned=self.game_scanned.emit,
                on_auth_required=self.auth_required.emit,
                on_notification=self.notification.emit,
            )
        except Exception as exc:
            logger.error("Achievement scan failed: %s", exc, exc_info=True)
            self.error.emit(str(exc))
            return

        if summary.games_refreshed or summary.games_skipped:
            self.notification.emit(
                t(
                    "scan.summary",
                    refreshed=summary.games_refreshed,
                    with_achievements=summary.games_with_achievements,
                    without_achievements=summary.games_without_achievements,
                    skipped=summary.games_skipped,
                )
            )
        self.finished_scan.emit(summary)

    def _emit_progress(self, name: str, current: int, total: int) -> None:
        self.progress.emit(t("scan.progress_game", name=name, current=current, total=total), current, total)
