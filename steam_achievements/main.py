"""Steam achievement scanner - entry point.

Usage::

    python -m steam_achievements.main [--login] [APP_ID ...]

Without app IDs every owned game is scanned. ``--login`` opens the Steam
sign-in window before the scan.
"""

from __future__ import annotations

import logging
import sys

from PyQt6.QtWidgets import QApplication

from steam_achievements.config import config
from steam_achievements.core.logging import logger, setup_logging
from steam_achievements.core.steam_session_manager import SteamSessionManager
from steam_achievements.integrations.datetime_audit_log import DatetimeAuditLog
from steam_achievements.integrations.steam_http_client import SteamHttpClient
from steam_achievements.models.achievements import GameAchievementData, GameRef
from steam_achievements.services.achievement_scanner import AchievementScanner
from steam_achievements.services.scan_thread import AchievementScanThread
from steam_achievements.ui.qt_browser import QtCookieBrowser
from steam_achievements.utils.i18n import init_i18n, t

__all__ = ["format_game_result", "main", "parse_app_ids"]


def parse_app_ids(args: list[str]) -> list[GameRef]:
    """Turns positional command-line arguments into games to scan.

    Non-numeric arguments are ignored.
    """
    games = [GameRef(name="", game_id=arg) for arg in args if not arg.startswith("--")]
    return [game for game in games if game.app_id is not None]


def format_game_result(game: GameRef, data: GameAchievementData | None) -> str:
    """One console line for a scanned or skipped game."""
    name = game.name or t("scan.unnamed_game", app_id=game.game_id)
    if data is None:
        return t("cli.game_skipped", name=name)
    if not data.has_achievements:
        return t("cli.game_no_achievements", name=name)
    return t(
        "cli.game_result",
        name=name,
        unlocked=data.unlocked_count,
        total=len(data.achievements),
    )


def _load_owned_games(http: SteamHttpClient) -> list[GameRef]:
    owned = http.api.get_owned_games_detailed(config.STEAM_USER_ID or "")
    return [GameRef(name=game.name, game_id=game.app_id) for game in sorted(owned, key=lambda g: g.name.lower())]


def main() -> None:
    """Runs one scan on a worker thread while the GUI thread serves the browser."""
    init_i18n(config.UI_LANGUAGE)
    setup_logging(logging.INFO, config.log_file)

    app = QApplication(sys.argv)
    app.setApplicationName("Steam Achievements")

    browser = QtCookieBrowser(config.browser_profile_dir)
    session_manager = SteamSessionManager(browser, config)

    if "--login" in sys.argv:
        ok, message = session_manager.authenticate_interactive()
        print(message)
        if not ok:
            sys.exit(1)

    http = SteamHttpClient(
        session_manager,
        api_key=config.STEAM_API_KEY,
        audit_log=DatetimeAuditLog(config.audit_log_path),
    )

    games = parse_app_ids(sys.argv[1:]) or _load_owned_games(http)
    if not games:
        print(t("cli.no_games"))
        sys.exit(1)

    scanner = AchievementScanner(config, http, session_manager)
    thread = AchievementScanThread(scanner)
    thread.progress.connect(lambda text, current, total: logger.info(text))
    thread.game_scanned.connect(lambda game, data: print(format_game_result(game, data)))
    thread.notification.connect(print)
    thread.auth_required.connect(lambda: logger.warning(t("cli.login_hint")))
    thread.finished_scan.connect(lambda summary: app.exit(0 if not summary.auth_required else 2))
    thread.error.connect(lambda message: app.exit(1))

    thread.configure(games)
    thread.start()

    try:
        exit_code = app.exec()
    finally:
        thread.cancel()
        thread.wait()
        http.close()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
