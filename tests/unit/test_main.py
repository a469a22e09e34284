"""Tests for the command-line entry point helpers."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

pytest.importorskip("PyQt6.QtWebEngineWidgets")

from steam_achievements.main import format_game_result, parse_app_ids  # noqa: E402
from steam_achievements.models.achievements import AchievementDetail, GameAchievementData, GameRef  # noqa: E402
from steam_achievements.utils.i18n import t  # noqa: E402


class TestParseAppIds:
    """Tests for parse_app_ids."""

    def test_numeric_arguments_only(self) -> None:
        """Flags and non-numeric arguments are ignored."""
        games = parse_app_ids(["--login", "440", "tf2", "0", "620"])
        assert [g.app_id for g in games] == [440, 620]

    def test_no_arguments(self) -> None:
        """An empty argument list gives no games."""
        assert parse_app_ids([]) == []


class TestFormatGameResult:
    """Tests for the per-game console line."""

    def test_scanned_game(self) -> None:
        """Unlocked and total counts are shown."""
        data = GameAchievementData(
            app_id=440,
            game_name="TF2",
            has_achievements=True,
            last_updated_utc=datetime(2025, 1, 1, tzinfo=timezone.utc),
            achievements=(AchievementDetail("A", unlocked=True), AchievementDetail("B")),
        )
        line = format_game_result(GameRef("TF2", 440), data)
        assert line == t("cli.game_result", name="TF2", unlocked=1, total=2)

    def test_unnamed_skipped_game(self) -> None:
        """Skipped games without a name use the app ID label."""
        line = format_game_result(GameRef("", "440"), None)
        assert line == t("cli.game_skipped", name=t("scan.unnamed_game", app_id="440"))

    def test_game_without_achievements(self) -> None:
        """Games without a schema say so."""
        data = GameAchievementData(app_id=1, game_name="Tool", has_achievements=False)
        assert format_game_result(GameRef("Tool", 1), data) == t("cli.game_no_achievements", name="Tool")
