"""Tests for the settings layer."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from steam_achievements.config import Config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Removes credential variables from the environment."""
    monkeypatch.delenv("STEAM_API_KEY", raising=False)
    monkeypatch.delenv("STEAM_USER_ID", raising=False)


class TestConfig:
    """Tests for Config loading and saving."""

    def test_defaults(self, tmp_path: Path) -> None:
        """A fresh data directory gives the defaults."""
        cfg = Config(DATA_DIR=tmp_path / "data")

        assert cfg.DATA_DIR.is_dir()
        assert cfg.SETTINGS_FILE == tmp_path / "data" / "settings.json"
        assert cfg.STEAM_LANGUAGE == "english"
        assert cfg.SCAN_DELAY_MS == 200
        assert cfg.STEAM_API_KEY is None
        assert cfg.browser_profile_dir == tmp_path / "data" / "browser"

    def test_environment_credentials(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Credentials come from the environment."""
        monkeypatch.setenv("STEAM_API_KEY", "ENVKEY")
        monkeypatch.setenv("STEAM_USER_ID", "76561198000000001")

        cfg = Config(DATA_DIR=tmp_path)

        assert cfg.STEAM_API_KEY == "ENVKEY"
        assert cfg.STEAM_USER_ID == "76561198000000001"

    def test_save_and_reload(self, tmp_path: Path) -> None:
        """Saved settings are read back by a new instance."""
        cfg = Config(DATA_DIR=tmp_path)
        cfg.STEAM_LANGUAGE = "german"
        cfg.SCAN_DELAY_MS = 500
        cfg.INCLUDE_LOCKED = False
        cfg.save()

        reloaded = Config(DATA_DIR=tmp_path)

        assert reloaded.STEAM_LANGUAGE == "german"
        assert reloaded.SCAN_DELAY_MS == 500
        assert reloaded.INCLUDE_LOCKED is False
        assert json.loads((tmp_path / "settings.json").read_text(encoding="utf-8"))["scan_delay_ms"] == 500

    def test_broken_settings_file_is_logged(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        """Invalid JSON keeps the defaults and logs an error."""
        (tmp_path / "settings.json").write_text("{not json", encoding="utf-8")

        with caplog.at_level(logging.ERROR, logger="steamach.config"):
            cfg = Config(DATA_DIR=tmp_path)

        assert cfg.SCAN_DELAY_MS == 200
        assert any(r.levelno == logging.ERROR for r in caplog.records)

    def test_values_are_normalized(self, tmp_path: Path) -> None:
        """Tuning values are clamped and the Steam language lowercased."""
        (tmp_path / "settings.json").write_text(
            json.dumps({"steam_language": " German ", "scan_delay_ms": -5, "max_retry_attempts": 99}),
            encoding="utf-8",
        )

        cfg = Config(DATA_DIR=tmp_path)

        assert cfg.STEAM_LANGUAGE == "german"
        assert cfg.SCAN_DELAY_MS == 0
        assert cfg.MAX_RETRY_ATTEMPTS == 10

    def test_vanity_user_id_warns(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        """A non-numeric user id is kept but flagged."""
        (tmp_path / "settings.json").write_text(json.dumps({"steam_user_id": "gabelogannewell"}), encoding="utf-8")

        with caplog.at_level(logging.WARNING, logger="steamach.config"):
            cfg = Config(DATA_DIR=tmp_path)

        assert cfg.STEAM_USER_ID == "gabelogannewell"
        assert not cfg.has_valid_user_id
        assert "SteamID64" in caplog.text

    def test_runtime_paths(self, tmp_path: Path) -> None:
        """Audit CSV and log file live below DATA_DIR."""
        cfg = Config(DATA_DIR=tmp_path)
        assert cfg.audit_log_path == tmp_path / "failed_steam_datetimes.csv"
        assert cfg.log_file == tmp_path / "logs" / "scan.log"
