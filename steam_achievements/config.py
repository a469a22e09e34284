"""
Configuration for the achievement scanner.
Credentials come from the environment (or a .env file) and are overlaid
by the user's settings.json; scan tuning values are clamped on load.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from steam_achievements.integrations.datetime_audit_log import AUDIT_FILE_NAME

logger = logging.getLogger("steamach.config")


__all__ = ["Config", "config"]

_STEAM_ID64_RE = re.compile(r"^7656\d{13}$")
_MAX_SCAN_DELAY_MS = 60_000
_MAX_RETRIES = 10

# settings.json key -> attribute
_PERSISTED_FIELDS = {
    "ui_language": "UI_LANGUAGE",
    "steam_language": "STEAM_LANGUAGE",
    "steam_api_key": "STEAM_API_KEY",
    "steam_user_id": "STEAM_USER_ID",
    "scan_delay_ms": "SCAN_DELAY_MS",
    "max_retry_attempts": "MAX_RETRY_ATTEMPTS",
    "include_locked": "INCLUDE_LOCKED",
}


@dataclass
class Config:
    """
    Settings for one scanner installation.
    Everything written at runtime (settings, browser profile, logs, audit CSV)
    lives below DATA_DIR.
    """

    APP_DIR: Path = Path(__file__).parent.parent
    DATA_DIR: Path = APP_DIR / "data"
    SETTINGS_FILE: Path | None = None

    UI_LANGUAGE: str = "en"
    STEAM_LANGUAGE: str = "english"

    # Credentials
    STEAM_API_KEY: str | None = None
    STEAM_USER_ID: str | None = None

    # Scan tuning
    SCAN_DELAY_MS: int = 200
    MAX_RETRY_ATTEMPTS: int = 3
    INCLUDE_LOCKED: bool = True

    def __post_init__(self):
        self.DATA_DIR = Path(self.DATA_DIR)
        self.DATA_DIR.mkdir(parents=True, exist_ok=True)
        if self.SETTINGS_FILE is None:
            self.SETTINGS_FILE = self.DATA_DIR / "settings.json"

        load_dotenv()
        self.STEAM_API_KEY = os.getenv("STEAM_API_KEY") or self.STEAM_API_KEY
        self.STEAM_USER_ID = os.getenv("STEAM_USER_ID") or self.STEAM_USER_ID

        self._load_settings()
        self._normalize()

    @property
    def browser_profile_dir(self) -> Path:
        return self.DATA_DIR / "browser"

    @property
    def audit_log_path(self) -> Path:
        return self.DATA_DIR / AUDIT_FILE_NAME

    @property
    def log_file(self) -> Path:
        return self.DATA_DIR / "logs" / "scan.log"

    @property
    def has_valid_user_id(self) -> bool:
        """Whether STEAM_USER_ID looks like a SteamID64."""
        return bool(self.STEAM_USER_ID and _STEAM_ID64_RE.match(self.STEAM_USER_ID))

    def _normalize(self) -> None:
        self.STEAM_LANGUAGE = (self.STEAM_LANGUAGE or "").strip().lower() or "english"
        self.STEAM_API_KEY = (self.STEAM_API_KEY or "").strip() or None
        self.STEAM_USER_ID = str(self.STEAM_USER_ID).strip() if self.STEAM_USER_ID else None
        self.SCAN_DELAY_MS = min(max(0, int(self.SCAN_DELAY_MS)), _MAX_SCAN_DELAY_MS)
        self.MAX_RETRY_ATTEMPTS = min(max(0, int(self.MAX_RETRY_ATTEMPTS)), _MAX_RETRIES)

        if self.STEAM_USER_ID and not self.has_valid_user_id:
            logger.warning(
                "STEAM_USER_ID %r is not a SteamID64; the login cookie will be used instead",
                self.STEAM_USER_ID,
            )

    def _load_settings(self) -> None:
        """Overlay values from settings.json."""
        # Local import to avoid circular dependency
        from steam_achievements.utils.i18n import t

        if not self.SETTINGS_FILE.exists():
            return

        try:
            with open(self.SETTINGS_FILE, "r", encoding="utf-8") as f:
                data = json.load(f)

            for key, attr in _PERSISTED_FIELDS.items():
                value = data.get(key)
                if value is None or value == "":
                    continue
                current = getattr(self, attr)
                if isinstance(current, bool):
                    value = bool(value)
                elif isinstance(current, int):
                    value = int(value)
                setattr(self, attr, value)

        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.error(t("logs.config.load_error", error=e))

    def save(self) -> None:
        """Write the persisted fields to settings.json."""
        # Local import to avoid circular dependency
        from steam_achievements.utils.i18n import t

        data = {key: getattr(self, attr) for key, attr in _PERSISTED_FIELDS.items()}

        try:
            with open(self.SETTINGS_FILE, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            logger.error(t("logs.config.save_error", error=e))


# Global instance
config = Config()
