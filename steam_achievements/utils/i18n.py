"""User-facing message strings.

Messages live in ``resources/i18n/{locale}/*.json`` as nested objects and
are looked up with dotted keys. English is the fallback for every locale.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

__all__ = ["I18n", "get_language", "init_i18n", "t"]

logger = logging.getLogger("steamach.i18n")

_I18N_ROOT = Path(__file__).resolve().parent.parent / "resources" / "i18n"
_FALLBACK_LOCALE = "en"


class I18n:
    """Message catalog for one locale, layered over English."""

    def __init__(self, locale: str = _FALLBACK_LOCALE, root: Path | None = None) -> None:
        """Loads the catalog.

        Args:
            locale: Locale directory name under the i18n root, e.g. 'de'.
            root: Alternative i18n root, mainly for tests.
        """
        self.locale = locale
        self.i18n_root = root or _I18N_ROOT
        self.translations: dict[str, Any] = {}
        self._load_translations()

    def _load_translations(self) -> None:
        fallback = self._load_locale_directory(_FALLBACK_LOCALE)
        if self.locale == _FALLBACK_LOCALE:
            self.translations = fallback
        else:
            self.translations = self._deep_merge(fallback, self._load_locale_directory(self.locale))

    def _load_locale_directory(self, locale_code: str) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        directory = self.i18n_root / locale_code
        if not directory.exists():
            return merged
        for file_path in sorted(directory.glob("*.json")):
            try:
                with open(file_path, "r", encoding="utf-8") as f:
                    merged = self._deep_merge(merged, json.load(f))
            except (OSError, json.JSONDecodeError) as e:
                logger.error("Error loading i18n file %s: %s", file_path.name, e)
        return merged

    def _deep_merge(self, base: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
        result = base.copy()
        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def t(self, key: str, **kwargs: Any) -> str:
        """Looks up a message by dotted key.

        Args:
            key: Dot-separated key path (e.g. 'scan.auth_required').
            **kwargs: Format arguments for interpolation.

        Returns:
            The formatted message, or '[key]' if it does not exist.
        """
        value: Any = self.translations
        for part in key.split("."):
            value = value.get(part) if isinstance(value, dict) else None
            if value is None:
                break

        if not isinstance(value, str):
            return f"[{key}]"

        if kwargs:
            try:
                return value.format(**kwargs)
            except (ValueError, KeyError, IndexError):
                return value
        return value


_i18n_instance: I18n | None = None


def init_i18n(locale: str = _FALLBACK_LOCALE) -> I18n:
    """Replaces the global catalog with one for ``locale``."""
    global _i18n_instance
    _i18n_instance = I18n(locale)
    return _i18n_instance


def get_language() -> str:
    if _i18n_instance is None:
        init_i18n()
    return _i18n_instance.locale


def t(key: str, **kwargs: Any) -> str:
    """Translates ``key`` with the global catalog."""
    if _i18n_instance is None:
        init_i18n()
    return _i18n_instance.t(key, **kwargs)
