"""Logging setup for the achievement scanner.

Modules log through children of the ``steamach`` logger. ``setup_logging``
attaches handlers to that root once and masks credentials in every record,
since Web API URLs carry the API key and cookie headers carry the login.
"""

from __future__ import annotations

import logging
import re
import sys
from pathlib import Path

__all__ = ["SecretMaskingFilter", "logger", "mask_secrets", "setup_logging"]

logger = logging.getLogger("steamach")

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%H:%M:%S"
_MASK = "***"

# urllib3 logs full request lines at DEBUG, including ?key=...
_NOISY_LOGGERS = ("urllib3", "urllib3.connectionpool")

_SECRET_PATTERNS = (
    re.compile(r"(?i)([?&]key=)[^&\s'\"]+"),
    re.compile(r"(?i)(steamLoginSecure=)[^;\s'\"]+"),
    re.compile(r"(?i)(sessionid=)[^;\s'\"]+"),
)


def mask_secrets(text: str) -> str:
    """Replaces API keys and session cookie values in ``text``."""
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(lambda m: m.group(1) + _MASK, text)
    return text


class SecretMaskingFilter(logging.Filter):
    """Masks credentials in the fully formatted message of a record."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = mask_secrets(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def setup_logging(
    level: int = logging.INFO,
    log_file: Path | None = None,
    verbose_http: bool = False,
) -> None:
    """Configures the ``steamach`` logger tree.

    Args:
        level: Console level.
        log_file: Optional log file, written at DEBUG.
        verbose_http: Keep urllib3 connection logging. Off by default.
    """
    logger.setLevel(logging.DEBUG if log_file is not None else level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose_http else logging.WARNING)

    if logger.handlers:
        return

    formatter = logging.Formatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT)
    secret_filter = SecretMaskingFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(secret_filter)
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(secret_filter)
        logger.addHandler(file_handler)
