"""Exception hierarchy and the transient-failure predicate.

Only I/O layers raise. Parsers and classifiers return empty results instead.
"""

from __future__ import annotations

import requests

from steam_achievements.models.scrape import ScrapeDetail

__all__ = [
    "OperationCancelledError",
    "SteamAchievementsError",
    "SteamAuthError",
    "SteamTransientError",
    "is_transient_error",
]

_TRANSIENT_STATUS_CODES = frozenset({429, 502, 503, 504})


class SteamAchievementsError(Exception):
    """Base class for all errors raised by this package."""


class OperationCancelledError(SteamAchievementsError):
    """Raised when a cancellation token has been tripped."""


class SteamAuthError(SteamAchievementsError):
    """Raised when no authenticated Steam identity is available."""


class SteamTransientError(SteamAchievementsError):
    """A failure expected to clear up on retry.

    Attributes:
        detail: The scrape classification that caused the failure.
    """

    def __init__(self, detail: ScrapeDetail, message: str | None = None) -> None:
        super().__init__(message or f"Transient Steam failure: {detail.value}")
        self.detail = detail


def is_transient_error(exc: BaseException | None) -> bool:
    """Decides whether an exception should be retried.

    Walks the ``__cause__`` / ``__context__`` chain. Cancellation is never
    transient.

    Args:
        exc: The exception to inspect.

    Returns:
        True if the failure is worth retrying.
    """
    seen: set[int] = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))

        if isinstance(exc, OperationCancelledError):
            return False
        if isinstance(exc, SteamTransientError):
            return True
        if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
            return True
        if isinstance(exc, requests.HTTPError):
            response = exc.response
            if response is not None and response.status_code in _TRANSIENT_STATUS_CODES:
                return True

        message = str(exc).lower()
        if (
            "timeout" in message
            or "timed out" in message
            or ("connection" in message and "reset" in message)
            or "temporarily" in message
            or "429" in message
        ):
            return True

        exc = exc.__cause__ or exc.__context__
    return False
