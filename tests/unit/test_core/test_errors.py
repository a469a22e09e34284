"""Tests for the error hierarchy and the transient-failure predicate."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from steam_achievements.core.errors import (
    OperationCancelledError,
    SteamAchievementsError,
    SteamAuthError,
    SteamTransientError,
    is_transient_error,
)
from steam_achievements.models.scrape import ScrapeDetail


def _http_error(status: int) -> requests.HTTPError:
    response = MagicMock()
    response.status_code = status
    return requests.HTTPError(f"HTTP {status}", response=response)


class TestHierarchy:
    """All package errors share one base."""

    def test_subclasses(self) -> None:
        """Every specific error derives from SteamAchievementsError."""
        for cls in (OperationCancelledError, SteamAuthError, SteamTransientError):
            assert issubclass(cls, SteamAchievementsError)

    def test_transient_error_carries_detail(self) -> None:
        """The classification is kept and used in the default message."""
        exc = SteamTransientError(ScrapeDetail.TOO_MANY_REQUESTS)
        assert exc.detail is ScrapeDetail.TOO_MANY_REQUESTS
        assert "429" in str(exc)


class TestIsTransientError:
    """Tests for is_transient_error."""

    @pytest.mark.parametrize(
        "exc",
        [
            SteamTransientError(ScrapeDetail.NO_ROWS_UNKNOWN),
            requests.Timeout(),
            requests.ConnectionError(),
            _http_error(429),
            _http_error(503),
            RuntimeError("The operation timed out"),
            RuntimeError("Connection reset by peer"),
            RuntimeError("Service temporarily unavailable"),
        ],
    )
    def test_transient(self, exc: BaseException) -> None:
        """Rate limits, timeouts and resets are retried."""
        assert is_transient_error(exc)

    @pytest.mark.parametrize(
        "exc",
        [
            None,
            ValueError("bad data"),
            _http_error(404),
            SteamAuthError("no id"),
            OperationCancelledError("Operation cancelled"),
        ],
    )
    def test_not_transient(self, exc: BaseException | None) -> None:
        """Everything else, and cancellation above all, is final."""
        assert not is_transient_error(exc)

    def test_follows_cause_chain(self) -> None:
        """A wrapped timeout is still transient."""
        try:
            try:
                raise requests.Timeout("slow")
            except requests.Timeout as inner:
                raise KeyError("wrapped") from inner
        except KeyError as outer:
            assert is_transient_error(outer)

    def test_cancellation_in_chain_wins(self) -> None:
        """Cancellation found before a transient cause stops the walk."""
        outer = OperationCancelledError("Operation cancelled")
        outer.__cause__ = requests.Timeout()
        assert not is_transient_error(outer)
