"""Tests for the cooperative cancellation token."""

from __future__ import annotations

import threading
import time

import pytest

from steam_achievements.core.cancellation import CancellationToken
from steam_achievements.core.errors import OperationCancelledError


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_initially_not_cancelled(self) -> None:
        """A fresh token passes every check."""
        token = CancellationToken()
        assert not token.is_cancelled
        token.raise_if_cancelled()
        token.wait(0)

    def test_cancel_is_idempotent(self) -> None:
        """Cancelling twice is harmless."""
        token = CancellationToken()
        token.cancel()
        token.cancel()
        assert token.is_cancelled
        with pytest.raises(OperationCancelledError):
            token.raise_if_cancelled()

    def test_wait_after_cancel_raises_immediately(self) -> None:
        """A cancelled token never sleeps."""
        token = CancellationToken()
        token.cancel()
        start = time.monotonic()
        with pytest.raises(OperationCancelledError):
            token.wait(10)
        assert time.monotonic() - start < 1

    def test_cancel_interrupts_wait(self) -> None:
        """Cancelling from another thread ends a pending wait."""
        token = CancellationToken()
        timer = threading.Timer(0.05, token.cancel)
        timer.start()
        start = time.monotonic()
        try:
            with pytest.raises(OperationCancelledError):
                token.wait(10)
        finally:
            timer.cancel()
        assert time.monotonic() - start < 5
