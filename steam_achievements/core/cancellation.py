"""Cooperative cancellation shared by every blocking operation of a scan."""

from __future__ import annotations

import threading

from steam_achievements.core.errors import OperationCancelledError

__all__ = ["CancellationToken"]


class CancellationToken:
    """A one-shot cancellation flag with an interruptible sleep.

    ``wait()`` is the only sleep primitive used during a scan so that a
    cancel request cuts any delay or backoff short.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Trips the token. Idempotent."""
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raises OperationCancelledError if the token was tripped."""
        if self._event.is_set():
            raise OperationCancelledError("Operation cancelled")

    def wait(self, seconds: float) -> None:
        """Sleeps for ``seconds`` unless cancelled first.

        Args:
            seconds: Delay in seconds. Non-positive values only check the flag.

        Raises:
            OperationCancelledError: If the token is tripped before or
                during the wait.
        """
        self.raise_if_cancelled()
        if seconds > 0 and self._event.wait(seconds):
            raise OperationCancelledError("Operation cancelled")
