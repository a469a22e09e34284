"""Request pacing and bounded retry with exponential backoff."""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from typing import TypeVar

from steam_achievements.core.cancellation import CancellationToken
from steam_achievements.core.errors import OperationCancelledError

logger = logging.getLogger("steamach.rate_limiter")

__all__ = ["MAX_BACKOFF_MS", "RateLimiter"]

T = TypeVar("T")

MAX_BACKOFF_MS = 30_000


class RateLimiter:
    """Paces requests and retries transient failures.

    Every sleep goes through ``CancellationToken.wait`` so a cancel request
    interrupts delays and backoff immediately.

    Args:
        base_delay_ms: Delay between requests in milliseconds.
        max_retry_attempts: Retries allowed after the first attempt.
        rng: Source of jitter, pinned in tests.
    """

    def __init__(
        self,
        base_delay_ms: int,
        max_retry_attempts: int = 3,
        rng: random.Random | None = None,
    ) -> None:
        self.base_delay_ms = max(0, int(base_delay_ms))
        self.max_retry_attempts = max(0, int(max_retry_attempts))
        self._rng = rng or random.Random()

    def backoff_ms(self, consecutive_errors: int) -> int:
        """Exponential backoff with jitter for the n-th consecutive error.

        ``min(base * 2^(n-1) + jitter, 30s)`` with jitter in ``[0, base/2)``.
        """
        exponent = max(0, consecutive_errors - 1)
        exponential = self.base_delay_ms * (1 << exponent)
        jitter = self._rng.randrange(0, max(1, self.base_delay_ms // 2))
        return min(exponential + jitter, MAX_BACKOFF_MS)

    def execute_with_retry(
        self,
        work: Callable[[], T],
        is_transient: Callable[[BaseException], bool],
        token: CancellationToken,
    ) -> T:
        """Runs ``work``, retrying transient failures with backoff.

        Args:
            work: Zero-argument unit of work.
            is_transient: Decides whether an exception is worth retrying.
            token: Cancellation token for every wait.

        Returns:
            Whatever ``work`` returned.

        Raises:
            OperationCancelledError: If cancelled.
            Exception: The last error once retries are exhausted, or any
                non-transient error immediately.
        """
        attempt = 0
        while True:
            token.raise_if_cancelled()
            if attempt > 0:
                token.wait(self.base_delay_ms / 1000)

            try:
                return work()
            except OperationCancelledError:
                raise
            except Exception as exc:
                if not is_transient(exc):
                    raise
                attempt += 1
                if attempt > self.max_retry_attempts:
                    raise
                delay = self.backoff_ms(attempt)
                logger.debug("Transient failure (attempt %d), backing off %d ms: %s", attempt, delay, exc)
                token.wait(delay / 1000)

    def delay_before_next(self, token: CancellationToken) -> None:
        """Fixed pause between two units of work."""
        if self.base_delay_ms > 0:
            token.wait(self.base_delay_ms / 1000)

    def delay_after_error(self, consecutive_errors: int, token: CancellationToken) -> None:
        """Extra backoff after repeated failures across items."""
        token.wait(self.backoff_ms(consecutive_errors) / 1000)
