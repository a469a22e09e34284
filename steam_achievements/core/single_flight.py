"""Keyed lazy cache where only one computation per key is in flight."""

from __future__ import annotations

import threading
from collections.abc import Callable, Hashable
from concurrent.futures import Future
from typing import Generic, TypeVar

__all__ = ["SingleFlightCache"]

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class SingleFlightCache(Generic[K, V]):
    """Maps keys to results computed at most once at a time.

    The first caller for a key runs the loader; concurrent callers block on
    the same future. A failed load is evicted so the next caller retries.
    Results for which ``evict_if`` returns True are handed out but not kept.
    """

    def __init__(self, evict_if: Callable[[V], bool] | None = None) -> None:
        self._lock = threading.Lock()
        self._entries: dict[K, Future] = {}
        self._evict_if = evict_if

    def get_or_load(self, key: K, loader: Callable[[], V]) -> V:
        """Returns the cached value for ``key``, loading it if needed.

        Args:
            key: Cache key.
            loader: Zero-argument callable producing the value.

        Returns:
            The cached or freshly loaded value.

        Raises:
            Exception: Whatever ``loader`` raised, for the owner and every waiter.
        """
        with self._lock:
            future = self._entries.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._entries[key] = future

        if not owner:
            return future.result()

        try:
            value = loader()
        except BaseException as exc:
            self._evict(key, future)
            future.set_exception(exc)
            raise

        if self._evict_if is not None and self._evict_if(value):
            self._evict(key, future)
        future.set_result(value)
        return value

    def peek(self, key: K) -> V | None:
        """Returns a completed value without loading, or None."""
        with self._lock:
            future = self._entries.get(key)
        if future is None or not future.done() or future.exception() is not None:
            return None
        return future.result()

    def invalidate(self, key: K) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _evict(self, key: K, future: Future) -> None:
        with self._lock:
            if self._entries.get(key) is future:
                del self._entries[key]
