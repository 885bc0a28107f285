"""Compute-once map used to memoize per-item results across worker threads."""

from __future__ import annotations

import threading
from concurrent.futures import Future
from typing import Callable, Dict, Generic, Hashable, Optional, TypeVar

V = TypeVar("V")

_MISSING = object()


class SingleFlightCache(Generic[V]):
    """Thread-safe memo with single-flight ``get_or_compute``.

    Concurrent ``get_or_compute`` calls for the same key share one
    computation: the first caller runs ``fn``; the others block on its
    future and receive the same value. ``offer`` publishes a value computed
    elsewhere without waiting; the first value stored for a key wins.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._values: Dict[Hashable, V] = {}
        self._inflight: Dict[Hashable, Future] = {}
        self.computations = 0

    def get(self, key: Hashable, default: Optional[V] = None) -> Optional[V]:
        with self._lock:
            return self._values.get(key, default)

    def offer(self, key: Hashable, value: V) -> V:
        with self._lock:
            return self._values.setdefault(key, value)

    def get_or_compute(self, key: Hashable, fn: Callable[[], V]) -> V:
        with self._lock:
            value = self._values.get(key, _MISSING)
            if value is not _MISSING:
                return value
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[key] = future
                self.computations += 1

        if not owner:
            return future.result()

        try:
            value = fn()
        except BaseException as exc:
            with self._lock:
                self._inflight.pop(key, None)
            future.set_exception(exc)
            raise

        with self._lock:
            value = self._values.setdefault(key, value)
            self._inflight.pop(key, None)
        future.set_result(value)
        return value

    def clear(self) -> None:
        with self._lock:
            self._values.clear()
            self.computations = 0

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._values

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)
