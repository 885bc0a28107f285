import threading
import time
from typing import Any, Dict, Optional


class TokenBucket:
    """Request limiter shared by every API call of one client."""

    def __init__(self, rate_per_sec: float = 5.0, capacity: int = 10):
        self._rate = max(0.0, float(rate_per_sec))
        self._cap = max(1, int(capacity))
        self._tokens = float(self._cap)
        self._last = time.monotonic()
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, api_config: Dict[str, Any]) -> "TokenBucket":
        return cls(
            rate_per_sec=api_config.get('rate_per_sec', 5.0),
            capacity=api_config.get('rate_capacity', 10),
        )

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = max(0.0, now - self._last)
        self._last = now
        if self._rate > 0:
            self._tokens = min(self._cap, self._tokens + elapsed * self._rate)

    def try_acquire(self, n: int = 1) -> bool:
        with self._lock:
            self._refill()
            if self._tokens >= n:
                self._tokens -= n
                return True
            return False

    def acquire(self, n: int = 1, timeout: Optional[float] = None) -> bool:
        """
        Block until n tokens are available or the timeout passes.
        Returns True on success, False on timeout.
        """
        deadline = None if timeout is None else (time.monotonic() + max(0.0, timeout))
        while True:
            if self.try_acquire(n):
                return True
            now = time.monotonic()
            if deadline is not None and now >= deadline:
                return False
            with self._lock:
                need = max(0.0, n - self._tokens)
                wait = 0.01 if self._rate <= 0 else max(0.01, need / self._rate)
            remaining = float("inf") if deadline is None else max(0.0, deadline - now)
            time.sleep(min(wait, remaining, 0.25))

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def capacity(self) -> int:
        return self._cap

    @property
    def tokens(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens
