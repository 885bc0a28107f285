from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Any, Hashable, Optional, Tuple

from utils.constants import LISTINGS_TTL_SEC

HTTP_CACHE_CAPACITY = 1024


class TTLCache:
    """Thread-safe LRU of decoded API responses with a per-entry expiry."""

    def __init__(self, capacity: int = HTTP_CACHE_CAPACITY, default_ttl: float = LISTINGS_TTL_SEC):
        self._cap = max(1, capacity)
        self._ttl = max(1.0, default_ttl)
        self._lock = threading.RLock()
        # key -> (value, expires_at_monotonic)
        self._map: OrderedDict[Hashable, Tuple[Any, float]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def _purge_expired(self) -> None:
        now = time.monotonic()
        dead = [k for k, (_, exp) in self._map.items() if exp <= now]
        for k in dead:
            self._map.pop(k, None)

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            pair = self._map.get(key)
            if pair is None or pair[1] <= time.monotonic():
                self._map.pop(key, None)
                self.misses += 1
                return None
            self._map.move_to_end(key, last=True)
            self.hits += 1
            return pair[0]

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self._ttl if ttl is None else max(1.0, ttl)
        with self._lock:
            self._purge_expired()
            if key in self._map:
                self._map.move_to_end(key, last=True)
            self._map[key] = (value, time.monotonic() + ttl)
            while len(self._map) > self._cap:
                self._map.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._map.clear()
            self.hits = self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired()
            return len(self._map)
