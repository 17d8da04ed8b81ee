from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, List, Optional, TypeVar

V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    value: V
    stored_at: float
    expires_at: float


class TTLCache(Generic[V]):
    """Key -> value map whose entries go stale after ``ttl_seconds``.

    Stale entries are only replaced on the next ``set``; nothing is evicted
    proactively.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = max(0.0, float(ttl_seconds))
        self._clock = clock
        self._entries: Dict[str, CacheEntry[V]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None or self._clock() >= entry.expires_at:
            return None
        return entry.value

    def set(self, key: str, value: V) -> None:
        now = self._clock()
        with self._lock:
            self._entries[key] = CacheEntry(value=value, stored_at=now, expires_at=now + self.ttl_seconds)

    def snapshot(self) -> List[Dict[str, object]]:
        now = self._clock()
        with self._lock:
            items = list(self._entries.items())
        return [
            {
                "key": key,
                "age_seconds": round(now - entry.stored_at, 3),
                "count": len(entry.value) if isinstance(entry.value, (list, tuple)) else 1,
            }
            for key, entry in items
        ]
