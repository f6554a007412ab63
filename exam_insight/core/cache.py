# exam_insight/core/cache.py
"""
Content-addressed result cache.

Keys come from `utils.fingerprint.build_cache_key`. Entries expire after
their TTL: a `get` on an expired key removes it and reports a miss, and once
the store grows past `sweep_threshold` every expired entry is dropped in one
pass. There is no LRU; a live entry is never evicted early.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from exam_insight.core.logging import LoggerMixin


@dataclass
class CacheEntry:
    key: str
    payload: Any
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class CacheStore(LoggerMixin):
    def __init__(
        self,
        default_ttl: float = 24 * 60 * 60,
        sweep_threshold: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self.default_ttl = default_ttl
        self.sweep_threshold = sweep_threshold
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self.logger.debug("Cache entry expired", key=key[:20])
                return None
            payload = entry.payload
        self.logger.info("Cache hit", key=key[:20])
        return payload

    def set(self, key: str, payload: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            now = self._clock()
            self._entries[key] = CacheEntry(
                key=key, payload=payload, created_at=now, expires_at=now + ttl
            )
            needs_sweep = len(self._entries) > self.sweep_threshold
        self.logger.info("Cached analysis", key=key[:20], ttl=ttl)
        if needs_sweep:
            self.sweep_expired()

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def sweep_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            self.logger.info("Cleaned expired cache entries", count=len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        self.logger.info("Cache cleared")

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            now = self._clock()
            entries = [
                {
                    "key": e.key[:30] + "...",
                    "age_seconds": round(now - e.created_at, 3),
                    "expires_in_seconds": round(e.expires_at - now, 3),
                    "is_expired": e.is_expired(now),
                }
                for e in self._entries.values()
            ]
        return {"size": len(entries), "entries": entries}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
