"""
Response cache with staleness tiers.

Holds the last successful upstream payload per request key:

- fresh   (age < fresh_ttl): served without touching the network
- stale   (fresh_ttl <= age < stale_ttl): fallback while throttled or failing
- expired (age >= stale_ttl): never returned
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from airsentinel.ingestion.metrics import CACHE_LOOKUPS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    data: Any
    fetched_at: float


@dataclass(frozen=True)
class CacheLookup:
    data: Any
    fresh: bool
    age_s: float


class ResponseCache:
    """Thread-safe per-key cache. Writes replace the entry wholesale."""

    def __init__(
        self,
        fresh_ttl_s: float = 15.0,
        stale_ttl_s: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        if stale_ttl_s < fresh_ttl_s:
            raise ValueError("stale_ttl_s must be >= fresh_ttl_s")
        self.fresh_ttl_s = fresh_ttl_s
        self.stale_ttl_s = stale_ttl_s
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def lookup(self, key: str) -> Optional[CacheLookup]:
        """Return the entry with its freshness, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)

        if entry is None:
            CACHE_LOOKUPS.labels(tier="miss").inc()
            return None

        age = self._clock() - entry.fetched_at
        if age < self.fresh_ttl_s:
            CACHE_LOOKUPS.labels(tier="fresh").inc()
            return CacheLookup(data=entry.data, fresh=True, age_s=age)
        if age < self.stale_ttl_s:
            CACHE_LOOKUPS.labels(tier="stale").inc()
            return CacheLookup(data=entry.data, fresh=False, age_s=age)

        CACHE_LOOKUPS.labels(tier="miss").inc()
        return None

    def store(self, key: str, data: Any) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(data=data, fetched_at=self._clock())

    def evict_expired(self) -> int:
        """Drop entries past the stale window. Returns number removed."""
        cutoff = self._clock() - self.stale_ttl_s
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.fetched_at <= cutoff]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired cache entries")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._entries)
