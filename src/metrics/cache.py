"""
Metric result cache.

Results are kept in process memory for ``cache_ttl_seconds`` (five minutes
by default) under a hash of the request: metric id, the filters after the
caller's data filters were merged in, group-by and date field.  Each entry
is tagged with its metric and data source so loading data or deleting a
metric drops the results it made stale.  When full, the least recently
used entry goes first.
"""
from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Iterable

from src.core.config import get_settings
from src.core.utils import stable_hash
from src.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class CachedResult:
    value: Any
    expires_at: float
    tags: frozenset[str] = field(default_factory=frozenset)

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


class QueryCache:
    """Thread-safe LRU cache of metric results with a fixed TTL."""

    def __init__(self, ttl: float | None = None, max_size: int | None = None):
        settings = get_settings()
        self.ttl = ttl if ttl is not None else settings.cache_ttl_seconds
        self.max_size = max_size if max_size is not None else settings.cache_max_size
        self._entries: OrderedDict[str, CachedResult] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = self._misses = self._evictions = 0

    @staticmethod
    def metric_key(
        metric_id: str,
        filters: dict[str, Any] | None,
        group_by: list[str] | None,
        date_field: str | None,
    ) -> str:
        return stable_hash({
            "metric_id": metric_id,
            "filters": filters or {},
            "group_by": group_by or [],
            "date_field": date_field,
        })

    # ── Lookup / store ──────────────────────────────

    def get(self, key: str) -> Any | None:
        """Cached value for *key*, or ``None`` when absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.expired(time.monotonic()):
                del self._entries[key]
                entry = None
            if entry is None:
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    def put(self, key: str, value: Any, tags: Iterable[str] = ()) -> None:
        with self._lock:
            self._entries.pop(key, None)
            while self._entries and len(self._entries) >= self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug("Evicted cached result %s", evicted[:12])
            self._entries[key] = CachedResult(
                value=value,
                expires_at=time.monotonic() + self.ttl,
                tags=frozenset(t for t in tags if t),
            )

    # ── Invalidation ────────────────────────────────

    def invalidate(self, key: str | None = None) -> int:
        """Drop one entry, or everything when *key* is None; returns the count dropped."""
        with self._lock:
            if key is None:
                count = len(self._entries)
                self._entries.clear()
                return count
            return 1 if self._entries.pop(key, None) is not None else 0

    def invalidate_tag(self, tag: str) -> int:
        """Drop every entry tagged with *tag* (a metric or data source id)."""
        with self._lock:
            stale = [k for k, entry in self._entries.items() if tag in entry.tags]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.info("Invalidated %d cached result(s) for %s", len(stale), tag)
        return len(stale)

    def cleanup_expired(self) -> int:
        now = time.monotonic()
        with self._lock:
            expired = [k for k, entry in self._entries.items() if entry.expired(now)]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "ttl_seconds": self.ttl,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": round(self._hits / lookups, 3) if lookups else 0.0,
            }


_cache: QueryCache | None = None
_cache_lock = threading.Lock()


def get_cache() -> QueryCache:
    """Process-wide cache used by the API."""
    global _cache
    with _cache_lock:
        if _cache is None:
            _cache = QueryCache()
        return _cache
