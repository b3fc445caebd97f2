"""Thread-safe in-memory caches.

Classes:
    InMemoryCacheManager: TTL cache with fnmatch pattern invalidation
    GenerationalMemoryCache: InMemoryCacheManager that marks scopes stale by generation
"""

import fnmatch
import logging
import threading
import time
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

from .interfaces import ICacheManager, IGenerationalCache

logger = logging.getLogger(__name__)


def scope_of(key: str) -> str:
    """Return the scope of a cache key (the segment before the first ':')."""
    return key.split(":", 1)[0]


class InMemoryCacheManager(ICacheManager):
    """In-memory cache used by domain services for read-through caching.

    Keys follow the ``"<scope>:<kind>:<id>"`` convention, for example
    ``"user:describe:u-123"`` or ``"workgroup:members:wg-7"``.
    """

    def __init__(self, default_ttl: Optional[timedelta] = None, clock: Callable[[], float] = time.time):
        """
        Initialize the cache.

        Args:
            default_ttl: TTL used when set() is called without one (default 1 hour)
            clock: Time source
        """
        self.default_ttl = default_ttl or timedelta(hours=1)
        self._clock = clock
        self._lock = threading.RLock()
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "invalidations": 0,
            "stale_evictions": 0,
        }

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None

            if self._is_stale(key, entry):
                del self._cache[key]
                self._stats["stale_evictions"] += 1
                self._stats["misses"] += 1
                return None

            self._stats["hits"] += 1
            return entry["data"]

    def set(self, key: str, data: Any, ttl: Optional[timedelta] = None) -> None:
        ttl = ttl or self.default_ttl
        with self._lock:
            now = self._clock()
            self._cache[key] = self._make_entry(key, data, now, now + ttl.total_seconds())
            self._stats["sets"] += 1

    def exists(self, key: str) -> bool:
        with self._lock:
            entry = self._cache.get(key)
            return entry is not None and not self._is_stale(key, entry)

    def invalidate(self, pattern: str) -> int:
        with self._lock:
            if pattern == "*":
                removed_count = len(self._cache)
                self._cache.clear()
            else:
                keys_to_remove = [key for key in self._cache if fnmatch.fnmatch(key, pattern)]
                for key in keys_to_remove:
                    del self._cache[key]
                removed_count = len(keys_to_remove)

            if removed_count > 0:
                self._stats["invalidations"] += removed_count
                logger.debug(f"Invalidated {removed_count} cache entries matching {pattern}")
            return removed_count

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            stats = dict(self._stats)
            stats["entries"] = len(self._cache)
            return stats

    def _make_entry(self, key: str, data: Any, now: float, expires_at: float) -> Dict[str, Any]:
        return {"data": data, "created_at": now, "expires_at": expires_at}

    def _is_stale(self, key: str, entry: Dict[str, Any]) -> bool:
        return self._clock() >= entry["expires_at"]


class GenerationalMemoryCache(InMemoryCacheManager, IGenerationalCache):
    """In-memory cache whose entries go stale when their scope generation advances."""

    def __init__(self, default_ttl: Optional[timedelta] = None, clock: Callable[[], float] = time.time):
        super().__init__(default_ttl=default_ttl, clock=clock)
        self._generations: Dict[str, int] = {}
        self._stats["generation_bumps"] = 0

    def get_generation(self, scope: str) -> int:
        with self._lock:
            return self._generations.get(scope, 0)

    def bump_generation(self, scope: str) -> int:
        with self._lock:
            generation = self._generations.get(scope, 0) + 1
            self._generations[scope] = generation
            self._stats["generation_bumps"] += 1
            return generation

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._generations.clear()

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            stats = super().get_stats()
            stats["generations"] = dict(self._generations)
            return stats

    def _make_entry(self, key: str, data: Any, now: float, expires_at: float) -> Dict[str, Any]:
        entry = super()._make_entry(key, data, now, expires_at)
        entry["generation"] = self._generations.get(scope_of(key), 0)
        return entry

    def _is_stale(self, key: str, entry: Dict[str, Any]) -> bool:
        if super()._is_stale(key, entry):
            return True
        return entry["generation"] < self._generations.get(scope_of(key), 0)
