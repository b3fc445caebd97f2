"""Cache interfaces used by the invalidation hub."""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Dict, Optional


class ICacheManager(ABC):
    """
    Interface for cache manager implementations.

    Defines the operations CacheInvalidationHub relies on, plus the basic
    read/write calls domain services use to populate the cache.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """
        Retrieve cached data by key.

        Args:
            key: Cache key to retrieve

        Returns:
            Cached data if found and not stale, None otherwise
        """
        pass

    @abstractmethod
    def set(self, key: str, data: Any, ttl: Optional[timedelta] = None) -> None:
        """
        Store data in cache with optional TTL.

        Args:
            key: Cache key to store data under
            data: Data to cache
            ttl: Optional TTL override. If None, uses default TTL.
        """
        pass

    @abstractmethod
    def invalidate(self, pattern: str) -> int:
        """
        Invalidate cache entries matching pattern.

        Args:
            pattern: Pattern to match cache keys (supports wildcards)

        Returns:
            Number of invalidated entries
        """
        pass

    @abstractmethod
    def clear(self) -> None:
        """Clear all cache entries."""
        pass

    @abstractmethod
    def get_stats(self) -> Dict[str, Any]:
        """Return cache statistics."""
        pass


class IGenerationalCache(ABC):
    """
    Interface for caches that mark entries stale by scope generation.

    Entries remember the generation of their scope at write time; bumping the
    scope's generation makes every older entry in it a miss.
    """

    @abstractmethod
    def get_generation(self, scope: str) -> int:
        """Return the current generation token for a scope."""
        pass

    @abstractmethod
    def bump_generation(self, scope: str) -> int:
        """
        Advance the generation token for a scope.

        Args:
            scope: Scope whose entries become stale

        Returns:
            The new generation token
        """
        pass
