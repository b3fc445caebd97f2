"""Cache consistency for bulk mutations."""

from .interfaces import ICacheManager, IGenerationalCache
from .invalidation import CacheInvalidationHub, InvalidationReport, InvalidationTarget
from .memory import GenerationalMemoryCache, InMemoryCacheManager

__all__ = [
    "CacheInvalidationHub",
    "GenerationalMemoryCache",
    "ICacheManager",
    "IGenerationalCache",
    "InMemoryCacheManager",
    "InvalidationReport",
    "InvalidationTarget",
]
