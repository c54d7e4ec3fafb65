"""In-memory TTL caching for synchronizer results."""

from atsync.cache.backends import CacheBackend, MemoryCacheBackend
from atsync.cache.ttl import DEFAULT_TTL_SECONDS, CacheEntry, CacheStats, TTLCache, cache_key

__all__ = [
    "DEFAULT_TTL_SECONDS",
    "CacheBackend",
    "CacheEntry",
    "CacheStats",
    "MemoryCacheBackend",
    "TTLCache",
    "cache_key",
]
