"""Time-to-live cache with an explicit stale-read path.

``get`` only ever returns data younger than the TTL. Expired entries stay in
the backend until overwritten or invalidated so that :meth:`TTLCache.peek`
can hand them to the synchronizer when the network fails.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from atsync.cache.backends import CacheBackend, MemoryCacheBackend
from atsync.utils.exceptions import CacheKeyNotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 300.0

Clock = Callable[[], float]


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    key: str
    data: T
    written_at: float

    def age(self, now: float) -> float:
        return now - self.written_at


@dataclass(frozen=True, slots=True)
class CacheStats:
    hits: int
    misses: int
    stale_reads: int
    entries: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class TTLCache(Generic[T]):
    """Key/value cache whose entries are valid for ``ttl`` seconds after writing."""

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        *,
        backend: CacheBackend | None = None,
        clock: Clock = time.time,
    ) -> None:
        if ttl <= 0:
            msg = f"ttl must be positive, got {ttl}"
            raise ValueError(msg)
        self.ttl = ttl
        self._backend: CacheBackend = backend if backend is not None else MemoryCacheBackend()
        self._clock = clock
        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._stale_reads = 0

    def is_valid(self, entry: CacheEntry[Any]) -> bool:
        """Return ``True`` iff ``entry`` was written less than ``ttl`` seconds ago."""
        return self._clock() - entry.written_at < self.ttl

    def get(self, key: str) -> T | None:
        """Return cached data for ``key`` when present and still valid."""
        entry = self._read(key)
        if entry is not None and self.is_valid(entry):
            self._count(hit=True)
            logger.debug("Cache hit: %s", key)
            return entry.data
        self._count(hit=False)
        logger.debug("Cache miss: %s%s", key, " (expired)" if entry is not None else "")
        return None

    def set(self, key: str, data: T) -> CacheEntry[T]:
        entry = CacheEntry(key=key, data=data, written_at=self._clock())
        self._backend.set(key, entry)
        return entry

    def peek(self, key: str) -> CacheEntry[T] | None:
        """Return the stored entry regardless of age. This is the stale path."""
        entry = self._read(key)
        if entry is not None and not self.is_valid(entry):
            with self._stats_lock:
                self._stale_reads += 1
        return entry

    def invalidate(self, key: str) -> None:
        self._backend.delete(key)

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key starting with ``prefix`` and return how many were removed."""
        removed = 0
        for key in self._backend.keys():
            if key.startswith(prefix):
                self._backend.delete(key)
                removed += 1
        if removed:
            logger.debug("Invalidated %d cache entries with prefix %s", removed, prefix)
        return removed

    def clear(self) -> None:
        self._backend.clear()

    def stats(self) -> CacheStats:
        with self._stats_lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                stale_reads=self._stale_reads,
                entries=len(self._backend),
            )

    def __contains__(self, key: object) -> bool:
        return key in self._backend

    def __len__(self) -> int:
        return len(self._backend)

    def _read(self, key: str) -> CacheEntry[T] | None:
        try:
            entry = self._backend.get(key)
        except CacheKeyNotFoundError:
            return None
        if not isinstance(entry, CacheEntry):
            logger.warning("Dropping malformed cache entry for %s", key)
            self._backend.delete(key)
            return None
        return entry

    def _count(self, *, hit: bool) -> None:
        with self._stats_lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1


def cache_key(*parts: object) -> str:
    """Join key parts with ``:`` (``cache_key("records", did, coll, 10)``)."""
    return ":".join(str(part) for part in parts)


__all__ = ["DEFAULT_TTL_SECONDS", "CacheEntry", "CacheStats", "TTLCache", "cache_key"]
