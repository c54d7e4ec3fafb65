"""Low-level cache backend protocols and implementations."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from typing import Any, Protocol

from atsync.utils.exceptions import CacheKeyNotFoundError


class CacheBackend(Protocol):
    """Abstract protocol for cache backends."""

    def get(self, key: str) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...

    def clear(self) -> None: ...

    def close(self) -> None: ...

    def __contains__(self, key: object) -> bool: ...

    def __len__(self) -> int: ...


class MemoryCacheBackend:
    """Process-local dictionary backend guarded by a re-entrant lock.

    Reads and per-key writes are atomic with respect to each other. Nothing
    is ever evicted here; expiry is the caller's concern.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._data: dict[str, Any] = {}

    def get(self, key: str) -> Any:
        with self._lock:
            try:
                return self._data[key]
            except KeyError as e:
                raise CacheKeyNotFoundError(key) from e

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def close(self) -> None:
        self.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())


__all__ = ["CacheBackend", "MemoryCacheBackend"]
