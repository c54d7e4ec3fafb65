"""Filtered fan-out of stream events to subscriber callbacks.

Filter keys are plain strings:

- ``"$type:<shape>"``: record ``$type`` equals ``<shape>``
- ``"collection:<nsid>"``: event collection equals ``<nsid>``
- ``"operation:<op>"``: ``create``, ``update`` or ``delete``
- anything else: exact match against the record ``$type``

Delete events carry no record, so only collection and operation filters
match them.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections.abc import Callable
from typing import Any

from atsync.data_primitives.records import Operation, StreamEvent

logger = logging.getLogger(__name__)

TYPE_PREFIX = "$type:"
COLLECTION_PREFIX = "collection:"
OPERATION_PREFIX = "operation:"

POST_FILTER = f"{TYPE_PREFIX}app.bsky.feed.post"
STATUS_UPDATE_FILTER = f"{TYPE_PREFIX}a.status.update"
GALLERY_FILTER = f"{COLLECTION_PREFIX}social.grain.gallery"

Callback = Callable[[StreamEvent], Any]
Unsubscribe = Callable[[], None]


def matches_filter(event: StreamEvent, filter_key: str) -> bool:
    if filter_key.startswith(COLLECTION_PREFIX):
        return event.collection == filter_key.removeprefix(COLLECTION_PREFIX)
    if filter_key.startswith(OPERATION_PREFIX):
        return event.operation.value == filter_key.removeprefix(OPERATION_PREFIX)
    if event.operation is Operation.DELETE or event.shape_id is None:
        return False
    if filter_key.startswith(TYPE_PREFIX):
        return event.shape_id == filter_key.removeprefix(TYPE_PREFIX)
    return event.shape_id == filter_key


class SubscriptionBus:
    """Maps filter keys to callbacks and dispatches matching events.

    A callback that raises is logged and skipped. A callback returning an
    awaitable has it scheduled as a task on the running loop; :meth:`drain`
    waits for those.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[Callback]] = {}
        self._lock = threading.Lock()
        self._tasks: set[asyncio.Task[Any]] = set()

    def subscribe(self, filter_key: str, callback: Callback) -> Unsubscribe:
        """Register ``callback`` for ``filter_key``; the returned function removes it."""
        with self._lock:
            callbacks = self._subscriptions.setdefault(filter_key, [])
            if callback not in callbacks:
                callbacks.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                registered = self._subscriptions.get(filter_key)
                if registered is None or callback not in registered:
                    return
                registered.remove(callback)
                if not registered:
                    del self._subscriptions[filter_key]

        return unsubscribe

    def subscribe_to_posts(self, callback: Callback) -> Unsubscribe:
        return self.subscribe(POST_FILTER, callback)

    def subscribe_to_status_updates(self, callback: Callback) -> Unsubscribe:
        return self.subscribe(STATUS_UPDATE_FILTER, callback)

    def subscribe_to_gallery_updates(self, callback: Callback) -> Unsubscribe:
        return self.subscribe(GALLERY_FILTER, callback)

    def filter_keys(self) -> list[str]:
        with self._lock:
            return list(self._subscriptions)

    def subscriber_count(self, filter_key: str | None = None) -> int:
        with self._lock:
            if filter_key is not None:
                return len(self._subscriptions.get(filter_key, ()))
            return sum(len(callbacks) for callbacks in self._subscriptions.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def dispatch(self, event: StreamEvent) -> int:
        """Deliver ``event`` to every matching callback. Returns how many were invoked."""
        with self._lock:
            snapshot = [(key, list(callbacks)) for key, callbacks in self._subscriptions.items()]

        delivered = 0
        for filter_key, callbacks in snapshot:
            if not matches_filter(event, filter_key):
                continue
            for callback in callbacks:
                delivered += 1
                try:
                    result = callback(event)
                except Exception:
                    logger.exception("Subscriber for %r failed on %s", filter_key, event.uri)
                    continue
                if inspect.isawaitable(result):
                    self._schedule(filter_key, result)
        return delivered

    def _schedule(self, filter_key: str, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def done(finished: asyncio.Task[Any]) -> None:
            self._tasks.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                logger.error("Async subscriber for %r failed: %s", filter_key, finished.exception())

        task.add_done_callback(done)

    async def drain(self) -> None:
        """Wait for scheduled coroutine callbacks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def clear(self) -> None:
        with self._lock:
            self._subscriptions.clear()


__all__ = [
    "COLLECTION_PREFIX",
    "GALLERY_FILTER",
    "OPERATION_PREFIX",
    "POST_FILTER",
    "STATUS_UPDATE_FILTER",
    "TYPE_PREFIX",
    "Callback",
    "SubscriptionBus",
    "Unsubscribe",
    "matches_filter",
]
