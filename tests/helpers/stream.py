"""In-memory stream transport for the Jetstream client tests."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from typing import Any

_CLOSED = object()


class FakeTransport:
    """Queue-backed transport; frames are pushed by the test."""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False
        self.fail_send: Exception | None = None
        self._queue: asyncio.Queue[Any] = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.fail_send is not None:
            raise self.fail_send
        self.sent.append(message)

    async def close(self) -> None:
        self.closed = True
        self._queue.put_nowait(_CLOSED)

    def push(self, frame: str | bytes | dict[str, Any]) -> None:
        self._queue.put_nowait(json.dumps(frame) if isinstance(frame, dict) else frame)

    def fail(self, error: Exception) -> None:
        self._queue.put_nowait(error)

    def end(self) -> None:
        self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[str | bytes]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            if isinstance(item, Exception):
                raise item
            yield item


class FakeConnector:
    """Hands out a fresh :class:`FakeTransport` per connection and remembers the URLs."""

    def __init__(self) -> None:
        self.urls: list[str] = []
        self.transports: list[FakeTransport] = []
        self.fail: Exception | None = None

    async def __call__(self, url: str) -> FakeTransport:
        self.urls.append(url)
        if self.fail is not None:
            raise self.fail
        transport = FakeTransport()
        self.transports.append(transport)
        return transport

    @property
    def current(self) -> FakeTransport:
        return self.transports[-1]


def commit(
    operation: str = "create",
    collection: str = "app.bsky.feed.post",
    *,
    did: str = "did:plc:alice123456789",
    rkey: str = "3kabc",
    time_us: int = 1_725_911_162_329_308,
    **record: Any,
) -> dict[str, Any]:
    """A Jetstream commit message."""
    body: dict[str, Any] = {"rev": "3l3qo2vutsw2b", "operation": operation, "collection": collection, "rkey": rkey}
    if operation != "delete":
        body["record"] = {"$type": collection, "createdAt": "2026-03-10T11:00:00.000Z", **record}
        body["cid"] = "bafyreidwaivazkwu67xztlmuobx35hs2lnfh3kolmgfmucldvhd3sgzcqi"
    return {"did": did, "time_us": time_us, "kind": "commit", "commit": body}


async def wait_until(predicate: Callable[[], bool], *, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    msg = "condition not reached"
    raise AssertionError(msg)
