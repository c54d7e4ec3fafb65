"""One stream connection shared by many consumers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

from atsync.config.settings import StreamSettings
from atsync.streaming.bus import Callback, SubscriptionBus, Unsubscribe
from atsync.streaming.client import JetstreamClient, StreamState
from atsync.streaming.transport import Connector, websocket_connector

logger = logging.getLogger(__name__)


class SharedStream:
    """Reference-counted access to a :class:`JetstreamClient`.

    The first :meth:`start_shared_stream` opens the connection and the last
    matching :meth:`stop_shared_stream` closes it. If the connection dropped
    in between, the next start reopens it without changing the count.
    """

    def __init__(self, client: JetstreamClient, bus: SubscriptionBus) -> None:
        self.client = client
        self.bus = bus
        self._count = 0
        self._lock = asyncio.Lock()

    @classmethod
    def build(
        cls,
        settings: StreamSettings | None = None,
        *,
        connector: Connector = websocket_connector,
        extra_dids: Iterable[str] = (),
    ) -> SharedStream:
        bus = SubscriptionBus()
        client = JetstreamClient(settings, on_event=bus.dispatch, connector=connector, extra_dids=extra_dids)
        return cls(client, bus)

    @property
    def connection_count(self) -> int:
        return self._count

    async def start_shared_stream(self) -> None:
        async with self._lock:
            if self.client.state is StreamState.STOPPED:
                await self.client.start()
            self._count += 1
            logger.debug("Shared stream consumers: %d", self._count)

    async def stop_shared_stream(self) -> None:
        async with self._lock:
            if self._count == 0:
                logger.debug("stop_shared_stream called with no active consumers")
                return
            self._count -= 1
            logger.debug("Shared stream consumers: %d", self._count)
            if self._count == 0:
                await self.client.stop()

    @asynccontextmanager
    async def consumer(self) -> AsyncIterator[SharedStream]:
        """``async with shared.consumer():`` holds one reference for the block."""
        await self.start_shared_stream()
        try:
            yield self
        finally:
            await self.stop_shared_stream()

    def subscribe(self, filter_key: str, callback: Callback) -> Unsubscribe:
        return self.bus.subscribe(filter_key, callback)

    async def aclose(self) -> None:
        async with self._lock:
            self._count = 0
            await self.client.stop()
        await self.bus.drain()


__all__ = ["SharedStream"]
