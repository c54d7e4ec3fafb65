"""Jetstream client: one connection, decoded commit events pushed to a handler."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any

from websockets.exceptions import WebSocketException

from atsync.config.settings import StreamSettings
from atsync.data_primitives.records import StreamEvent
from atsync.exceptions import StreamError
from atsync.streaming.events import options_update, parse_message, subscribe_url
from atsync.streaming.transport import Connector, StreamTransport, websocket_connector

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (OSError, TimeoutError, WebSocketException)

EventHandler = Callable[[StreamEvent], Any]


class StreamState(str, Enum):
    STOPPED = "stopped"
    CONNECTING = "connecting"
    STREAMING = "streaming"


def _notify(hook: Callable[..., Any] | None, *args: Any) -> None:
    if hook is None:
        return
    try:
        hook(*args)
    except Exception:
        logger.exception("Stream hook %r failed", hook)


class JetstreamClient:
    """Consumes a Jetstream subscription in a background task.

    There is no automatic reconnect: when the transport closes or fails the
    client returns to ``STOPPED``, fires ``on_disconnect`` (and ``on_error``
    for failures) and leaves restarting to the caller, who may resume from
    :attr:`cursor`.
    """

    def __init__(
        self,
        settings: StreamSettings | None = None,
        *,
        on_event: EventHandler | None = None,
        connector: Connector = websocket_connector,
        extra_dids: Iterable[str] = (),
    ) -> None:
        self.settings = settings or StreamSettings()
        self.on_event = on_event
        self.on_connect: Callable[[], Any] | None = None
        self.on_disconnect: Callable[[], Any] | None = None
        self.on_error: Callable[[BaseException], Any] | None = None
        self.cursor: int | None = self.settings.cursor
        self.state = StreamState.STOPPED
        self._connector = connector
        self._wanted_dids = list(dict.fromkeys([*self.settings.wanted_dids, *extra_dids]))
        self._transport: StreamTransport | None = None
        self._consumer: asyncio.Task[None] | None = None

    @property
    def wanted_collections(self) -> list[str]:
        return list(self.settings.wanted_collections)

    @property
    def wanted_dids(self) -> list[str]:
        return list(self._wanted_dids)

    @property
    def is_streaming(self) -> bool:
        return self.state is StreamState.STREAMING

    async def start(self) -> None:
        """Connect, subscribe and start consuming.

        Raises:
            StreamError: If the connection or the subscribe request fails.

        """
        if self.state is not StreamState.STOPPED:
            logger.debug("Stream already %s", self.state.value)
            return
        self.state = StreamState.CONNECTING
        url = subscribe_url(self.settings.endpoint, self.cursor)
        logger.info("Connecting to %s", url)
        try:
            transport = await self._connector(url)
        except TRANSPORT_ERRORS as e:
            self.state = StreamState.STOPPED
            msg = f"could not connect to {self.settings.endpoint}: {e}"
            raise StreamError(msg) from e

        if self.state is not StreamState.CONNECTING:
            # stop() ran while we were connecting
            await transport.close()
            return

        try:
            await transport.send(options_update(self.wanted_collections, self._wanted_dids))
        except TRANSPORT_ERRORS as e:
            self.state = StreamState.STOPPED
            await transport.close()
            msg = f"subscribe request to {self.settings.endpoint} failed: {e}"
            raise StreamError(msg) from e

        self._transport = transport
        self.state = StreamState.STREAMING
        self._consumer = asyncio.create_task(self._consume(transport), name="jetstream-consumer")
        logger.info(
            "Streaming %d collection(s) for %s",
            len(self.settings.wanted_collections),
            ", ".join(self._wanted_dids) or "all repositories",
        )
        _notify(self.on_connect)

    async def stop(self) -> None:
        """Close the transport and cancel the consumer. No events are dispatched afterwards."""
        transport, self._transport = self._transport, None
        consumer, self._consumer = self._consumer, None
        was_running = self.state is not StreamState.STOPPED
        self.state = StreamState.STOPPED
        if consumer is not None and not consumer.done():
            consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await consumer
        if transport is not None:
            await transport.close()
        if was_running:
            logger.info("Stream stopped (cursor=%s)", self.cursor)
            _notify(self.on_disconnect)

    async def _consume(self, transport: StreamTransport) -> None:
        try:
            async for message in transport:
                if self._transport is not transport:
                    break
                self._handle(message)
        except TRANSPORT_ERRORS as e:
            if self._transport is transport:
                logger.warning("Stream transport failed: %s", e)
                _notify(self.on_error, e)
        finally:
            if self._transport is transport:
                self._transport = None
                self._consumer = None
                self.state = StreamState.STOPPED
                logger.info("Stream disconnected (cursor=%s)", self.cursor)
                _notify(self.on_disconnect)

    def _handle(self, message: str | bytes) -> None:
        try:
            event = parse_message(message)
        except StreamError as e:
            logger.warning("Skipping malformed stream message: %s", e)
            return
        if event is None:
            return
        if event.received_at_micros:
            self.cursor = event.received_at_micros
        logger.debug("Commit %s %s", event.operation.value, event.uri)
        _notify(self.on_event, event)


__all__ = ["EventHandler", "JetstreamClient", "StreamState"]
