"""Stream transports.

The client only needs something it can ``send`` to, iterate over and
``close``. A ``websockets`` client connection satisfies that directly;
tests substitute an in-memory transport.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Protocol

from websockets.asyncio.client import connect

DEFAULT_OPEN_TIMEOUT = 10.0
DEFAULT_MAX_MESSAGE_SIZE = 2**22


class StreamTransport(Protocol):
    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


Connector = Callable[[str], Awaitable[StreamTransport]]


async def websocket_connector(url: str) -> StreamTransport:
    """Open a websocket to ``url``.

    Iteration over the returned connection ends on a clean close and raises
    ``websockets.exceptions.ConnectionClosedError`` on an abnormal one.
    """
    return await connect(url, open_timeout=DEFAULT_OPEN_TIMEOUT, max_size=DEFAULT_MAX_MESSAGE_SIZE)


__all__ = ["Connector", "StreamTransport", "websocket_connector"]
