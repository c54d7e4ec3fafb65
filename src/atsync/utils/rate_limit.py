"""Request limiter bounding concurrency and request spacing for XRPC calls."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


class AsyncRateLimiter:
    """An asyncio-native limiter that enforces max concurrency and requests per second.

    One instance is owned by each :class:`~atsync.client.xrpc.XrpcClient`; there
    is no process-wide singleton.
    """

    def __init__(self, requests_per_second: float | None, max_concurrency: int) -> None:
        if max_concurrency < 1:
            msg = f"max_concurrency must be >= 1, got {max_concurrency}"
            raise ValueError(msg)
        self.requests_per_second = requests_per_second
        self.max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(self.max_concurrency)
        self._last_request_time = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Acquire permission to make a request. Suspends if limits are reached."""
        await self._semaphore.acquire()

        try:
            if not self.requests_per_second:
                return

            interval = 1.0 / self.requests_per_second

            async with self._lock:
                now = time.monotonic()
                time_since_last = now - self._last_request_time

                if time_since_last < interval:
                    sleep_time = interval - time_since_last
                    self._last_request_time = now + sleep_time
                else:
                    sleep_time = 0.0
                    self._last_request_time = now

            if sleep_time > 0:
                await asyncio.sleep(sleep_time)

        except BaseException:
            # Cancelled or failed while waiting: give the slot back.
            self._semaphore.release()
            raise

    def release(self) -> None:
        """Release concurrency slot."""
        self._semaphore.release()

    @asynccontextmanager
    async def throttle(self) -> AsyncIterator[None]:
        """Context manager for rate limiting."""
        await self.acquire()
        try:
            yield
        finally:
            self.release()


__all__ = ["AsyncRateLimiter"]
