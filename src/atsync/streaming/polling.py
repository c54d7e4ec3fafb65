"""Polling fallback for collections the Jetstream firehose does not deliver.

:class:`RepositoryPoller` discovers a repository's collections once, then
periodically lists the newest records of each and reports every record newer
than the last CID it saw for that collection.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from atsync.client.xrpc import RepositoryApi
from atsync.config.settings import StreamSettings
from atsync.data_primitives.records import RecordEnvelope
from atsync.discovery.engine import DiscoveryEngine
from atsync.exceptions import AtsyncError, AuthenticationError, InvalidAtUriError
from atsync.registry.builtin import POST, PROFILE
from atsync.streaming.client import StreamState, _notify

logger = logging.getLogger(__name__)

FALLBACK_COLLECTIONS = (POST, PROFILE)
POLL_ERRORS = (AtsyncError, httpx.HTTPError)

RecordHandler = Callable[[RecordEnvelope], Any]
Sleep = Callable[[float], Awaitable[Any]]


class RepositoryPoller:
    """Polls one repository's collections in a background task.

    The first pass reports the newest ``poll_limit`` records of every
    collection; later passes only report records added since. Records are
    reported oldest first through ``on_record``.
    """

    def __init__(
        self,
        client: RepositoryApi,
        discovery: DiscoveryEngine,
        repository_id: str,
        settings: StreamSettings | None = None,
        *,
        on_record: RecordHandler | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.client = client
        self.discovery = discovery
        self.repository_id = repository_id
        self.settings = settings or StreamSettings()
        self.on_record = on_record
        self.on_collection_discovered: Callable[[str], Any] | None = None
        self.on_connect: Callable[[], Any] | None = None
        self.on_disconnect: Callable[[], Any] | None = None
        self.on_error: Callable[[BaseException], Any] | None = None
        self.state = StreamState.STOPPED
        self.did: str | None = repository_id if repository_id.startswith("did:") else None
        self._collections: list[str] = []
        self._last_seen: dict[str, str] = {}
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None

    @property
    def collections(self) -> list[str]:
        return list(self._collections)

    @property
    def is_streaming(self) -> bool:
        return self.state is StreamState.STREAMING

    async def start(self) -> None:
        """Resolve the repository, discover its collections and start polling.

        Raises:
            HandleResolutionError: If the handle cannot be resolved.
            AuthenticationError: If discovery is rejected for lack of a session.

        """
        if self.state is not StreamState.STOPPED:
            logger.debug("Poller already %s", self.state.value)
            return
        self.state = StreamState.CONNECTING
        try:
            if self.did is None:
                self.did = await self.client.resolve_handle(self.repository_id)
            self._collections = await self._discover(self.did)
        except BaseException:
            self.state = StreamState.STOPPED
            raise

        for collection in self._collections:
            _notify(self.on_collection_discovered, collection)
        self.state = StreamState.STREAMING
        self._task = asyncio.create_task(self._run(), name="repository-poller")
        logger.info(
            "Polling %d collection(s) of %s every %.1fs",
            len(self._collections),
            self.did,
            self.settings.poll_interval,
        )
        _notify(self.on_connect)

    async def stop(self) -> None:
        """Cancel the polling task. No records are reported afterwards."""
        task, self._task = self._task, None
        was_running = self.state is not StreamState.STOPPED
        self.state = StreamState.STOPPED
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if was_running:
            logger.info("Poller stopped for %s", self.did)
            _notify(self.on_disconnect)

    async def poll_once(self) -> list[RecordEnvelope]:
        """Poll every collection once and return the new records, oldest first per collection.

        A failing collection is logged and skipped.

        Raises:
            AuthenticationError: If the repository rejects the request.

        """
        found: list[RecordEnvelope] = []
        for collection in self._collections:
            try:
                found.extend(await self._poll_collection(collection))
            except AuthenticationError:
                raise
            except POLL_ERRORS as e:
                logger.warning("Polling %s failed: %s", collection, e)
                _notify(self.on_error, e)
        return found

    async def _discover(self, did: str) -> list[str]:
        try:
            descriptors = await self.discovery.discover_collections(did)
        except AuthenticationError:
            raise
        except POLL_ERRORS as e:
            logger.warning(
                "Collection discovery failed for %s (%s); polling %s", did, e, ", ".join(FALLBACK_COLLECTIONS)
            )
            return list(FALLBACK_COLLECTIONS)
        return [descriptor.name for descriptor in descriptors]

    async def _poll_collection(self, collection: str) -> list[RecordEnvelope]:
        if self.did is None:
            return []
        page = await self.client.list_records(self.did, collection, limit=self.settings.poll_limit)
        if not page.records:
            return []
        last_seen = self._last_seen.get(collection)
        fresh = []
        for item in page.records:
            if last_seen is not None and item.get("cid") == last_seen:
                break
            fresh.append(item)
        newest = page.records[0].get("cid")
        if newest:
            self._last_seen[collection] = str(newest)

        records = []
        for item in reversed(fresh):
            try:
                record = RecordEnvelope.from_xrpc(item)
            except InvalidAtUriError as e:
                logger.debug("Skipping polled record with malformed URI: %s", e)
                continue
            logger.debug("New %s record %s", collection, record.uri)
            _notify(self.on_record, record)
            records.append(record)
        return records

    async def _run(self) -> None:
        try:
            while self.state is StreamState.STREAMING:
                await self._sleep(self.settings.poll_interval)
                await self.poll_once()
        except AuthenticationError as e:
            logger.error("Polling %s stopped: %s", self.did, e)
            _notify(self.on_error, e)
            self._task = None
            self.state = StreamState.STOPPED
            _notify(self.on_disconnect)


__all__ = ["FALLBACK_COLLECTIONS", "RecordHandler", "RepositoryPoller"]
