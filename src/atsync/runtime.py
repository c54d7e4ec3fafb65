"""Composition root wiring settings, client, cache, registry, synchronizers and live updates."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import httpx

from atsync.cache.ttl import TTLCache
from atsync.client.xrpc import XrpcClient
from atsync.config.collections import CollectionCatalog
from atsync.config.settings import AtsyncSettings
from atsync.data_primitives.records import Operation, StreamEvent
from atsync.discovery.engine import DiscoveryEngine, RepositoryAnalysis, seed_registry
from atsync.registry.builtin import register_builtin_capabilities
from atsync.registry.registry import ShapeRegistry
from atsync.streaming.bus import OPERATION_PREFIX, Unsubscribe
from atsync.streaming.polling import RecordHandler, RepositoryPoller
from atsync.streaming.shared import SharedStream
from atsync.streaming.transport import Connector, websocket_connector
from atsync.sync.fallback import get_data_with_fallback
from atsync.sync.network import NetworkSynchronizer
from atsync.sync.protocol import ActivityData, Synchronizer
from atsync.sync.snapshot import SnapshotReader, SnapshotSynchronizer

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AtsyncRuntime:
    """Everything a consumer needs, built once from :class:`AtsyncSettings`.

    Use :meth:`create` rather than the constructor, and close it with
    :meth:`aclose` (or ``async with``).
    """

    settings: AtsyncSettings
    client: XrpcClient
    cache: TTLCache[Any]
    registry: ShapeRegistry
    discovery: DiscoveryEngine
    network: NetworkSynchronizer
    stream: SharedStream
    snapshot: SnapshotReader | None = None
    offline: bool = False
    _event_hooks: list[Unsubscribe] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        settings: AtsyncSettings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        connector: Connector = websocket_connector,
        load_plugins: bool = True,
        offline: bool = False,
    ) -> AtsyncRuntime:
        settings = settings or AtsyncSettings()
        client = XrpcClient(settings, http_client=http_client)
        cache: TTLCache[Any] = TTLCache(settings.cache.ttl_seconds)

        registry = ShapeRegistry()
        register_builtin_capabilities(registry)
        if load_plugins:
            registry.load_plugins()

        discovery = DiscoveryEngine(client, settings.discovery, catalog=CollectionCatalog())
        network = NetworkSynchronizer(client, cache, discovery, settings)

        snapshot = None
        if settings.snapshot.directory is not None:
            snapshot = SnapshotReader(
                settings.snapshot.directory,
                max_age=timedelta(seconds=settings.snapshot.max_age_seconds),
            )
        elif offline:
            msg = "offline mode needs snapshot.directory to be configured"
            raise ValueError(msg)

        repo_did = settings.repository.did
        stream = SharedStream.build(settings.stream, connector=connector, extra_dids=[repo_did] if repo_did else ())
        return cls(
            settings=settings,
            client=client,
            cache=cache,
            registry=registry,
            discovery=discovery,
            network=network,
            stream=stream,
            snapshot=snapshot,
            offline=offline,
        )

    async def __aenter__(self) -> AtsyncRuntime:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    @property
    def synchronizer(self) -> Synchronizer:
        if self.offline and self.snapshot is not None:
            return SnapshotSynchronizer(self.snapshot, guard=self.network.guard)
        return self.network

    def repository(self, repository_id: str | None = None) -> str:
        """``repository_id`` or the configured default.

        Raises:
            ValueError: If neither is available.

        """
        resolved = repository_id or self.settings.repository.default_repository
        if not resolved:
            msg = "no repository given and repository.handle / repository.did are not configured"
            raise ValueError(msg)
        return resolved

    async def discover(self, repository_id: str | None = None) -> RepositoryAnalysis:
        """Analyze the repository and register generic capabilities for new shapes."""
        analysis = await self.discovery.analyze_repository(self.repository(repository_id))
        seed_registry(self.registry, analysis.collections)
        return analysis

    async def get_activity_data(self, repository_id: str | None = None, **options: Any) -> ActivityData:
        """Activity data from the synchronizer, layered over the snapshot when one is configured."""
        repo = self.repository(repository_id)
        if self.snapshot is not None and not self.offline:
            return await get_data_with_fallback(self.snapshot, self.network, repo, **options)
        return await self.synchronizer.get_activity_data(repo, **options)

    def poller(self, repository_id: str | None = None, *, on_record: RecordHandler | None = None) -> RepositoryPoller:
        """A :class:`RepositoryPoller` for the repository, sharing this runtime's client and discovery engine."""
        return RepositoryPoller(
            self.client, self.discovery, self.repository(repository_id), self.settings.stream, on_record=on_record
        )

    def invalidate_on_events(self) -> Unsubscribe:
        """Drop cached entries for a repository/collection whenever a commit for it arrives."""

        def on_commit(event: StreamEvent) -> None:
            dropped = self.network.invalidate(event.repository_id, event.collection)
            if dropped:
                logger.debug("Invalidated %d cache entries after %s", dropped, event.uri)

        hooks = [self.stream.subscribe(f"{OPERATION_PREFIX}{op.value}", on_commit) for op in Operation]

        def unsubscribe() -> None:
            for hook in hooks:
                hook()

        self._event_hooks.append(unsubscribe)
        return unsubscribe

    async def aclose(self) -> None:
        for unsubscribe in self._event_hooks:
            unsubscribe()
        self._event_hooks.clear()
        await self.stream.aclose()
        await self.client.aclose()


__all__ = ["AtsyncRuntime"]
