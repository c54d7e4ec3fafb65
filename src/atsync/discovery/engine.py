"""Collection and record-shape discovery for unknown repositories.

Two ways of finding collections:

- **repository** mode asks the repository itself via ``describeRepo``.
- **probe** mode tests a priority-ordered candidate list with small
  ``listRecords`` calls in concurrent batches.

``auto`` (the default) prefers describeRepo and falls back to probing when the
service does not support it or cannot be reached.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from atsync.client.xrpc import RepositoryApi
from atsync.config.collections import CollectionCatalog
from atsync.config.settings import DiscoverySettings
from atsync.data_primitives.records import CollectionDescriptor, ShapeDescriptor
from atsync.discovery.sketch import infer_service, sketch_properties
from atsync.exceptions import AuthenticationError, DiscoveryError, XrpcError
from atsync.registry.builtin import discovered_capability
from atsync.registry.registry import ShapeRegistry

logger = logging.getLogger(__name__)

UNKNOWN_SHAPE = "unknown"
UNSUPPORTED_STATUSES = frozenset({404, 501})
UNSUPPORTED_ERRORS = frozenset({"MethodNotImplemented", "MethodNotSupported"})

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class RepositoryAnalysis:
    """Full picture of a repository: collections, shapes and per-shape counts."""

    did: str
    collections: list[CollectionDescriptor]
    shapes: list[ShapeDescriptor]
    total_records: int
    shape_counts: dict[str, int] = field(default_factory=dict, hash=False)
    mode: str = "repository"


@dataclass(slots=True)
class _Sample:
    collection: str
    records: list[dict[str, Any]]
    failed: bool = False


def _is_unsupported(error: XrpcError) -> bool:
    return error.status in UNSUPPORTED_STATUSES or (error.error or "") in UNSUPPORTED_ERRORS


class DiscoveryEngine:
    """Learns which collections a repository holds and which shapes they contain."""

    def __init__(
        self,
        client: RepositoryApi,
        settings: DiscoverySettings | None = None,
        *,
        catalog: CollectionCatalog | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.client = client
        self.settings = settings or DiscoverySettings()
        self.catalog = catalog or CollectionCatalog()
        if self.settings.extra_candidates:
            self.catalog.add_names(self.settings.extra_candidates)
        self._sleep = sleep
        self.last_mode: str | None = None

    async def discover_collections(self, repository_id: str) -> list[CollectionDescriptor]:
        """Return descriptors for every collection found, sorted by name."""
        descriptors, _ = await self._discover(repository_id)
        return descriptors

    async def _discover(self, repository_id: str) -> tuple[list[CollectionDescriptor], dict[str, list[dict[str, Any]]]]:
        names = await self._reported_collections(repository_id)
        if names is not None:
            self.last_mode = "repository"
            logger.info("describeRepo reported %d collections for %s", len(names), repository_id)
            samples = await self._sample_many(repository_id, names, keep_empty=True)
        else:
            self.last_mode = "probe"
            candidates = self.catalog.names()
            logger.info("Probing %d candidate collections for %s", len(candidates), repository_id)
            samples = await self._sample_many(repository_id, candidates, keep_empty=False)

        descriptors = [self._describe(sample) for sample in samples]
        descriptors.sort(key=lambda d: d.name)
        logger.info(
            "Discovered %d collections for %s (%s mode)",
            len(descriptors),
            repository_id,
            self.last_mode,
        )
        return descriptors, {sample.collection: sample.records for sample in samples}

    async def _reported_collections(self, repository_id: str) -> list[str] | None:
        """Collections from describeRepo, or ``None`` when probing should be used instead."""
        mode = self.settings.mode
        if mode == "probe":
            return None
        try:
            data = await self.client.describe_repo(repository_id)
        except AuthenticationError:
            raise
        except XrpcError as e:
            if mode == "repository":
                raise
            if _is_unsupported(e):
                logger.info("describeRepo unsupported for %s (%s); falling back to probing", repository_id, e)
            else:
                logger.warning("describeRepo failed for %s (%s); falling back to probing", repository_id, e)
            return None
        except httpx.HTTPError as e:
            if mode == "repository":
                raise
            logger.warning("describeRepo unreachable for %s (%s); falling back to probing", repository_id, e)
            return None

        collections = data.get("collections")
        if not isinstance(collections, list):
            if mode == "repository":
                return []
            logger.warning("describeRepo for %s returned no collection list; falling back to probing", repository_id)
            return None
        return sorted({name for name in collections if isinstance(name, str) and name})

    async def _sample_many(self, repository_id: str, names: Sequence[str], *, keep_empty: bool) -> list[_Sample]:
        """Sample every name in batches.

        Raises:
            DiscoveryError: If every request failed with a transient error.

        """
        batch_size = self.settings.batch_size
        samples: list[_Sample] = []
        failed = 0
        for start in range(0, len(names), batch_size):
            if start and self.settings.batch_delay > 0:
                await self._sleep(self.settings.batch_delay)
            batch = names[start : start + batch_size]
            results = await asyncio.gather(*(self._sample(repository_id, name) for name in batch))
            for sample in results:
                if sample is None:
                    continue
                if sample.failed:
                    failed += 1
                elif sample.records or keep_empty:
                    samples.append(sample)
        if names and failed == len(names):
            raise DiscoveryError(repository_id, failed)
        return samples

    async def _sample(self, repository_id: str, collection: str) -> _Sample | None:
        """Fetch a small sample of ``collection``.

        A client error means "absent"; a transport or server failure is marked
        ``failed`` so a full outage can be told apart from an empty repository.
        """
        try:
            page = await self.client.list_records(repository_id, collection, limit=self.settings.sample_size)
        except AuthenticationError:
            raise
        except XrpcError as e:
            if e.is_transient:
                logger.debug("Probe of %s in %s failed: %s", collection, repository_id, e)
                return _Sample(collection=collection, records=[], failed=True)
            logger.debug("Collection %s not available in %s: %s", collection, repository_id, e)
            return None
        except httpx.HTTPError as e:
            logger.debug("Probe of %s in %s failed: %s", collection, repository_id, e)
            return _Sample(collection=collection, records=[], failed=True)
        return _Sample(collection=collection, records=page.records[: self.settings.sample_size])

    def _describe(self, sample: _Sample) -> CollectionDescriptor:
        grouped: dict[str, list[dict[str, Any]]] = {}
        for item in sample.records:
            value = item.get("value")
            shape = value.get("$type") if isinstance(value, dict) else None
            grouped.setdefault(shape if isinstance(shape, str) and shape else UNKNOWN_SHAPE, []).append(item)

        shapes = tuple(
            ShapeDescriptor(
                shape_id=shape_id,
                collection=sample.collection,
                properties=sketch_properties(items[0].get("value") or {}, max_depth=self.settings.max_depth),
                sample_count=len(items),
                sample_uri=items[0].get("uri"),
                service=infer_service(shape_id, sample.collection),
            )
            for shape_id, items in sorted(grouped.items())
            if shape_id != UNKNOWN_SHAPE
        )
        return CollectionDescriptor(
            name=sample.collection,
            record_count=len(sample.records),
            sample_shapes=frozenset(shape.shape_id for shape in shapes),
            shapes=shapes,
            service=infer_service("", sample.collection),
        )

    async def analyze_repository(self, identifier: str) -> RepositoryAnalysis:
        """Resolve ``identifier`` and summarise its collections and shapes.

        Raises:
            HandleResolutionError: If a handle cannot be resolved.

        """
        did = await self.client.resolve_handle(identifier)
        descriptors, samples = await self._discover(did)
        shape_counts: dict[str, int] = {}
        total = 0
        for records in samples.values():
            total += len(records)
            for item in records:
                value = item.get("value")
                shape = value.get("$type") if isinstance(value, dict) else None
                key = shape if isinstance(shape, str) and shape else UNKNOWN_SHAPE
                shape_counts[key] = shape_counts.get(key, 0) + 1
        shapes = [shape for descriptor in descriptors for shape in descriptor.shapes]
        return RepositoryAnalysis(
            did=did,
            collections=descriptors,
            shapes=shapes,
            total_records=total,
            shape_counts=shape_counts,
            mode=self.last_mode or "repository",
        )


def seed_registry(registry: ShapeRegistry, descriptors: Iterable[CollectionDescriptor]) -> list[str]:
    """Register a generic capability for every discovered shape without an exact entry.

    Returns the shape ids that were added.
    """
    added: list[str] = []
    for descriptor in descriptors:
        for shape in descriptor.shapes:
            if shape.shape_id in registry:
                continue
            registry.register(shape.shape_id, discovered_capability(shape.shape_id, service=shape.service))
            added.append(shape.shape_id)
    if added:
        logger.info("Registered %d discovered shapes: %s", len(added), ", ".join(added))
    return added


__all__ = ["DiscoveryEngine", "RepositoryAnalysis", "seed_registry"]
