"""Layered lookup: fresh snapshot, then the network, then a stale snapshot."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

from atsync.sync.protocol import ActivityData, DataSource, Synchronizer
from atsync.sync.snapshot import SnapshotReader, SnapshotSynchronizer

logger = logging.getLogger(__name__)


async def get_data_with_fallback(
    snapshot: SnapshotReader,
    network: Synchronizer,
    repository_id: str,
    **options: Any,
) -> ActivityData:
    """Return activity data for ``repository_id`` from the best available source.

    A fresh snapshot wins (source ``cache``). Otherwise the network
    synchronizer is asked; a non-empty answer is returned as-is. When the
    network has nothing, whatever the stale snapshot holds is returned with
    source ``stale-cache``. ``options`` are passed to ``get_activity_data``.

    Raises:
        AuthenticationError: Propagated from the network synchronizer.

    """
    offline = SnapshotSynchronizer(snapshot)
    stale = snapshot.is_stale()
    if not stale:
        data = await offline.get_activity_data(repository_id, **options)
        if not data.is_empty:
            return dataclasses.replace(data, source=DataSource.CACHE)

    data = await network.get_activity_data(repository_id, **options)
    if not data.is_empty:
        return data

    logger.warning("No live data for %s, falling back to snapshot in %s", repository_id, snapshot.directory)
    data = await offline.get_activity_data(repository_id, **options)
    if data.is_empty:
        return ActivityData.empty()
    return dataclasses.replace(data, source=DataSource.STALE_CACHE)


__all__ = ["get_data_with_fallback"]
