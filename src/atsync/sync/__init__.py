"""Synchronizers: live network, offline snapshot, and the fallback chain between them."""

from atsync.sync.fallback import get_data_with_fallback
from atsync.sync.network import NetworkSynchronizer
from atsync.sync.protocol import ActivityData, DataSource, Synchronizer
from atsync.sync.snapshot import SnapshotReader, SnapshotSynchronizer
from atsync.sync.stats import compute_repository_stats, local_midnight
from atsync.sync.timestamps import TimestampGuard

__all__ = [
    "ActivityData",
    "DataSource",
    "NetworkSynchronizer",
    "SnapshotReader",
    "SnapshotSynchronizer",
    "Synchronizer",
    "TimestampGuard",
    "compute_repository_stats",
    "get_data_with_fallback",
    "local_midnight",
]
