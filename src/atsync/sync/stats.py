"""Repository statistics computed from fully fetched collections."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta, tzinfo

from atsync.data_primitives.records import RecordEnvelope, RepositoryStats
from atsync.sync.timestamps import TimestampGuard

WEEK = timedelta(days=7)


def local_midnight(now: datetime, tz: tzinfo | None = None) -> datetime:
    """Start of ``now``'s day in ``tz`` (the system local zone when ``None``)."""
    local = now.astimezone(tz)
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


def compute_repository_stats(
    collection_records: Mapping[str, Sequence[RecordEnvelope]],
    *,
    guard: TimestampGuard,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> RepositoryStats:
    """Total, today and last-7-days counts over records with plausible timestamps.

    ``collection_counts`` counts every fetched record; a collection is active
    when that count is positive.
    """
    current = now or guard.now()
    counts = {name: len(records) for name, records in collection_records.items()}
    valid = [
        record
        for records in collection_records.values()
        for record in guard.filter(records, now=current)
    ]
    today = local_midnight(current, tz)
    week_ago = current - WEEK
    return RepositoryStats(
        total_records=len(valid),
        records_today=sum(1 for record in valid if record.indexed_at and record.indexed_at >= today),
        records_this_week=sum(1 for record in valid if record.indexed_at and record.indexed_at >= week_ago),
        active_collections=sum(1 for count in counts.values() if count > 0),
        collection_counts=counts,
        last_updated=current,
    )


__all__ = ["compute_repository_stats", "local_midnight"]
