from datetime import UTC, datetime, timedelta, timezone

from atsync.sync import TimestampGuard, compute_repository_stats, local_midnight
from tests.helpers.fakes import NOW


def test_local_midnight():
    assert local_midnight(NOW, UTC) == datetime(2026, 3, 10, tzinfo=UTC)
    eastern = timezone(timedelta(hours=-5))
    assert local_midnight(NOW, eastern) == datetime(2026, 3, 10, tzinfo=eastern)
    late = datetime(2026, 3, 10, 2, 0, tzinfo=UTC)
    assert local_midnight(late, eastern) == datetime(2026, 3, 9, tzinfo=eastern)


def test_compute_repository_stats(clock, make_record):
    records = {
        "app.bsky.feed.post": [
            make_record(rkey="a", age=timedelta(hours=1)),
            make_record(rkey="b", age=timedelta(hours=20)),
            make_record(rkey="c", age=timedelta(days=10)),
            make_record(rkey="d", age=None),
        ],
        "app.bsky.feed.like": [],
    }

    stats = compute_repository_stats(records, guard=TimestampGuard(clock=clock), now=NOW, tz=UTC)

    assert stats.total_records == 3
    assert stats.records_today == 1
    assert stats.records_this_week == 2
    assert stats.active_collections == 1
    assert dict(stats.collection_counts) == {"app.bsky.feed.post": 4, "app.bsky.feed.like": 0}
    assert stats.last_updated == NOW


def test_empty_repository(clock):
    stats = compute_repository_stats({}, guard=TimestampGuard(clock=clock), now=NOW, tz=UTC)
    assert (stats.total_records, stats.records_today, stats.active_collections) == (0, 0, 0)
