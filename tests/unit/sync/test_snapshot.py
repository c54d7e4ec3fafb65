"""Tests for reading build-time snapshots and serving them offline."""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path

import pytest

from atsync.exceptions import InvalidAtUriError, SnapshotError
from atsync.sync import DataSource, SnapshotReader, SnapshotSynchronizer, TimestampGuard
from atsync.sync.snapshot import envelope_from_snapshot
from tests.helpers.fakes import DID, HANDLE, NOW, iso

POST = "app.bsky.feed.post"
BLOG = "com.whtwnd.blog.entry"


def _item(collection: str, rkey: str, age: timedelta, *, repo: str = DID, **fields):
    return {
        "uri": f"at://{repo}/{collection}/{rkey}",
        "cid": f"cid-{rkey}",
        "value": {"$type": collection, "createdAt": iso(NOW - age), **fields},
        "author": {"did": DID, "handle": HANDLE, "displayName": "Alice"},
    }


def _write(directory: Path, name: str, data) -> None:
    (directory / name).write_text(json.dumps(data), encoding="utf-8")


@pytest.fixture
def snapshot_dir(tmp_path: Path) -> Path:
    _write(tmp_path, "profile.json", {"did": DID, "handle": HANDLE, "displayName": "Alice", "postsCount": 3})
    _write(
        tmp_path,
        "activity.json",
        [
            _item(POST, "p1", timedelta(hours=1), text="first"),
            _item(POST, "p2", timedelta(days=2), text="second"),
            _item(POST, "old", timedelta(days=500), text="too old"),
            _item(POST, "other", timedelta(hours=3), repo="did:plc:someoneelse"),
            {"uri": "not-a-uri", "value": {}},
        ],
    )
    _write(
        tmp_path,
        "blog-posts.json",
        [
            {
                "uri": f"at://{DID}/{BLOG}/b1",
                "cid": "cid-b1",
                "author": {"did": DID, "handle": HANDLE},
                "record": {"title": "Hello", "content": "Body", "createdAt": iso(NOW - timedelta(days=4))},
            }
        ],
    )
    _write(
        tmp_path,
        "collections.json",
        [
            {"name": POST, "records": [_item(POST, "p1", timedelta(hours=1), text="first")]},
            {"name": "app.bsky.feed.like", "records": []},
        ],
    )
    _write(
        tmp_path,
        "repository-stats.json",
        {
            "totalRecords": 12,
            "recordsToday": 2,
            "recordsThisWeek": 5,
            "activeCollections": 3,
            "collectionCounts": {POST: 9},
        },
    )
    _write(
        tmp_path,
        "discovered-shapes.json",
        [
            {"$type": POST, "collection": POST, "service": "bsky.app", "properties": {"text": "string"}},
            {"collection": "broken"},
        ],
    )
    _write(
        tmp_path,
        "metadata.json",
        {"lastUpdated": iso(NOW - timedelta(minutes=10)), "dataCount": {"activities": 3, "blogPosts": 1}},
    )
    return tmp_path


@pytest.fixture
def reader(snapshot_dir: Path, clock) -> SnapshotReader:
    return SnapshotReader(snapshot_dir, clock=clock)


@pytest.fixture
def offline(reader: SnapshotReader, clock) -> SnapshotSynchronizer:
    return SnapshotSynchronizer(reader, guard=TimestampGuard(clock=clock))


class TestReader:
    def test_documents(self, reader):
        assert reader.profile() is not None
        assert reader.profile().posts_count == 3
        assert [r.record_key for r in reader.activity()] == ["p1", "p2", "old", "other"]
        assert set(reader.collections()) == {POST, "app.bsky.feed.like"}
        stats = reader.repository_stats()
        assert stats is not None
        assert (stats.total_records, stats.records_this_week) == (12, 5)
        assert [s.shape_id for s in reader.discovered_shapes()] == [POST]

    def test_metadata_and_staleness(self, reader):
        metadata = reader.metadata()
        assert dict(metadata.data_count) == {"activities": 3, "blogPosts": 1}
        assert metadata.total == 4
        assert reader.is_stale() is False
        assert reader.is_stale(max_age=timedelta(minutes=5)) is True

    @pytest.mark.parametrize(
        ("counts", "expected"),
        [
            ({"activities": 2, "collections": None, "flag": True, "profile": 1}, {"activities": 2, "profile": 1}),
            (4, {}),
        ],
    )
    def test_data_count_keeps_integer_entries(self, tmp_path, clock, counts, expected):
        _write(tmp_path, "metadata.json", {"lastUpdated": iso(NOW), "dataCount": counts})

        assert dict(SnapshotReader(tmp_path, clock=clock).metadata().data_count) == expected

    def test_missing_metadata_is_stale(self, tmp_path, clock):
        assert SnapshotReader(tmp_path, clock=clock).is_stale() is True

    def test_missing_documents_yield_empty_data(self, tmp_path):
        reader = SnapshotReader(tmp_path)

        assert reader.profile() is None
        assert reader.activity() == []
        assert reader.collections() == {}
        assert reader.repository_stats() is None

    def test_corrupt_document(self, tmp_path):
        (tmp_path / "activity.json").write_text("{not json", encoding="utf-8")
        reader = SnapshotReader(tmp_path)

        with pytest.raises(SnapshotError):
            reader.load("activity.json")
        assert reader.read("activity.json") is None
        assert reader.activity() == []

    def test_read_is_memoized_until_reload(self, reader, snapshot_dir):
        assert reader.profile().display_name == "Alice"
        _write(snapshot_dir, "profile.json", {"did": DID, "handle": HANDLE, "displayName": "Renamed"})

        assert reader.profile().display_name == "Alice"
        reader.reload()
        assert reader.profile().display_name == "Renamed"

    def test_collections_mapping_form(self, tmp_path):
        _write(tmp_path, "collections.json", {POST: [_item(POST, "p9", timedelta(hours=1))]})
        assert [r.record_key for r in SnapshotReader(tmp_path).collections()[POST]] == ["p9"]

    def test_all_records_are_deduplicated(self, reader):
        uris = [r.uri for r in reader.all_records()]
        assert len(uris) == len(set(uris))
        assert f"at://{DID}/{BLOG}/b1" in uris


def test_blog_post_documents_are_typed():
    record = envelope_from_snapshot(
        {"uri": f"at://{DID}/{BLOG}/b1", "cid": "c", "record": {"title": "Hello", "content": "Body"}}
    )

    assert record.shape_id == BLOG
    assert record.value["title"] == "Hello"


def test_snapshot_envelope_keeps_author_and_subject():
    record = envelope_from_snapshot(
        {
            "uri": f"at://{DID}/app.bsky.feed.like/l1",
            "cid": "c",
            "value": {"$type": "app.bsky.feed.like"},
            "indexedAt": iso(NOW),
            "author": {"did": DID, "handle": HANDLE},
            "resolvedSubject": {
                "uri": "at://did:plc:bob/app.bsky.feed.post/x",
                "text": "hi",
                "author": {"handle": "bob"},
            },
        }
    )

    assert record.indexed_at == NOW
    assert record.author is not None
    assert record.author.handle == HANDLE
    assert record.resolved_subject is not None
    assert record.resolved_subject.author.handle == "bob"


class TestSnapshotSynchronizer:
    @pytest.mark.asyncio
    async def test_recent_activity_filters_and_matches_owner(self, offline):
        by_did = await offline.get_recent_activity(DID)
        by_handle = await offline.get_recent_activity(HANDLE)

        assert [r.record_key for r in by_did] == ["p1", "p2"]
        assert by_handle == by_did

    @pytest.mark.asyncio
    async def test_other_repositories_match_exactly(self, offline):
        records = await offline.get_recent_activity("did:plc:someoneelse")
        assert [r.record_key for r in records] == ["other"]

    @pytest.mark.asyncio
    async def test_get_records(self, offline):
        records = await offline.get_records(DID, POST, limit=2)
        assert [r.record_key for r in records] == ["p1", "p2"]

    @pytest.mark.asyncio
    async def test_get_record(self, offline):
        assert (await offline.get_record(f"at://{DID}/{POST}/p2")).value["text"] == "second"
        assert await offline.get_record(f"at://{DID}/{POST}/missing") is None
        with pytest.raises(InvalidAtUriError):
            await offline.get_record("p2")

    @pytest.mark.asyncio
    async def test_identity(self, offline):
        assert await offline.resolve_repository(HANDLE) == DID
        assert await offline.resolve_repository("did:plc:x") == "did:plc:x"
        assert await offline.resolve_repository("stranger.test") is None
        assert (await offline.get_profile(HANDLE)).did == DID
        assert await offline.get_profile("stranger.test") is None

    @pytest.mark.asyncio
    async def test_activity_data_from_fresh_snapshot(self, offline):
        data = await offline.get_activity_data(DID, include_blog_posts=True, include_stats=True)

        assert data.source is DataSource.CACHE
        assert [r.record_key for r in data.blog_posts] == ["b1"]
        assert data.repository_stats is not None
        assert list(data.collections) == [POST]

    @pytest.mark.asyncio
    async def test_activity_data_from_stale_snapshot(self, snapshot_dir, clock):
        reader = SnapshotReader(snapshot_dir, max_age=timedelta(minutes=1), clock=clock)
        data = await SnapshotSynchronizer(reader, guard=TimestampGuard(clock=clock)).get_activity_data(DID)

        assert data.source is DataSource.STALE_CACHE

    @pytest.mark.asyncio
    async def test_empty_snapshot(self, tmp_path):
        data = await SnapshotSynchronizer(SnapshotReader(tmp_path)).get_activity_data(DID)

        assert data.source is DataSource.EMPTY

    @pytest.mark.asyncio
    async def test_stats_and_invalidate(self, offline, tmp_path):
        empty_dir = tmp_path / "empty"
        empty_dir.mkdir()
        assert (await offline.get_repository_stats(DID)).total_records == 12
        assert (await SnapshotSynchronizer(SnapshotReader(empty_dir)).get_repository_stats(DID)).total_records == 0
        assert offline.invalidate(DID) == 0
