"""Build-time snapshot reading and the offline synchronizer.

A snapshot is a directory of JSON documents produced ahead of time by an
external build step:

- ``profile.json``: ``getProfile`` output
- ``activity.json``: list of records (``uri``, ``cid``, ``value``, ``author``,
  ``indexedAt``, optional ``resolvedSubject``)
- ``blog-posts.json``: WhiteWind posts (``uri``, ``cid``, ``author``, ``record``)
- ``collections.json``: ``[{"name": ..., "records": [...]}]`` or ``{name: [...]}``
- ``repository-stats.json``: ``totalRecords``, ``recordsToday``, ...
- ``discovered-shapes.json``: list of ``{"$type", "collection", "service", "properties"}``
- ``metadata.json``: ``{"lastUpdated": ..., "dataCount": {"activities": 4, ...}}``

Only reading is supported. Missing or corrupt documents yield empty data.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from atsync.data_primitives.records import (
    AtUri,
    Author,
    Profile,
    RecordEnvelope,
    RepositoryStats,
    ResolvedSubject,
    ShapeDescriptor,
)
from atsync.exceptions import InvalidAtUriError, SnapshotError
from atsync.registry.builtin import WHTWND_BLOG_ENTRY
from atsync.sync.protocol import ActivityData, DataSource
from atsync.sync.timestamps import TimestampGuard
from atsync.utils.datetime_utils import coerce_timestamp, utcnow

logger = logging.getLogger(__name__)

PROFILE_DOC = "profile.json"
ACTIVITY_DOC = "activity.json"
BLOG_POSTS_DOC = "blog-posts.json"
COLLECTIONS_DOC = "collections.json"
STATS_DOC = "repository-stats.json"
SHAPES_DOC = "discovered-shapes.json"
METADATA_DOC = "metadata.json"

DEFAULT_MAX_AGE = timedelta(hours=1)
_OLDEST = datetime.min.replace(tzinfo=UTC)


@dataclass(frozen=True, slots=True)
class SnapshotMetadata:
    last_updated: datetime | None
    data_count: Mapping[str, int] = field(default_factory=dict, hash=False)

    @property
    def total(self) -> int:
        return sum(self.data_count.values())


def _author_from(data: Any) -> Author | None:
    if not isinstance(data, Mapping) or not data.get("handle"):
        return None
    return Author(
        did=str(data.get("did", "")),
        handle=str(data["handle"]),
        display_name=data.get("displayName") or None,
        avatar=data.get("avatar") or None,
    )


def _subject_from(data: Any) -> ResolvedSubject | None:
    if not isinstance(data, Mapping) or not isinstance(data.get("uri"), str):
        return None
    author = data.get("author")
    return ResolvedSubject(
        uri=data["uri"],
        text=str(data.get("text") or "No content"),
        title=data.get("title"),
        content=data.get("content"),
        author=Author(
            did=str(author.get("did", "")),
            handle=str(author.get("handle", "unknown")),
            display_name=author.get("displayName") or None,
        )
        if isinstance(author, Mapping)
        else None,
    )


def envelope_from_snapshot(item: Mapping[str, Any]) -> RecordEnvelope:
    """Decode one snapshot record.

    Accepts both plain records (``value``) and WhiteWind post documents
    (``record``), which carry the blog fields one level down.

    Raises:
        InvalidAtUriError: If the record's ``uri`` is malformed.

    """
    value = item.get("value")
    if not isinstance(value, Mapping):
        record = item.get("record")
        value = dict(record) if isinstance(record, Mapping) else {}
        if "$type" not in value and f"/{WHTWND_BLOG_ENTRY}/" in str(item.get("uri", "")):
            value["$type"] = WHTWND_BLOG_ENTRY
    envelope = RecordEnvelope.from_xrpc({"uri": item.get("uri"), "cid": item.get("cid"), "value": value})
    indexed_at = coerce_timestamp(item.get("indexedAt")) or envelope.indexed_at
    return RecordEnvelope(
        uri=envelope.uri,
        cid=envelope.cid,
        shape_id=envelope.shape_id,
        collection=envelope.collection,
        value=envelope.value,
        indexed_at=indexed_at,
        author=_author_from(item.get("author")),
        resolved_subject=_subject_from(item.get("resolvedSubject")),
    )


def _envelopes(items: Any) -> list[RecordEnvelope]:
    if not isinstance(items, list):
        return []
    envelopes = []
    for item in items:
        if not isinstance(item, Mapping):
            continue
        try:
            envelopes.append(envelope_from_snapshot(item))
        except InvalidAtUriError as e:
            logger.debug("Skipping snapshot record: %s", e)
    return envelopes


class SnapshotReader:
    """Reads (and memoizes) the JSON documents of one snapshot directory."""

    def __init__(
        self,
        directory: Path | str,
        *,
        max_age: timedelta = DEFAULT_MAX_AGE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.directory = Path(directory)
        self.max_age = max_age
        self._clock = clock
        self._lock = threading.Lock()
        self._documents: dict[str, Any] = {}

    def load(self, name: str) -> Any:
        """Parse one document.

        Raises:
            FileNotFoundError: If the document does not exist.
            SnapshotError: If it is not valid JSON.

        """
        path = self.directory / name
        try:
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise SnapshotError(str(path), e) from e
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise SnapshotError(str(path), e) from e

    def read(self, name: str) -> Any:
        """Like :meth:`load` but returns ``None`` (with a log line) instead of raising."""
        with self._lock:
            if name in self._documents:
                return self._documents[name]
        try:
            data = self.load(name)
        except FileNotFoundError:
            logger.debug("Snapshot document %s not found in %s", name, self.directory)
            data = None
        except (OSError, SnapshotError) as e:
            logger.warning("Ignoring unreadable snapshot document: %s", e)
            data = None
        with self._lock:
            self._documents[name] = data
        return data

    def reload(self) -> None:
        with self._lock:
            self._documents.clear()

    def metadata(self) -> SnapshotMetadata:
        data = self.read(METADATA_DOC)
        if not isinstance(data, Mapping):
            return SnapshotMetadata(last_updated=None)
        counts = data.get("dataCount")
        if not isinstance(counts, Mapping):
            counts = {}
        return SnapshotMetadata(
            last_updated=coerce_timestamp(data.get("lastUpdated")),
            data_count={
                str(name): count
                for name, count in counts.items()
                if isinstance(count, int) and not isinstance(count, bool)
            },
        )

    def is_stale(self, max_age: timedelta | None = None) -> bool:
        """``True`` when the snapshot has no timestamp or is older than ``max_age``."""
        last_updated = self.metadata().last_updated
        if last_updated is None:
            return True
        return self._clock() - last_updated > (max_age or self.max_age)

    def profile(self) -> Profile | None:
        data = self.read(PROFILE_DOC)
        if not isinstance(data, Mapping) or not data.get("did"):
            return None
        return Profile.from_xrpc(data)

    def activity(self) -> list[RecordEnvelope]:
        return _envelopes(self.read(ACTIVITY_DOC))

    def blog_posts(self) -> list[RecordEnvelope]:
        return _envelopes(self.read(BLOG_POSTS_DOC))

    def collections(self) -> dict[str, list[RecordEnvelope]]:
        data = self.read(COLLECTIONS_DOC)
        if isinstance(data, Mapping):
            return {str(name): _envelopes(items) for name, items in data.items()}
        result: dict[str, list[RecordEnvelope]] = {}
        if isinstance(data, list):
            for entry in data:
                if isinstance(entry, Mapping) and isinstance(entry.get("name"), str):
                    result[entry["name"]] = _envelopes(entry.get("records"))
        return result

    def repository_stats(self) -> RepositoryStats | None:
        data = self.read(STATS_DOC)
        if not isinstance(data, Mapping):
            return None
        counts = data.get("collectionCounts")
        try:
            return RepositoryStats(
                total_records=int(data.get("totalRecords") or 0),
                records_today=int(data.get("recordsToday") or 0),
                records_this_week=int(data.get("recordsThisWeek") or 0),
                active_collections=int(data.get("activeCollections") or 0),
                collection_counts={str(k): int(v) for k, v in counts.items()} if isinstance(counts, Mapping) else {},
                last_updated=coerce_timestamp(data.get("lastUpdated")),
            )
        except (TypeError, ValueError) as e:
            logger.warning("Ignoring malformed %s: %s", STATS_DOC, e)
            return None

    def discovered_shapes(self) -> list[ShapeDescriptor]:
        data = self.read(SHAPES_DOC)
        if not isinstance(data, list):
            return []
        shapes = []
        for entry in data:
            if not isinstance(entry, Mapping) or not isinstance(entry.get("$type"), str):
                continue
            properties = entry.get("properties")
            shapes.append(
                ShapeDescriptor(
                    shape_id=entry["$type"],
                    collection=str(entry.get("collection") or ""),
                    properties=properties if isinstance(properties, Mapping) else {},
                    sample_count=int(entry.get("sampleCount") or 0),
                    service=str(entry.get("service") or "unknown"),
                )
            )
        return shapes

    def all_records(self) -> list[RecordEnvelope]:
        """Every record in the snapshot, deduplicated by URI."""
        seen: dict[str, RecordEnvelope] = {}
        groups: Iterable[list[RecordEnvelope]] = [self.activity(), self.blog_posts(), *self.collections().values()]
        for group in groups:
            for record in group:
                seen.setdefault(record.uri, record)
        return list(seen.values())


class SnapshotSynchronizer:
    """Offline synchronizer serving data from a :class:`SnapshotReader`."""

    def __init__(self, snapshot: SnapshotReader, *, guard: TimestampGuard | None = None) -> None:
        self.snapshot = snapshot
        self.guard = guard or TimestampGuard()

    def _owner_ids(self) -> set[str]:
        profile = self.snapshot.profile()
        return {profile.did, profile.handle} if profile else set()

    def _matches(self, repository_id: str, record: RecordEnvelope) -> bool:
        owners = self._owner_ids()
        if repository_id in owners:
            return record.repository_id in owners
        return record.repository_id == repository_id

    def _select(self, repository_id: str, collection: str) -> list[RecordEnvelope]:
        records = [
            r for r in self.snapshot.all_records() if r.collection == collection and self._matches(repository_id, r)
        ]
        records.sort(key=lambda r: r.indexed_at or _OLDEST, reverse=True)
        return records

    async def get_records(self, repository_id: str, collection: str, limit: int = 50) -> list[RecordEnvelope]:
        return self._select(repository_id, collection)[:limit]

    async def get_all_records(
        self, repository_id: str, collection: str, max_total: int | None = None
    ) -> list[RecordEnvelope]:
        records = self._select(repository_id, collection)
        return records[:max_total] if max_total else records

    async def get_recent_activity(self, repository_id: str, limit: int = 20) -> list[RecordEnvelope]:
        records = [r for r in self.snapshot.activity() if self._matches(repository_id, r)]
        valid = self.guard.filter(records)
        valid.sort(key=lambda r: r.indexed_at, reverse=True)
        return valid[:limit]

    async def get_repository_stats(self, repository_id: str) -> RepositoryStats:
        return self.snapshot.repository_stats() or RepositoryStats.empty()

    async def get_record(self, uri: str) -> RecordEnvelope | None:
        AtUri.parse(uri)
        return next((r for r in self.snapshot.all_records() if r.uri == uri), None)

    async def resolve_repository(self, identifier: str) -> str | None:
        profile = self.snapshot.profile()
        if profile and identifier in (profile.did, profile.handle):
            return profile.did
        return identifier if identifier.startswith("did:") else None

    async def get_profile(self, actor: str) -> Profile | None:
        profile = self.snapshot.profile()
        if profile and actor in (profile.did, profile.handle):
            return profile
        return None

    async def get_activity_data(
        self,
        repository_id: str,
        *,
        activity_limit: int = 20,
        include_blog_posts: bool = False,
        blog_post_limit: int = 5,
        include_stats: bool = False,
        collections_limit: int = 5,
    ) -> ActivityData:
        profile = await self.get_profile(repository_id)
        activity = await self.get_recent_activity(repository_id, activity_limit) if activity_limit > 0 else []
        blog_posts = self.snapshot.blog_posts()[:blog_post_limit] if include_blog_posts else []
        stats = self.snapshot.repository_stats() if include_stats else None
        collections = (
            {name: records[:collections_limit] for name, records in self.snapshot.collections().items() if records}
            if collections_limit > 0
            else {}
        )
        data = ActivityData(
            profile=profile,
            recent_activity=activity,
            blog_posts=blog_posts,
            repository_stats=stats,
            collections=collections,
            source=DataSource.STALE_CACHE if self.snapshot.is_stale() else DataSource.CACHE,
        )
        return ActivityData.empty() if data.is_empty else data

    def invalidate(self, repository_id: str, collection: str | None = None) -> int:
        return 0


__all__ = [
    "SnapshotMetadata",
    "SnapshotReader",
    "SnapshotSynchronizer",
    "envelope_from_snapshot",
]
