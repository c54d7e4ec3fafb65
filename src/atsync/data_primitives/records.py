"""Core record types flowing from the repository into caches, registries and views."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from atsync.exceptions import InvalidAtUriError
from atsync.utils.datetime_utils import coerce_timestamp

AT_URI_SCHEME = "at://"
_NSID_RE = re.compile(r"^[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)+$")


class Operation(str, Enum):
    """Commit operation carried by a stream event."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class PresentationMode(str, Enum):
    COMPACT = "compact"
    EXPANDED = "expanded"
    FULL = "full"


def freeze_value(value: Any) -> Any:
    """Deep-freeze a JSON-like tree: mappings become read-only, lists become tuples."""
    if isinstance(value, MappingProxyType):
        return value
    if isinstance(value, Mapping):
        return MappingProxyType({str(key): freeze_value(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze_value(item) for item in value)
    return value


@dataclass(frozen=True, slots=True)
class AtUri:
    """Parsed ``at://<repository>/<collection>/<record_key>`` URI."""

    repository: str
    collection: str
    record_key: str

    @classmethod
    def parse(cls, uri: str) -> AtUri:
        if not isinstance(uri, str) or not uri.startswith(AT_URI_SCHEME):
            raise InvalidAtUriError(str(uri))
        parts = uri[len(AT_URI_SCHEME) :].split("/")
        if len(parts) != 3 or not all(parts) or not _NSID_RE.match(parts[1]):
            raise InvalidAtUriError(uri)
        return cls(repository=parts[0], collection=parts[1], record_key=parts[2])

    @classmethod
    def try_parse(cls, uri: Any) -> AtUri | None:
        try:
            return cls.parse(uri)
        except InvalidAtUriError:
            return None

    def __str__(self) -> str:
        return f"{AT_URI_SCHEME}{self.repository}/{self.collection}/{self.record_key}"


@dataclass(frozen=True, slots=True)
class Author:
    """Repository owner as attached to fetched records."""

    did: str
    handle: str
    display_name: str | None = None
    avatar: str | None = None

    @property
    def name(self) -> str:
        return self.display_name or self.handle


@dataclass(frozen=True, slots=True)
class Profile:
    """Actor profile as returned by ``app.bsky.actor.getProfile``."""

    did: str
    handle: str
    display_name: str | None = None
    description: str | None = None
    avatar: str | None = None
    banner: str | None = None
    followers_count: int = 0
    follows_count: int = 0
    posts_count: int = 0
    indexed_at: datetime | None = None

    @classmethod
    def from_xrpc(cls, data: Mapping[str, Any]) -> Profile:
        return cls(
            did=str(data.get("did", "")),
            handle=str(data.get("handle", "")),
            display_name=data.get("displayName") or None,
            description=data.get("description") or None,
            avatar=data.get("avatar") or None,
            banner=data.get("banner") or None,
            followers_count=int(data.get("followersCount") or 0),
            follows_count=int(data.get("followsCount") or 0),
            posts_count=int(data.get("postsCount") or 0),
            indexed_at=coerce_timestamp(data.get("indexedAt")),
        )

    def as_author(self) -> Author:
        return Author(did=self.did, handle=self.handle, display_name=self.display_name, avatar=self.avatar)


@dataclass(frozen=True, slots=True)
class ResolvedSubject:
    """The post a like or repost points at, fetched alongside the interaction."""

    uri: str
    text: str
    title: str | None = None
    content: str | None = None
    author: Author | None = None


@dataclass(frozen=True, slots=True)
class RecordEnvelope:
    """One repository record.

    ``value`` is deep-frozen on construction; use :func:`dataclasses.replace`
    to derive modified envelopes.
    """

    uri: str
    cid: str
    shape_id: str | None
    collection: str
    value: Mapping[str, Any] = field(default_factory=dict, hash=False)
    indexed_at: datetime | None = None
    author: Author | None = None
    resolved_subject: ResolvedSubject | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", freeze_value(self.value or {}))

    @classmethod
    def from_xrpc(cls, data: Mapping[str, Any], *, author: Author | None = None) -> RecordEnvelope:
        """Build an envelope from a ``listRecords``/``getRecord`` item.

        Raises:
            InvalidAtUriError: If the item's ``uri`` is malformed.

        """
        uri = str(data.get("uri", ""))
        at_uri = AtUri.parse(uri)
        value = data.get("value")
        if not isinstance(value, Mapping):
            value = {}
        shape = value.get("$type")
        return cls(
            uri=uri,
            cid=str(data.get("cid") or ""),
            shape_id=shape if isinstance(shape, str) and shape else None,
            collection=at_uri.collection,
            value=value,
            indexed_at=coerce_timestamp(value.get("createdAt") or value.get("indexedAt")),
            author=author,
        )

    @property
    def at_uri(self) -> AtUri:
        return AtUri.parse(self.uri)

    @property
    def repository_id(self) -> str:
        return self.at_uri.repository

    @property
    def record_key(self) -> str:
        return self.at_uri.record_key


@dataclass(frozen=True, slots=True)
class ShapeDescriptor:
    """A distinct record shape (``$type``) observed in a collection."""

    shape_id: str
    collection: str
    properties: Mapping[str, Any] = field(default_factory=dict, hash=False)
    sample_count: int = 0
    sample_uri: str | None = None
    service: str = "unknown"

    def __post_init__(self) -> None:
        object.__setattr__(self, "properties", freeze_value(self.properties or {}))


@dataclass(frozen=True, slots=True)
class CollectionDescriptor:
    """Result of discovering one collection."""

    name: str
    record_count: int
    sample_shapes: frozenset[str] = frozenset()
    shapes: tuple[ShapeDescriptor, ...] = ()
    service: str = "unknown"

    def __post_init__(self) -> None:
        if self.record_count < 0:
            msg = f"record_count must be >= 0, got {self.record_count}"
            raise ValueError(msg)


@dataclass(frozen=True, slots=True)
class StreamEvent:
    """A decoded commit event from the live stream."""

    repository_id: str
    collection: str
    shape_id: str | None
    operation: Operation
    record_key: str
    record_value: Mapping[str, Any] | None = field(default=None, hash=False)
    cid: str | None = None
    rev: str | None = None
    received_at_micros: int = 0

    def __post_init__(self) -> None:
        if self.record_value is not None:
            object.__setattr__(self, "record_value", freeze_value(self.record_value))

    @property
    def uri(self) -> str:
        return str(AtUri(self.repository_id, self.collection, self.record_key))

    def to_envelope(self) -> RecordEnvelope | None:
        """Return the created/updated record as an envelope; ``None`` for deletes."""
        if self.operation is Operation.DELETE or self.record_value is None:
            return None
        return RecordEnvelope(
            uri=self.uri,
            cid=self.cid or "",
            shape_id=self.shape_id,
            collection=self.collection,
            value=self.record_value,
            indexed_at=coerce_timestamp(self.record_value.get("createdAt")),
        )


@dataclass(frozen=True, slots=True)
class RepositoryStats:
    total_records: int
    records_today: int
    records_this_week: int
    active_collections: int
    collection_counts: Mapping[str, int] = field(default_factory=dict, hash=False)
    last_updated: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "collection_counts", MappingProxyType(dict(self.collection_counts)))

    @classmethod
    def empty(cls) -> RepositoryStats:
        return cls(total_records=0, records_today=0, records_this_week=0, active_collections=0)


__all__ = [
    "AtUri",
    "Author",
    "CollectionDescriptor",
    "Operation",
    "PresentationMode",
    "Profile",
    "RecordEnvelope",
    "RepositoryStats",
    "ResolvedSubject",
    "ShapeDescriptor",
    "StreamEvent",
    "freeze_value",
]
