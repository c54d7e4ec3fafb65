"""The synchronizer contract shared by the network and offline implementations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, runtime_checkable

from atsync.data_primitives.records import Profile, RecordEnvelope, RepositoryStats


class DataSource(str, Enum):
    """Where an :class:`ActivityData` bundle came from."""

    CACHE = "cache"
    DIRECT = "direct"
    STALE_CACHE = "stale-cache"
    EMPTY = "empty"


@dataclass(frozen=True, slots=True)
class ActivityData:
    """One page worth of repository data fetched together."""

    profile: Profile | None
    recent_activity: list[RecordEnvelope] = field(default_factory=list, hash=False)
    blog_posts: list[RecordEnvelope] = field(default_factory=list, hash=False)
    repository_stats: RepositoryStats | None = None
    collections: dict[str, list[RecordEnvelope]] = field(default_factory=dict, hash=False)
    source: DataSource = DataSource.DIRECT

    @property
    def is_empty(self) -> bool:
        return self.profile is None and not self.recent_activity and not self.blog_posts

    @classmethod
    def empty(cls) -> ActivityData:
        return cls(profile=None, source=DataSource.EMPTY)


@runtime_checkable
class Synchronizer(Protocol):
    """Fetches repository data for callers.

    Implementations never raise on fetch failures: they fall back to stale or
    empty results. Only :class:`~atsync.exceptions.AuthenticationError`
    propagates.
    """

    async def get_records(self, repository_id: str, collection: str, limit: int = 50) -> list[RecordEnvelope]: ...

    async def get_all_records(
        self, repository_id: str, collection: str, max_total: int | None = None
    ) -> list[RecordEnvelope]: ...

    async def get_recent_activity(self, repository_id: str, limit: int = 20) -> list[RecordEnvelope]: ...

    async def get_repository_stats(self, repository_id: str) -> RepositoryStats: ...

    async def get_record(self, uri: str) -> RecordEnvelope | None: ...

    async def resolve_repository(self, identifier: str) -> str | None: ...

    async def get_profile(self, actor: str) -> Profile | None: ...

    async def get_activity_data(
        self,
        repository_id: str,
        *,
        activity_limit: int = 20,
        include_blog_posts: bool = False,
        blog_post_limit: int = 5,
        include_stats: bool = False,
        collections_limit: int = 5,
    ) -> ActivityData: ...

    def invalidate(self, repository_id: str, collection: str | None = None) -> int: ...


__all__ = ["ActivityData", "DataSource", "Synchronizer"]
