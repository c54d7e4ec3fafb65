"""Live-network synchronizer.

Every public fetch follows the same path:

1. valid cache entry -> return it
2. otherwise fetch from the network and write the cache
3. on failure, serve the previous (stale) entry with a warning, or an
   explicit empty result when there is none

:class:`~atsync.exceptions.AuthenticationError` is the only failure that
reaches callers.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Generic, TypeVar

import httpx

from atsync.cache.ttl import TTLCache, cache_key
from atsync.client.xrpc import RepositoryApi
from atsync.config.settings import AtsyncSettings, TimestampGuardSettings
from atsync.data_primitives.records import (
    AtUri,
    Author,
    Profile,
    RecordEnvelope,
    RepositoryStats,
    ResolvedSubject,
)
from atsync.discovery.engine import DiscoveryEngine
from atsync.exceptions import AtsyncError, AuthenticationError, InvalidAtUriError, XrpcError
from atsync.registry.builtin import LIKE, POST, PROFILE, REPOST, WHTWND_BLOG_ENTRY
from atsync.sync.protocol import ActivityData, DataSource
from atsync.sync.stats import compute_repository_stats
from atsync.sync.timestamps import TimestampGuard
from atsync.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

FETCH_ERRORS = (AtsyncError, httpx.HTTPError)
SUBJECT_SHAPES = frozenset({LIKE, REPOST})
UNKNOWN_AUTHOR_HANDLE = "unknown"
UNKNOWN_AUTHOR_NAME = "Unknown User"

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class _Partial(Generic[T]):
    """Result assembled while some sub-fetches failed. Returned to callers, never cached."""

    data: T


class NetworkSynchronizer:
    """Synchronizer backed by an XRPC client and a TTL cache."""

    def __init__(
        self,
        client: RepositoryApi,
        cache: TTLCache[Any],
        discovery: DiscoveryEngine,
        settings: AtsyncSettings | None = None,
        *,
        guard: TimestampGuard | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.client = client
        self.cache = cache
        self.discovery = discovery
        self.settings = settings or AtsyncSettings()
        self.guard = guard or TimestampGuard(self.settings.sync.timestamps, clock=clock)
        # Stats count anything up to and including "now"; only age and future are checked.
        self.stats_guard = TimestampGuard(
            TimestampGuardSettings(
                reject_now_sentinel=False,
                max_age_days=self.settings.sync.timestamps.max_age_days,
                reject_future=True,
            ),
            clock=clock,
        )
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Fetch-through helpers
    # ------------------------------------------------------------------
    async def _fetch_through(self, key: str, fetch: Callable[[], Awaitable[T | _Partial[T]]]) -> T:
        """Cache hit, or fetch and store; on failure serve the stale entry or re-raise.

        A :class:`_Partial` result is returned but never written to the cache.
        """
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        try:
            data = await fetch()
        except AuthenticationError:
            raise
        except FETCH_ERRORS as e:
            stale = self.cache.peek(key)
            if stale is None:
                raise
            logger.warning("Serving stale %s after fetch failure: %s", key, e)
            return stale.data
        if isinstance(data, _Partial):
            logger.info("Not caching incomplete result for %s", key)
            return data.data
        if data is not None:
            self.cache.set(key, data)
        return data

    async def _cached(self, key: str, fetch: Callable[[], Awaitable[T | _Partial[T]]], empty: T) -> T:
        try:
            return await self._fetch_through(key, fetch)
        except AuthenticationError:
            raise
        except FETCH_ERRORS as e:
            logger.warning("Fetch failed for %s and nothing is cached; returning empty result: %s", key, e)
            return empty

    async def _cached_for(
        self,
        repository_id: str,
        kind: str,
        parts: tuple[Any, ...],
        fetch: Callable[[str], Awaitable[T | _Partial[T]]],
        empty: T,
    ) -> T:
        """:meth:`_cached` under a key built from the resolved DID.

        Stream events name repositories by DID, so keying by DID lets
        :meth:`invalidate` reach entries requested by handle.
        """
        try:
            did = await self._resolve(repository_id)
        except AuthenticationError:
            raise
        except FETCH_ERRORS as e:
            logger.warning("Could not resolve %s; returning empty result: %s", repository_id, e)
            return empty
        return await self._cached(cache_key(kind, did, *parts), lambda: fetch(did), empty)

    async def _gather_each(self, label: str, calls: Iterable[Awaitable[T]]) -> tuple[list[T | None], bool]:
        """Await sub-fetches together; failed ones come back as ``None``.

        Returns the results and whether every sub-fetch succeeded.

        Raises:
            AuthenticationError: If any sub-fetch hit one.
            AtsyncError: The first failure, when no sub-fetch succeeded.

        """
        results = await asyncio.gather(*calls, return_exceptions=True)
        failures = [result for result in results if isinstance(result, BaseException)]
        for failure in failures:
            if isinstance(failure, AuthenticationError) or not isinstance(failure, FETCH_ERRORS):
                raise failure
        if failures and len(failures) == len(results):
            raise failures[0]
        if failures:
            logger.warning("%s: %d of %d fetches failed; result is partial", label, len(failures), len(results))
        return [None if isinstance(result, BaseException) else result for result in results], not failures

    async def _resolve(self, identifier: str) -> str:
        if identifier.startswith("did:"):
            return identifier
        return await self._fetch_through(cache_key("did", identifier), lambda: self.client.resolve_handle(identifier))

    async def _author(self, did: str) -> Author | None:
        profile = await self.get_profile(did)
        return profile.as_author() if profile else None

    def _envelopes(self, items: list[dict[str, Any]], author: Author | None) -> tuple[RecordEnvelope, ...]:
        envelopes = []
        for item in items:
            try:
                envelopes.append(RecordEnvelope.from_xrpc(item, author=author))
            except InvalidAtUriError as e:
                logger.debug("Skipping record with malformed URI: %s", e)
        return tuple(envelopes)

    async def _paginate(self, did: str, collection: str, max_total: int) -> list[dict[str, Any]]:
        """Follow cursors in order until exhausted, repeated, or ``max_total`` is reached."""
        page_size = self.settings.sync.page_size
        records: list[dict[str, Any]] = []
        cursor: str | None = None
        seen: set[str] = set()
        while len(records) < max_total:
            remaining = max_total - len(records)
            page = await self.client.list_records(did, collection, limit=min(page_size, remaining), cursor=cursor)
            records.extend(page.records[:remaining])
            if not page.cursor or not page.records:
                break
            if page.cursor in seen:
                logger.warning("Cursor loop detected for %s/%s; stopping at %d records", did, collection, len(records))
                break
            seen.add(page.cursor)
            cursor = page.cursor
        if len(records) >= max_total:
            logger.info("Stopped %s/%s fetch at the %d record cap", did, collection, max_total)
        return records

    async def _load(self, did: str, collection: str, limit: int) -> tuple[RecordEnvelope, ...]:
        items = await self._paginate(did, collection, limit)
        return self._envelopes(items, await self._author(did))

    async def _listing(self, kind: str, did: str, collection: str, limit: int) -> tuple[RecordEnvelope, ...]:
        """Cached listing that raises when it has neither fresh nor stale data."""
        return await self._fetch_through(
            cache_key(kind, did, collection, limit), lambda: self._load(did, collection, limit)
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    async def resolve_repository(self, identifier: str) -> str | None:
        """Resolve a handle to its DID (cached). ``None`` when it cannot be resolved."""
        try:
            return await self._resolve(identifier)
        except AuthenticationError:
            raise
        except FETCH_ERRORS as e:
            logger.warning("Could not resolve %s: %s", identifier, e)
            return None

    async def get_profile(self, actor: str) -> Profile | None:
        async def fetch(did: str) -> Profile:
            return Profile.from_xrpc(await self.client.get_profile(did))

        return await self._cached_for(actor, "profile", (), fetch, None)

    async def get_records(self, repository_id: str, collection: str, limit: int = 50) -> list[RecordEnvelope]:
        limit = max(1, limit)

        async def fetch(did: str) -> tuple[RecordEnvelope, ...]:
            return await self._load(did, collection, limit)

        return list(await self._cached_for(repository_id, "records", (collection, limit), fetch, ()))

    async def get_all_records(
        self, repository_id: str, collection: str, max_total: int | None = None
    ) -> list[RecordEnvelope]:
        """Every record of ``collection``, up to ``max_total`` (default ``sync.max_total``).

        Raises:
            ValueError: If ``max_total`` is below 1.

        """
        cap = self.settings.sync.max_total if max_total is None else max_total
        if cap < 1:
            msg = f"max_total must be at least 1, got {cap}"
            raise ValueError(msg)

        async def fetch(did: str) -> tuple[RecordEnvelope, ...]:
            return await self._load(did, collection, cap)

        return list(await self._cached_for(repository_id, "all", (collection, cap), fetch, ()))

    async def get_record(self, uri: str) -> RecordEnvelope | None:
        """Fetch one record by AT-URI. ``None`` when missing or unreachable.

        Raises:
            InvalidAtUriError: If ``uri`` is not a valid AT-URI.

        """
        at_uri = AtUri.parse(uri)

        async def fetch() -> RecordEnvelope | None:
            try:
                data = await self.client.get_record(at_uri.repository, at_uri.collection, at_uri.record_key)
            except XrpcError as e:
                if e.is_not_found:
                    logger.debug("Record not found: %s", uri)
                    return None
                raise
            return RecordEnvelope.from_xrpc({"uri": uri, **data})

        return await self._cached(cache_key("record", uri), fetch, None)

    async def resolve_subject(self, subject: Any) -> ResolvedSubject | None:
        """Fetch the post a like/repost points at, with its author. Non-post subjects are skipped."""
        raw_uri = subject.get("uri") if isinstance(subject, Mapping) else subject
        at_uri = AtUri.try_parse(raw_uri)
        if at_uri is None or at_uri.collection != POST:
            return None
        record = await self.get_record(str(at_uri))
        if record is None:
            return None

        repo = at_uri.repository
        if not repo.startswith("did:") and "." in repo:
            author = Author(did=repo, handle=repo, display_name=repo.split(".")[0])
        else:
            profile = await self.get_profile(repo)
            author = (
                profile.as_author()
                if profile
                else Author(did=repo, handle=UNKNOWN_AUTHOR_HANDLE, display_name=UNKNOWN_AUTHOR_NAME)
            )
        title = record.value.get("title")
        content = record.value.get("content")
        return ResolvedSubject(
            uri=str(at_uri),
            text=record.value.get("text") or "No content",
            title=title if isinstance(title, str) else None,
            content=content if isinstance(content, str) else None,
            author=author,
        )

    async def _with_subjects(self, records: list[RecordEnvelope]) -> list[RecordEnvelope]:
        budget = self.settings.sync.resolve_subjects
        targets = [r for r in records if r.collection in SUBJECT_SHAPES and r.value.get("subject")][:budget]
        if not targets:
            return records
        subjects = await asyncio.gather(*(self.resolve_subject(r.value.get("subject")) for r in targets))
        resolved = {r.uri: s for r, s in zip(targets, subjects, strict=True) if s is not None}
        return [replace(r, resolved_subject=resolved[r.uri]) if r.uri in resolved else r for r in records]

    async def get_recent_activity(self, repository_id: str, limit: int = 20) -> list[RecordEnvelope]:
        sync = self.settings.sync

        async def fetch(did: str) -> tuple[RecordEnvelope, ...] | _Partial[tuple[RecordEnvelope, ...]]:
            if sync.request_delay > 0:
                await self._sleep(sync.request_delay)
            batches, complete = await self._gather_each(
                f"Recent activity for {did}",
                [
                    self._listing("records", did, collection, sync.activity_per_collection)
                    for collection in sync.activity_collections
                ],
            )
            combined = [record for batch in batches if batch for record in batch]
            combined = await self._with_subjects(combined)
            valid = self.guard.filter(combined)
            valid.sort(key=lambda r: r.indexed_at, reverse=True)
            logger.debug("Recent activity for %s: %d of %d records kept", did, len(valid), len(combined))
            result = tuple(valid[:limit])
            return result if complete else _Partial(result)

        return list(await self._cached_for(repository_id, "activity", (limit,), fetch, ()))

    async def get_repository_stats(self, repository_id: str) -> RepositoryStats:
        async def fetch(did: str) -> RepositoryStats | _Partial[RepositoryStats]:
            descriptors = await self.discovery.discover_collections(did)
            names = [descriptor.name for descriptor in descriptors]
            cap = self.settings.sync.max_total
            results, complete = await self._gather_each(
                f"Repository stats for {did}", [self._listing("all", did, name, cap) for name in names]
            )
            fetched = {name: records for name, records in zip(names, results, strict=True) if records is not None}
            stats = compute_repository_stats(fetched, guard=self.stats_guard)
            return stats if complete else _Partial(stats)

        return await self._cached_for(repository_id, "stats", (), fetch, RepositoryStats.empty())

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
        """Fetch profile, activity, blog posts, stats and collection listings in one burst.

        ``source`` reports whether the bundle came from the cache, the
        network, a stale cache entry after a failure, or nothing at all.
        """
        try:
            did = await self._resolve(repository_id)
        except AuthenticationError:
            raise
        except FETCH_ERRORS as e:
            logger.warning("Activity data unavailable for %s: %s", repository_id, e)
            return ActivityData.empty()

        key = cache_key(
            "activity-data",
            did,
            activity_limit,
            int(include_blog_posts),
            blog_post_limit,
            int(include_stats),
            collections_limit,
        )
        cached = self.cache.get(key)
        if cached is not None:
            return replace(cached, source=DataSource.CACHE)

        async def nothing() -> None:
            return None

        try:
            profile = Profile.from_xrpc(await self.client.get_profile(did))
            self.cache.set(cache_key("profile", did), profile)
            if self.settings.sync.request_delay > 0:
                await self._sleep(self.settings.sync.request_delay)
            collections = list(self.settings.sync.activity_collections) if collections_limit > 0 else []
            activity, blog_posts, stats, *listings = await asyncio.gather(
                self.get_recent_activity(did, activity_limit) if activity_limit > 0 else nothing(),
                self.get_records(did, WHTWND_BLOG_ENTRY, blog_post_limit) if include_blog_posts else nothing(),
                self.get_repository_stats(did) if include_stats else nothing(),
                *(self.get_records(did, collection, collections_limit) for collection in collections),
            )
        except AuthenticationError:
            raise
        except FETCH_ERRORS as e:
            stale = self.cache.peek(key)
            if stale is not None:
                logger.warning("Serving stale activity data for %s: %s", repository_id, e)
                return replace(stale.data, source=DataSource.STALE_CACHE)
            logger.warning("Activity data unavailable for %s: %s", repository_id, e)
            return ActivityData.empty()

        data = ActivityData(
            profile=profile,
            recent_activity=list(activity or []),
            blog_posts=list(blog_posts or []),
            repository_stats=stats,
            collections={name: list(records) for name, records in zip(collections, listings, strict=True) if records},
            source=DataSource.DIRECT,
        )
        self.cache.set(key, data)
        return data

    def invalidate(self, repository_id: str, collection: str | None = None) -> int:
        """Drop cached entries for a repository (optionally one collection) and everything derived from them.

        Entries are keyed by DID; a handle is mapped through the cached resolution.
        """
        did = repository_id
        if not repository_id.startswith("did:"):
            entry = self.cache.peek(cache_key("did", repository_id))
            if entry is not None:
                did = entry.data
        if collection is None:
            prefixes = [cache_key(kind, did, "") for kind in ("records", "all")]
        else:
            prefixes = [cache_key(kind, did, collection, "") for kind in ("records", "all")]
        prefixes += [cache_key(kind, did, "") for kind in ("activity", "activity-data")]
        removed = sum(self.cache.invalidate_prefix(prefix) for prefix in prefixes)
        exact = [cache_key("stats", did)]
        if collection in (None, PROFILE):
            exact.append(cache_key("profile", did))
        for key in exact:
            if key in self.cache:
                self.cache.invalidate(key)
                removed += 1
        logger.debug("Invalidated %d cache entries for %s (%s)", removed, repository_id, collection or "all")
        return removed


__all__ = ["NetworkSynchronizer"]
