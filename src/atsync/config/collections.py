"""Catalog of known collections used as probe candidates during discovery."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass, replace


@dataclass(frozen=True, slots=True)
class CollectionConfig:
    """A candidate collection. Higher ``priority`` is probed first."""

    name: str
    description: str
    service: str
    priority: int
    enabled: bool = True


KNOWN_COLLECTIONS: tuple[CollectionConfig, ...] = (
    # Standard Bluesky collections
    CollectionConfig("app.bsky.feed.post", "Standard Bluesky posts", "bsky.app", 100),
    CollectionConfig("app.bsky.actor.profile", "Bluesky profile information", "bsky.app", 90),
    CollectionConfig("app.bsky.feed.generator", "Bluesky custom feeds", "bsky.app", 80),
    CollectionConfig("app.bsky.graph.follow", "Bluesky follow relationships", "bsky.app", 70),
    CollectionConfig("app.bsky.graph.block", "Bluesky block relationships", "bsky.app", 60),
    CollectionConfig("app.bsky.feed.like", "Bluesky like records", "bsky.app", 50),
    CollectionConfig("app.bsky.feed.repost", "Bluesky repost records", "bsky.app", 40),
    # Grain.social
    CollectionConfig("social.grain.gallery", "Grain.social image galleries", "grain.social", 95),
    CollectionConfig("grain.social.feed.gallery", "Grain.social image galleries (legacy)", "grain.social", 85),
    CollectionConfig("grain.social.feed.post", "Grain.social posts", "grain.social", 85),
    CollectionConfig("grain.social.actor.profile", "Grain.social profile information", "grain.social", 75),
    CollectionConfig("grain.social.feed.image", "Grain.social image posts", "grain.social", 65),
    CollectionConfig("grain.social.feed.media", "Grain.social media posts", "grain.social", 55),
    # Tangled
    CollectionConfig("sh.tangled.feed.star", "Sh.tangled star records", "sh.tangled", 45),
    CollectionConfig("sh.tangled.feed.post", "Sh.tangled posts", "sh.tangled", 35),
    CollectionConfig("sh.tangled.actor.profile", "Sh.tangled profile information", "sh.tangled", 25),
    # Generic collections that may hold custom content
    CollectionConfig("app.bsky.feed.custom", "Custom Bluesky feed content", "bsky.app", 30),
    CollectionConfig("app.bsky.actor.custom", "Custom Bluesky actor content", "bsky.app", 20),
    CollectionConfig("app.bsky.feed.media", "Bluesky media content", "bsky.app", 15),
    CollectionConfig("app.bsky.feed.image", "Bluesky image content", "bsky.app", 10),
    CollectionConfig("app.bsky.feed.gallery", "Bluesky gallery content", "bsky.app", 5),
)


class CollectionCatalog:
    """Mutable, priority-ordered set of probe candidates.

    Each instance starts from :data:`KNOWN_COLLECTIONS`; changes never leak
    between instances.
    """

    def __init__(self, extra: Iterable[CollectionConfig] = ()) -> None:
        self._lock = threading.Lock()
        self._collections: list[CollectionConfig] = [*KNOWN_COLLECTIONS, *extra]

    def enabled(self) -> list[CollectionConfig]:
        """Return enabled collections, highest priority first (stable for ties)."""
        with self._lock:
            active = [c for c in self._collections if c.enabled]
        return sorted(active, key=lambda c: -c.priority)

    def names(self) -> list[str]:
        """Return candidate names in probe order, without duplicates."""
        seen: set[str] = set()
        ordered: list[str] = []
        for config in self.enabled():
            if config.name not in seen:
                seen.add(config.name)
                ordered.append(config.name)
        return ordered

    def by_service(self, service: str) -> list[CollectionConfig]:
        return [c for c in self.enabled() if c.service == service]

    def add(self, collection: CollectionConfig) -> None:
        with self._lock:
            self._collections.append(collection)

    def add_names(self, names: Iterable[str], *, service: str = "custom", priority: int = 0) -> None:
        """Append plain collection names (e.g. from settings) as low-priority candidates."""
        for name in names:
            self.add(CollectionConfig(name, "Configured collection", service, priority))

    def set_service_enabled(self, service: str, enabled: bool) -> None:
        with self._lock:
            self._collections = [
                replace(c, enabled=enabled) if c.service == service else c for c in self._collections
            ]

    def set_collection_enabled(self, name: str, enabled: bool) -> None:
        with self._lock:
            self._collections = [replace(c, enabled=enabled) if c.name == name else c for c in self._collections]

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return any(c.name == name for c in self._collections)

    def __len__(self) -> int:
        with self._lock:
            return len(self._collections)


__all__ = ["KNOWN_COLLECTIONS", "CollectionCatalog", "CollectionConfig"]
