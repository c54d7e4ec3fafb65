"""Shape capabilities: how to read title, content, links, etc. out of a record shape."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from atsync.data_primitives.records import Author, PresentationMode, RecordEnvelope
from atsync.utils.datetime_utils import coerce_timestamp

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TITLE = "Untitled"
DEFAULT_CONTENT = "No content available"
DEFAULT_LINK_TEXT = "View Profile →"
DEFAULT_ICON = "📋"

Extractor = Callable[[RecordEnvelope], T]


def record_actor(record: RecordEnvelope) -> str:
    """Handle of the record's author, falling back to the repository id from the URI."""
    if record.author is not None and record.author.handle:
        return record.author.handle
    try:
        return record.repository_id
    except ValueError:
        return "unknown"


def profile_link(record: RecordEnvelope) -> str:
    return f"https://bsky.app/profile/{record_actor(record)}"


def default_timestamp(record: RecordEnvelope) -> datetime | None:
    return record.indexed_at or coerce_timestamp(record.value.get("createdAt"))


@dataclass(frozen=True, slots=True)
class ShapeCapability:
    """Capability set for one record shape.

    The ``get_*`` callables are supplied by whoever registers the shape and
    may raise. The ``extract_*`` methods wrap them and never raise: failures
    are logged at debug level and a safe default is returned.
    """

    shape_id: str
    display_name: str
    icon: str = DEFAULT_ICON
    description: str = ""
    get_title: Extractor[str] | None = None
    get_content: Extractor[str] | None = None
    get_author: Extractor[Author | None] | None = None
    get_tags: Extractor[Iterable[str]] | None = None
    get_timestamp: Extractor[Any] | None = None
    get_link: Extractor[str | None] | None = None
    get_link_text: Extractor[str] | None = None
    get_metadata: Extractor[Mapping[str, Any]] | None = None
    get_description: Extractor[str] | None = None
    presentation_modes: frozenset[PresentationMode] = field(
        default_factory=lambda: frozenset({PresentationMode.COMPACT, PresentationMode.EXPANDED})
    )
    show_in_activity_feed: bool = True
    show_in_content_feed: bool = False

    def supports(self, mode: PresentationMode | str) -> bool:
        return PresentationMode(mode) in self.presentation_modes

    def extract_title(self, record: RecordEnvelope) -> str:
        if self.get_title is None:
            return self.display_name
        return str(self._safe("title", self.get_title, record, DEFAULT_TITLE) or DEFAULT_TITLE)

    def extract_content(self, record: RecordEnvelope) -> str:
        if self.get_content is None:
            return DEFAULT_CONTENT
        return str(self._safe("content", self.get_content, record, DEFAULT_CONTENT) or DEFAULT_CONTENT)

    def extract_author(self, record: RecordEnvelope) -> Author | None:
        if self.get_author is None:
            return record.author
        return self._safe("author", self.get_author, record, None)

    def extract_tags(self, record: RecordEnvelope) -> list[str]:
        if self.get_tags is None:
            return []
        tags = self._safe("tags", self.get_tags, record, ())
        if isinstance(tags, str):
            return [tags]
        try:
            return [str(tag) for tag in tags or ()]
        except TypeError:
            return []

    def extract_timestamp(self, record: RecordEnvelope) -> datetime | None:
        getter = self.get_timestamp or default_timestamp
        return coerce_timestamp(self._safe("timestamp", getter, record, None))

    def extract_link(self, record: RecordEnvelope) -> str | None:
        getter = self.get_link or profile_link
        return self._safe("link", getter, record, None)

    def extract_link_text(self, record: RecordEnvelope) -> str:
        if self.get_link_text is None:
            return DEFAULT_LINK_TEXT
        return str(self._safe("link_text", self.get_link_text, record, DEFAULT_LINK_TEXT) or DEFAULT_LINK_TEXT)

    def extract_metadata(self, record: RecordEnvelope) -> dict[str, Any]:
        if self.get_metadata is None:
            return {}
        metadata = self._safe("metadata", self.get_metadata, record, {})
        return dict(metadata) if isinstance(metadata, Mapping) else {}

    def extract_description(self, record: RecordEnvelope) -> str:
        if self.get_description is None:
            return ""
        return str(self._safe("description", self.get_description, record, "") or "")

    def _safe(self, part: str, getter: Extractor[Any], record: RecordEnvelope, default: Any) -> Any:
        try:
            return getter(record)
        except Exception as e:  # noqa: BLE001
            logger.debug("Extractor %s.%s failed for %s: %s", self.shape_id, part, record.uri, e)
            return default


__all__ = [
    "DEFAULT_CONTENT",
    "DEFAULT_TITLE",
    "ShapeCapability",
    "default_timestamp",
    "profile_link",
    "record_actor",
]
