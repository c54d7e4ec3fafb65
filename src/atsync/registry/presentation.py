"""Registry-backed helpers that consumers use to present records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from atsync.data_primitives.records import PresentationMode, RecordEnvelope
from atsync.registry.registry import ShapeRegistry
from atsync.utils.text import truncate_text


def record_content(registry: ShapeRegistry, record: RecordEnvelope, max_length: int | None = None) -> str:
    """Content of ``record`` through its capability, truncated with ``...`` when ``max_length`` is given."""
    content = registry.resolve(record).extract_content(record)
    return truncate_text(content, max_length) if max_length else content


def internal_link(registry: ShapeRegistry, record: RecordEnvelope) -> str | None:
    """Site-internal ``/record/<rkey>`` link, only for shapes that support the full view."""
    capability = registry.resolve(record)
    if not capability.supports(PresentationMode.FULL):
        return None
    return f"/record/{record.record_key}"


@dataclass(frozen=True, slots=True)
class RecordView:
    """Everything a renderer needs about one record, extracted in one pass."""

    uri: str
    shape_id: str | None
    type_name: str
    icon: str
    title: str
    content: str
    description: str
    link: str | None
    link_text: str
    internal_link: str | None
    timestamp: datetime | None
    author_handle: str | None
    tags: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict, hash=False)


def build_view(registry: ShapeRegistry, record: RecordEnvelope, *, max_content_length: int | None = None) -> RecordView:
    capability = registry.resolve(record)
    author = capability.extract_author(record)
    return RecordView(
        uri=record.uri,
        shape_id=record.shape_id,
        type_name=capability.display_name,
        icon=capability.icon,
        title=capability.extract_title(record),
        content=record_content(registry, record, max_content_length),
        description=capability.extract_description(record),
        link=capability.extract_link(record),
        link_text=capability.extract_link_text(record),
        internal_link=internal_link(registry, record),
        timestamp=capability.extract_timestamp(record),
        author_handle=author.handle if author else None,
        tags=tuple(capability.extract_tags(record)),
        metadata=capability.extract_metadata(record),
    )


__all__ = ["RecordView", "build_view", "internal_link", "record_content"]
