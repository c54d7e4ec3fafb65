"""Grain photo galleries assembled from gallery, item and photo records."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from atsync.data_primitives.records import RecordEnvelope
from atsync.sync.protocol import Synchronizer
from atsync.utils.blobs import DEFAULT_BLOB_SERVICE, blob_url, extract_cid_from_blob_ref

logger = logging.getLogger(__name__)

GRAIN_COLLECTIONS = ("social.grain.gallery", "social.grain.gallery.item", "social.grain.photo")
IMAGE_FIELDS = ("image", "photo", "media")
ID_FIELDS = ("galleryId", "gallery_id", "id")
GALLERY_ITEMS_LIMIT = 200

_URI_GALLERY = re.compile(r"gallery/([^/]+)")
_TITLE_GALLERY = re.compile(r"gallery[:\-\s]+(\S+)", re.IGNORECASE)
_OLDEST = datetime.min.replace(tzinfo=UTC)


@dataclass(frozen=True, slots=True)
class GalleryImage:
    url: str
    alt: str | None = None
    caption: str | None = None


@dataclass(frozen=True, slots=True)
class ProcessedGallery:
    id: str
    title: str
    description: str | None
    created_at: datetime | None
    images: tuple[GalleryImage, ...] = ()
    item_count: int = 0
    collections: tuple[str, ...] = field(default=())


def gallery_id(record: RecordEnvelope) -> str:
    value = record.value
    for name in ID_FIELDS:
        candidate = value.get(name)
        if isinstance(candidate, str) and candidate:
            return candidate
    if match := _URI_GALLERY.search(record.uri):
        return match.group(1)
    title = value.get("title")
    if isinstance(title, str) and (match := _TITLE_GALLERY.search(title)):
        return match.group(1)
    return f"{record.collection}-{record.record_key.split('?')[0]}"


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def extract_images(record: RecordEnvelope, *, service: str = DEFAULT_BLOB_SERVICE) -> list[GalleryImage]:
    """Images carried by ``record``: a direct image/photo/media field, else ``embed.images`` blobs."""
    value = record.value
    caption = _text(value.get("caption"))
    for name in IMAGE_FIELDS:
        data = value.get(name)
        if not isinstance(data, Mapping):
            continue
        url = _text(data.get("url")) or _text(data.get("src"))
        if url:
            return [
                GalleryImage(
                    url=url,
                    alt=_text(data.get("alt")) or _text(data.get("caption")) or caption,
                    caption=_text(data.get("caption")) or caption,
                )
            ]

    embed = value.get("embed")
    entries = embed.get("images") if isinstance(embed, Mapping) else None
    images = []
    for entry in entries if isinstance(entries, Sequence) and not isinstance(entries, str) else ():
        if not isinstance(entry, Mapping):
            continue
        cid = extract_cid_from_blob_ref(entry.get("image"))
        if cid:
            images.append(
                GalleryImage(url=blob_url(record.repository_id, cid, service=service), alt=_text(entry.get("alt")))
            )
    return images


def group_galleries(
    records: Iterable[RecordEnvelope], *, service: str = DEFAULT_BLOB_SERVICE
) -> list[ProcessedGallery]:
    """Group gallery-related records by gallery id, newest gallery first.

    The first record seen for a gallery supplies its title and description;
    ``created_at`` is the earliest record timestamp in the group.
    """
    groups: dict[str, list[RecordEnvelope]] = {}
    for record in records:
        groups.setdefault(gallery_id(record), []).append(record)

    galleries = []
    for gid, items in groups.items():
        first = items[0].value
        timestamps = [item.indexed_at for item in items if item.indexed_at is not None]
        images = [image for item in items for image in extract_images(item, service=service)]
        galleries.append(
            ProcessedGallery(
                id=gid,
                title=_text(first.get("title")) or f"Gallery {gid}",
                description=_text(first.get("description")) or _text(first.get("caption")),
                created_at=min(timestamps) if timestamps else None,
                images=tuple(images),
                item_count=len(items),
                collections=tuple(dict.fromkeys(item.collection for item in items)),
            )
        )
    galleries.sort(key=lambda g: g.created_at or _OLDEST, reverse=True)
    return galleries


async def fetch_galleries(
    synchronizer: Synchronizer,
    repository_id: str,
    *,
    collections: Sequence[str] = GRAIN_COLLECTIONS,
    limit: int = GALLERY_ITEMS_LIMIT,
    service: str = DEFAULT_BLOB_SERVICE,
) -> list[ProcessedGallery]:
    """Fetch the gallery collections of ``repository_id`` and group them."""
    batches = await asyncio.gather(
        *(synchronizer.get_all_records(repository_id, name, max_total=limit) for name in collections)
    )
    records = [record for batch in batches for record in batch]
    galleries = group_galleries(records, service=service)
    logger.info("Grouped %d gallery record(s) into %d galleries", len(records), len(galleries))
    return galleries


__all__ = [
    "GRAIN_COLLECTIONS",
    "GalleryImage",
    "ProcessedGallery",
    "extract_images",
    "fetch_galleries",
    "gallery_id",
    "group_galleries",
]
