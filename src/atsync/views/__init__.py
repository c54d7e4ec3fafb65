"""Derived views built on top of synchronized records."""

from atsync.utils.blobs import blob_url, extract_cid_from_blob_ref
from atsync.views.galleries import (
    GRAIN_COLLECTIONS,
    GalleryImage,
    ProcessedGallery,
    extract_images,
    fetch_galleries,
    gallery_id,
    group_galleries,
)

__all__ = [
    "GRAIN_COLLECTIONS",
    "GalleryImage",
    "ProcessedGallery",
    "blob_url",
    "extract_cid_from_blob_ref",
    "extract_images",
    "fetch_galleries",
    "gallery_id",
    "group_galleries",
]
