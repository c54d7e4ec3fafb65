"""Blob reference helpers for image-bearing records."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode

DEFAULT_BLOB_SERVICE = "https://bsky.social"


def blob_url(did: str, cid: str, *, service: str = DEFAULT_BLOB_SERVICE) -> str:
    """Return the ``com.atproto.sync.getBlob`` URL serving ``cid`` from ``did``'s repository."""
    query = urlencode({"did": did, "cid": cid})
    return f"{service.rstrip('/')}/xrpc/com.atproto.sync.getBlob?{query}"


def extract_cid_from_blob_ref(ref: Any) -> str | None:
    """Extract a CID string from the blob reference shapes seen in records.

    Handles a bare CID string, ``{"$link": cid}``, and a full blob object
    ``{"$type": "blob", "ref": {"$link": cid}, ...}``.
    """
    if isinstance(ref, str):
        return ref or None
    if isinstance(ref, Mapping):
        link = ref.get("$link")
        if isinstance(link, str) and link:
            return link
        if "ref" in ref:
            return extract_cid_from_blob_ref(ref["ref"])
        cid = ref.get("cid")
        if isinstance(cid, str) and cid:
            return cid
    return None


__all__ = ["DEFAULT_BLOB_SERVICE", "blob_url", "extract_cid_from_blob_ref"]
