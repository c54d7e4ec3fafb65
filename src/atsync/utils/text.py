"""Text processing utilities."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

ELLIPSIS = "..."


def truncate_text(text: str, max_length: int) -> str:
    """Cut ``text`` to ``max_length`` characters, appending an ellipsis when cut."""
    if max_length <= 0 or len(text) <= max_length:
        return text
    return text[:max_length] + ELLIPSIS


def thaw(value: Any) -> Any:
    """Return a plain ``dict``/``list`` copy of a (possibly frozen) JSON-like tree."""
    if isinstance(value, Mapping):
        return {str(key): thaw(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [thaw(item) for item in value]
    return value


def json_summary(value: Any, max_length: int = 200) -> str:
    """Compact JSON rendering of ``value`` used for unsupported record shapes."""
    try:
        rendered = json.dumps(thaw(value), ensure_ascii=False, sort_keys=True, default=str)
    except (TypeError, ValueError):
        rendered = repr(value)
    return truncate_text(rendered, max_length)


def short_did(did: str) -> str:
    """Abbreviate a DID for display (``did:plc:abcdefgh...``)."""
    if did.startswith("did:"):
        parts = did.split(":")
        if len(parts) >= 3 and parts[2]:
            return parts[2][:8] + ELLIPSIS
        return "unknown"
    return did


__all__ = ["json_summary", "short_did", "thaw", "truncate_text"]
