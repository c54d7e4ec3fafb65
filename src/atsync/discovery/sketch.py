"""Property-type sketches of sampled record values.

A sketch maps each property of a record value to a type name:
``"null"``, ``"string"``, ``"number"``, ``"boolean"``,
``"opaque"``, ``"array<T>"``, or a nested dict for objects. Nesting deeper
than ``max_depth`` is reported as ``"opaque"``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

DEFAULT_MAX_DEPTH = 3
SHAPE_KEY = "$type"

PropertySketch = dict[str, Any]


def infer_type(value: Any, *, depth: int = 0, max_depth: int = DEFAULT_MAX_DEPTH) -> str | PropertySketch:
    """Return the sketch entry for one value found at nesting ``depth``."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Mapping):
        if depth + 1 >= max_depth:
            return "opaque"
        return sketch_properties(value, depth=depth + 1, max_depth=max_depth)
    if isinstance(value, (list, tuple)):
        if not value:
            return "array<opaque>"
        first = value[0]
        element = "opaque" if isinstance(first, Mapping) else infer_type(first, depth=depth, max_depth=max_depth)
        return f"array<{element}>"
    return "opaque"


def sketch_properties(
    value: Mapping[str, Any], *, depth: int = 0, max_depth: int = DEFAULT_MAX_DEPTH
) -> PropertySketch:
    """Sketch every property of ``value`` except ``$type``."""
    if not isinstance(value, Mapping):
        return {}
    return {
        str(key): infer_type(item, depth=depth, max_depth=max_depth)
        for key, item in value.items()
        if key != SHAPE_KEY
    }


def infer_service(shape_id: str, collection: str) -> str:
    """Guess which service a shape belongs to from its NSID and collection."""
    if "grain" in shape_id:
        return "grain.social"
    if "tangled" in shape_id:
        return "sh.tangled"
    if "bsky" in shape_id:
        return "bsky.app"
    if "atproto" in shape_id:
        return "atproto"
    if "grain" in collection:
        return "grain.social"
    if "tangled" in collection:
        return "sh.tangled"
    if collection.startswith("app.bsky"):
        return "bsky.app"
    return "unknown"


__all__ = ["DEFAULT_MAX_DEPTH", "PropertySketch", "infer_service", "infer_type", "sketch_properties"]
