"""Typed-record registry mapping record shapes to capabilities.

Third-party packages can contribute capabilities through entry points:

    [project.entry-points."atsync.capabilities"]
    my_shape = "my_package.shapes:capability"

The entry point may resolve to a :class:`ShapeCapability` or to a zero-argument
callable returning one (or an iterable of them). Plugins are only loaded by an
explicit :meth:`ShapeRegistry.load_plugins` call.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from importlib.metadata import entry_points

from atsync.data_primitives.records import PresentationMode, RecordEnvelope
from atsync.registry.base import ShapeCapability
from atsync.utils.text import json_summary

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "atsync.capabilities"
UNSUPPORTED_TYPE = "Unsupported Type"
FALLBACK_SUMMARY_LENGTH = 200


def _fallback_content(record: RecordEnvelope) -> str:
    return json_summary(record.value, FALLBACK_SUMMARY_LENGTH)


FALLBACK_CAPABILITY = ShapeCapability(
    shape_id="*",
    display_name=UNSUPPORTED_TYPE,
    icon="❓",
    description="Shape with no registered capability",
    get_title=lambda _record: UNSUPPORTED_TYPE,
    get_content=_fallback_content,
    presentation_modes=frozenset({PresentationMode.COMPACT}),
    show_in_activity_feed=False,
    show_in_content_feed=False,
)


class ShapeRegistry:
    """Registry of :class:`ShapeCapability` keyed by exact shape id.

    Registration is last-write-wins. :meth:`resolve` is total: any record
    without an exact match gets the fallback capability.

    Example:
        >>> registry = ShapeRegistry()
        >>> register_builtin_capabilities(registry)
        >>> registry.resolve(record).extract_title(record)

    """

    def __init__(self, fallback: ShapeCapability = FALLBACK_CAPABILITY) -> None:
        self._lock = threading.RLock()
        self._capabilities: dict[str, ShapeCapability] = {}
        self.fallback = fallback

    def register(self, shape_id: str, capability: ShapeCapability) -> None:
        with self._lock:
            if shape_id in self._capabilities:
                logger.debug("Replacing capability for %s", shape_id)
            self._capabilities[shape_id] = capability

    def unregister(self, shape_id: str) -> bool:
        with self._lock:
            return self._capabilities.pop(shape_id, None) is not None

    def get(self, shape_id: str) -> ShapeCapability:
        """Get the capability registered for ``shape_id``.

        Raises:
            KeyError: If ``shape_id`` is not registered.

        """
        with self._lock:
            if shape_id not in self._capabilities:
                available = ", ".join(sorted(self._capabilities))
                msg = f"Unknown shape: '{shape_id}'. Available: {available}"
                raise KeyError(msg)
            return self._capabilities[shape_id]

    def find(self, shape_id: str | None) -> ShapeCapability | None:
        if shape_id is None:
            return None
        with self._lock:
            return self._capabilities.get(shape_id)

    def resolve(self, record: RecordEnvelope) -> ShapeCapability:
        """Return the capability for ``record``'s exact shape id, or the fallback."""
        return self.find(record.shape_id) or self.fallback

    def shape_ids(self) -> list[str]:
        with self._lock:
            return list(self._capabilities)

    def capabilities(self) -> list[ShapeCapability]:
        with self._lock:
            return list(self._capabilities.values())

    def list_by_presentation_mode(self, mode: PresentationMode | str) -> list[ShapeCapability]:
        wanted = PresentationMode(mode)
        return [c for c in self.capabilities() if wanted in c.presentation_modes]

    def list_activity_capable(self) -> list[ShapeCapability]:
        return [c for c in self.capabilities() if c.show_in_activity_feed]

    def list_content_capable(self) -> list[ShapeCapability]:
        return [c for c in self.capabilities() if c.show_in_content_feed]

    def load_plugins(self) -> int:
        """Register capabilities advertised under the ``atsync.capabilities`` entry-point group."""
        loaded = 0
        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                target = ep.load()
                produced = target() if callable(target) and not isinstance(target, ShapeCapability) else target
                items = [produced] if isinstance(produced, ShapeCapability) else list(produced)
            except Exception:
                logger.exception("Failed to load capability plugin: %s", ep.name)
                continue
            for capability in items:
                if not isinstance(capability, ShapeCapability):
                    logger.warning("Plugin %s produced %r, not a ShapeCapability; skipping", ep.name, capability)
                    continue
                self.register(capability.shape_id, capability)
                loaded += 1
                logger.info("Loaded plugin capability: %s (from %s)", capability.shape_id, ep.name)
        return loaded

    def register_all(self, capabilities: Iterable[ShapeCapability]) -> None:
        for capability in capabilities:
            self.register(capability.shape_id, capability)

    def __contains__(self, shape_id: object) -> bool:
        with self._lock:
            return shape_id in self._capabilities

    def __len__(self) -> int:
        with self._lock:
            return len(self._capabilities)

    def __iter__(self) -> Iterator[str]:
        return iter(self.shape_ids())

    def __repr__(self) -> str:
        shapes = ", ".join(self.shape_ids())
        return f"ShapeRegistry(capabilities={len(self)}, shapes=[{shapes}])"


__all__ = ["ENTRY_POINT_GROUP", "FALLBACK_CAPABILITY", "UNSUPPORTED_TYPE", "ShapeRegistry"]
