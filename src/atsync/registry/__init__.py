"""Typed-record registry: record shapes mapped to extraction capabilities."""

from atsync.registry.base import ShapeCapability
from atsync.registry.builtin import BUILTIN_CAPABILITIES, discovered_capability, register_builtin_capabilities
from atsync.registry.presentation import RecordView, build_view, internal_link, record_content
from atsync.registry.registry import FALLBACK_CAPABILITY, ShapeRegistry

__all__ = [
    "BUILTIN_CAPABILITIES",
    "FALLBACK_CAPABILITY",
    "RecordView",
    "ShapeCapability",
    "ShapeRegistry",
    "build_view",
    "discovered_capability",
    "internal_link",
    "record_content",
    "register_builtin_capabilities",
]
