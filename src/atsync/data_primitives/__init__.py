"""Fundamental data primitives for atsync.

Every structure crossing the core/consumer boundary is a plain frozen
dataclass defined here:

- **Records**: RecordEnvelope, AtUri, Author, Profile, ResolvedSubject
- **Discovery**: CollectionDescriptor, ShapeDescriptor
- **Streaming**: StreamEvent, Operation
- **Aggregates**: RepositoryStats
"""

from atsync.data_primitives.records import (
    AtUri,
    Author,
    CollectionDescriptor,
    Operation,
    PresentationMode,
    Profile,
    RecordEnvelope,
    RepositoryStats,
    ResolvedSubject,
    ShapeDescriptor,
    StreamEvent,
    freeze_value,
)

__all__ = [
    "AtUri",
    "Author",
    "CollectionDescriptor",
    "Operation",
    "PresentationMode",
    "Profile",
    "RecordEnvelope",
    "RepositoryStats",
    "ResolvedSubject",
    "ShapeDescriptor",
    "StreamEvent",
    "freeze_value",
]
