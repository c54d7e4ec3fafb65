"""Repository discovery: which collections exist and which record shapes they hold."""

from atsync.discovery.engine import DiscoveryEngine, RepositoryAnalysis, seed_registry
from atsync.discovery.sketch import infer_service, infer_type, sketch_properties

__all__ = [
    "DiscoveryEngine",
    "RepositoryAnalysis",
    "infer_service",
    "infer_type",
    "seed_registry",
    "sketch_properties",
]
