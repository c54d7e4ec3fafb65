"""Configuration for atsync: settings, collection catalog and errors."""

from atsync.config.collections import KNOWN_COLLECTIONS, CollectionCatalog, CollectionConfig
from atsync.config.exceptions import ConfigError, ConfigNotFoundError, ConfigValidationError
from atsync.config.settings import AtsyncSettings, load_settings

__all__ = [
    "KNOWN_COLLECTIONS",
    "AtsyncSettings",
    "CollectionCatalog",
    "CollectionConfig",
    "ConfigError",
    "ConfigNotFoundError",
    "ConfigValidationError",
    "load_settings",
]
