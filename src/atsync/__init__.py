"""atsync: discovery, typed records, caching and live updates for AT Protocol repositories."""

from atsync.runtime import AtsyncRuntime

__version__ = "0.1.0"
__all__ = ["AtsyncRuntime", "__version__"]
