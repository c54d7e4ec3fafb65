"""Custom exceptions for configuration handling."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any

from atsync.exceptions import AtsyncError


class ConfigError(AtsyncError):
    """Base exception for all configuration-related errors."""


class ConfigNotFoundError(ConfigError):
    """Raised when an explicitly requested configuration file does not exist."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Configuration file not found: {path}")


class ConfigValidationError(ConfigError):
    """Raised when the configuration fails validation."""

    def __init__(self, errors: Sequence[dict[str, Any]] | None = None) -> None:
        self.errors = list(errors or [])
        details = "; ".join(
            f"{' -> '.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', '')}"
            for error in self.errors
        )
        msg = f"Configuration validation failed with {len(self.errors)} error(s)."
        if details:
            msg += f" {details}"
        super().__init__(msg)


__all__ = ["ConfigError", "ConfigNotFoundError", "ConfigValidationError"]
