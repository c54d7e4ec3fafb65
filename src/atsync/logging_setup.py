"""Centralized logging configuration for atsync."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Final, cast

from rich.console import Console
from rich.logging import RichHandler

__all__ = ["configure_logging", "console"]

_LOG_LEVEL_ENV: Final[str] = "ATSYNC_LOG_LEVEL"
_DEFAULT_LEVEL_NAME: Final[str] = "INFO"
_NOISY_LOGGERS: Final[tuple[str, ...]] = ("httpx", "httpcore", "websockets")

console = Console()

if TYPE_CHECKING:

    class _ManagedRichHandler(RichHandler):
        _atsync_managed: bool

else:
    _ManagedRichHandler = RichHandler


def _resolve_level(level: str | int | None = None) -> int:
    """Return the logging level from the argument or the environment."""
    if isinstance(level, int):
        return level
    level_name = (level or os.getenv(_LOG_LEVEL_ENV, _DEFAULT_LEVEL_NAME)).upper()
    return getattr(logging, level_name, logging.INFO)


def configure_logging(level: str | int | None = None) -> None:
    """Configure logging once with a Rich handler."""
    root_logger = logging.getLogger()
    resolved = _resolve_level(level)

    managed_handler: _ManagedRichHandler | None = None
    for handler in root_logger.handlers:
        if isinstance(handler, RichHandler) and getattr(handler, "_atsync_managed", False):
            managed_handler = cast(_ManagedRichHandler, handler)
            break

    if managed_handler is None:
        root_logger.handlers.clear()
        handler = _ManagedRichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        handler._atsync_managed = True
        root_logger.addHandler(handler)

    root_logger.setLevel(resolved)

    # Transport libraries log every request at INFO.
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))

    logging.captureWarnings(True)
