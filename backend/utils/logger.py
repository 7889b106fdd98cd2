"""Process-wide logging setup for the capacity engine."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from backend.utils.config import get_settings


_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_LOGGER_INITIALIZED = False


def _resolve_level(level: Optional[str]) -> int:
    name = (level or get_settings().log_level).upper()
    resolved = logging.getLevelName(name)
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once.

    An unknown LOG_LEVEL value degrades to INFO instead of failing startup.
    """

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    logging.basicConfig(
        level=_resolve_level(level),
        format=_LOG_FORMAT,
        stream=sys.stdout,
    )
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    """Return a module logger, configuring the root logger on first use."""
    configure_logging()
    return logging.getLogger(name)
