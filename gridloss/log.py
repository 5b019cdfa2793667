"""Logging setup for the grid losses service."""

from __future__ import annotations

import logging
import sys
from typing import Optional

TRACE = 5

logging.addLevelName(TRACE, "TRACE")

_LEVELS = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger("gridloss")


def parse_level(name: str) -> int:
    """
    Convert a configured level name into a logging level.

    Args:
        name: One of trace, debug, info, warn, error, fatal (case-insensitive)

    Returns:
        Numeric logging level

    Raises:
        ValueError: If the name is not a known level
    """
    key = (name or "").strip().lower()
    if key not in _LEVELS:
        raise ValueError(f"not a valid log level: {name!r}")
    return _LEVELS[key]


def setup_logging(
    level: int = logging.INFO,
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
) -> None:
    """
    Install a stderr handler on the package logger.

    Calling it again only changes the level, so repeated setup never
    duplicates output.
    """
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(
            fmt=log_format or DEFAULT_FORMAT,
            datefmt=date_format or DEFAULT_DATE_FORMAT,
        ))
        logger.addHandler(handler)
        logger.propagate = False
    logger.setLevel(level)


def configure_level(name: str) -> int:
    """Apply the configured level, falling back to DEBUG when it is unparsable."""
    try:
        level = parse_level(name)
    except ValueError as e:
        setup_logging(logging.DEBUG)
        logger.warning(f"Failed to parse log level ({name}): {e}")
        level = logging.DEBUG
    else:
        setup_logging(level)
    logger.info(f"Log level: {logging.getLevelName(level)}")
    return level
