"""Centralized logging configuration for Claude Memory.

Every module obtains its logger through :func:`get_logger` so that all
output lives under the ``claudememory`` logger hierarchy and can be tuned
in one place.

Usage:
    # In the CLI entry point:
    from .logging_config import setup_logging
    setup_logging(level="INFO")

    # In any module:
    from .logging_config import get_logger
    logger = get_logger(__name__)
    logger.warning("Index file is corrupt, using defaults")
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

__all__ = [
    "setup_logging",
    "get_logger",
]

ROOT_LOGGER_NAME = "claudememory"


def setup_logging(
    level: str = "WARNING",
    format_string: Optional[str] = None,
    log_file: Optional[str] = None
) -> None:
    """Configure logging for claude-memory.

    Should be called once at application startup. Library callers that embed
    the coordinator in their own process can skip it and configure logging
    themselves.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_string: Custom format string (default includes timestamp, name, level, message)
        log_file: Optional file path to write logs to (in addition to stderr)

    Raises:
        ValueError: If level is not a known log level name

    Note:
        Logs go to stderr so they never mix with command output on stdout.
    """
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]

    if log_file:
        handlers.append(logging.FileHandler(log_file, mode='a'))

    logging.basicConfig(
        level=numeric_level,
        format=format_string,
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    logging.getLogger(ROOT_LOGGER_NAME).setLevel(numeric_level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given module name.

    The logger name is prefixed with "claudememory." unless it already
    starts with it, so ``get_logger("tasks")`` and
    ``get_logger("claudememory.tasks")`` return the same logger.

    Args:
        name: Module name (typically __name__ from the calling module)

    Returns:
        Logger instance for the module
    """
    prefix = f"{ROOT_LOGGER_NAME}."
    if name.startswith(prefix):
        name = name[len(prefix):]

    if name == ROOT_LOGGER_NAME:
        return logging.getLogger(name)

    return logging.getLogger(f"{prefix}{name}")
