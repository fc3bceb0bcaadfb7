"""Loguru sink configuration shared by the CLI and the API."""

from __future__ import annotations

import sys

from loguru import logger

_CONSOLE_FORMAT = "<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {name} | {message}"


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """
    Replace loguru's default sink with the studyloop sinks.

    Args:
        level: Minimum level for all sinks
        log_file: Optional path for a rotating file sink
    """
    logger.remove()
    logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT)

    if log_file:
        logger.add(
            log_file,
            level=level,
            rotation="10 MB",
            retention=5,
            enqueue=True,
        )
