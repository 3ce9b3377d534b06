"""Logging setup. stdout carries JSONL events, so logs always go to stderr."""

from __future__ import annotations

import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> | <level>{message}</level>"
)


def setup_logging(level: str = "INFO", serialize: bool = False) -> int:
    """Replace loguru's default handler with a single stderr sink. Returns the handler id."""
    logger.remove()
    return logger.add(
        sys.stderr,
        level=level.upper(),
        format=LOG_FORMAT,
        serialize=serialize,
        colorize=None if not serialize else False,
        backtrace=False,
        diagnose=False,
    )
