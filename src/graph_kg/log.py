"""Logging setup for command-line and MCP entry points."""

from __future__ import annotations

import sys

from loguru import logger

_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <7}</level> | <cyan>{name}</cyan> - {message}"


def configure_logging(level: str = "INFO", *, colorize: bool | None = None) -> None:
    """
    Route graph-kg logs to stderr at *level*.

    stdout stays clean for command output and the MCP stdio transport.
    Library code never calls this; applications opt in.
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=_FORMAT, colorize=colorize)
