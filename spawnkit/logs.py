"""Logging setup for the CLI.

Library modules log through ``logging.getLogger(__name__)`` and stay silent
until the host application configures logging. The CLI renders those
records with structlog's console renderer on stderr.
"""

from __future__ import annotations

import logging
import sys

import structlog

LOGGER_NAME = "spawnkit"


def configure_logging(level: str = "INFO") -> logging.Handler:
    """Render ``spawnkit`` log records on stderr, dropping those below ``level``."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
    ))

    logger = logging.getLogger(LOGGER_NAME)
    # Repeated calls replace the previous handler instead of stacking them.
    logger.handlers[:] = [handler]
    logger.setLevel(numeric)
    logger.propagate = False
    return handler
