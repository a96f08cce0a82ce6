"""Shared test fixtures — small Python children, an event bus, logging reset."""

from __future__ import annotations

import logging
import sys
import textwrap

import pytest

from spawnkit.events import EventBus
from spawnkit.logs import LOGGER_NAME


@pytest.fixture
def python():
    """Build ``(executable, arguments)`` that run a snippet in a fresh interpreter."""
    def _factory(code: str) -> tuple[str, list[str]]:
        return sys.executable, ["-c", textwrap.dedent(code)]
    return _factory


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture(autouse=True)
def _restore_logging():
    # configure_logging binds a handler to the current (possibly captured) stderr.
    logger = logging.getLogger(LOGGER_NAME)
    handlers, level, propagate = logger.handlers[:], logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate
