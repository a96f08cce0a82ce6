"""Process lifecycle events.

A handle given an ``EventBus`` publishes a ``ProcessEvent`` on
``process.spawned``, ``process.spawn_failed`` and ``process.exited``.
Subscribers pick topics with shell-style patterns ("process.*").
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field

_logger = logging.getLogger(__name__)

EventHandler = Callable[["ProcessEvent"], Awaitable[None]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ProcessEvent(BaseModel):
    """Something that happened to one child process."""

    topic: str
    executable: str
    pid: int | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_now)


class EventBus:
    """Delivers process events to async subscribers and keeps recent history.

    A failing subscriber is logged; it never reaches the handle that emitted
    the event.
    """

    def __init__(self, history_limit: int = 500) -> None:
        self._subscribers: list[tuple[str, EventHandler]] = []
        self._history: deque[ProcessEvent] = deque(maxlen=history_limit)

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        self._subscribers.append((pattern, handler))

    async def emit(self, event: ProcessEvent) -> None:
        self._history.append(event)
        handlers = [h for pattern, h in self._subscribers if fnmatch.fnmatch(event.topic, pattern)]
        if not handlers:
            return
        results = await asyncio.gather(*(h(event) for h in handlers), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                _logger.warning("Subscriber failed on %s: %r", event.topic, result)

    def history(self, pattern: str = "*", limit: int = 50) -> list[ProcessEvent]:
        """Recent events matching ``pattern``, newest first."""
        matching = [e for e in reversed(self._history) if fnmatch.fnmatch(e.topic, pattern)]
        return matching[:limit]
