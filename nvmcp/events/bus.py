"""Lifecycle event bus.

The supervisor publishes every process transition here (``process.starting``,
``process.running``, ``process.stopping``, ``process.killed``,
``process.stopped``, ``process.error``) so callers subscribe instead of
polling the registry. Patterns use shell wildcards: ``process.*`` or ``*``.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from collections import defaultdict, deque
from datetime import datetime
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field

from nvmcp.types import utcnow

_logger = logging.getLogger(__name__)

EventHandler = Callable[["Event"], Awaitable[None]]


class Event(BaseModel):
    topic: str
    data: dict[str, Any] = Field(default_factory=dict)
    source: str = ""
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def process_id(self) -> str | None:
        return self.data.get("id")


class EventBus:
    """In-process pub/sub. Handlers run concurrently per emit.

    A recent-event ring is kept so ``start --wait`` and tests can inspect
    what happened to a given process.
    """

    def __init__(self, history_limit: int = 200) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)
        self._history: deque[Event] = deque(maxlen=history_limit)

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        self._subscribers[pattern].append(handler)

    def unsubscribe(self, pattern: str, handler: EventHandler) -> None:
        handlers = self._subscribers.get(pattern, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self._subscribers.pop(pattern, None)

    async def emit(self, topic: str, data: dict | None = None, source: str = "") -> Event:
        """Deliver to every matching handler. Handler failures are logged, never raised."""
        event = Event(topic=topic, data=data or {}, source=source)
        self._history.append(event)

        handlers = [
            handler
            for pattern, subscribed in self._subscribers.items()
            if fnmatch.fnmatchcase(topic, pattern)
            for handler in subscribed
        ]
        if handlers:
            results = await asyncio.gather(*(h(event) for h in handlers), return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    _logger.warning("Event handler for %s failed: %s", topic, result)
        return event

    def history(
        self,
        topic_filter: str = "*",
        limit: int = 50,
        process_id: str | None = None,
    ) -> list[Event]:
        """Recent events, newest first."""
        events = [
            e for e in reversed(self._history)
            if fnmatch.fnmatchcase(e.topic, topic_filter)
            and (process_id is None or e.process_id == process_id)
        ]
        return events[:limit]

    @property
    def subscriber_count(self) -> int:
        return sum(len(h) for h in self._subscribers.values())


def log_transitions(bus: EventBus, logger: logging.Logger | None = None) -> EventHandler:
    """Subscribe a handler that logs every process transition. Returns the handler."""
    logger = logger or _logger

    async def _log(event: Event) -> None:
        details = ", ".join(f"{k}={v}" for k, v in event.data.items() if k != "id")
        logger.info("%s %s (%s)", event.topic, event.process_id or "-", details)

    bus.subscribe("process.*", _log)
    return _log
