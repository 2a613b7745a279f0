"""Event Bus — how core components hear about each other's changes.

The store announces fragments, the mesh announces sync rounds and the
runtime announces agents and generations. Subscribers register a topic
pattern ("knowledge.*", "*") and an async handler. Events are stamped
with the logical tick they were emitted at, never wall-clock time.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from collections import deque
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field

from evos.types import new_id

_logger = logging.getLogger(__name__)

EventHandler = Callable[["Event"], Awaitable[None]]


class Event(BaseModel):
    id: str = Field(default_factory=new_id)
    topic: str
    data: dict[str, Any] = Field(default_factory=dict)
    source: str = ""
    tick: int = 0


class EventBus:
    """In-process pub/sub with fnmatch topic patterns and bounded history.

    Usage:
        bus = EventBus()
        stop = bus.subscribe("mesh.*", on_mesh_event)
        await bus.emit("mesh.synced", {"round": 1}, source="echo_mesh", tick=3)
        stop()
    """

    def __init__(self, history_limit: int = 500) -> None:
        self._subscriptions: list[tuple[str, EventHandler]] = []
        self._history: deque[Event] = deque(maxlen=history_limit)

    def subscribe(self, pattern: str, handler: EventHandler) -> Callable[[], None]:
        """Register `handler` for topics matching `pattern`.

        Returns a callable that removes this subscription again.
        """
        self._subscriptions.append((pattern, handler))
        return lambda: self.unsubscribe(pattern, handler)

    def unsubscribe(self, pattern: str, handler: EventHandler) -> None:
        if (pattern, handler) in self._subscriptions:
            self._subscriptions.remove((pattern, handler))

    async def emit(
        self,
        topic: str,
        data: dict[str, Any] | None = None,
        source: str = "",
        tick: int = 0,
    ) -> Event:
        """Record an event and await every matching handler.

        Handlers run concurrently. One that raises is logged and does
        not stop the others or the emitter.
        """
        event = Event(topic=topic, data=data or {}, source=source, tick=tick)
        self._history.append(event)

        matching = [h for p, h in list(self._subscriptions) if fnmatch.fnmatch(topic, p)]
        if matching:
            await asyncio.gather(*(self._dispatch(h, event) for h in matching))
        return event

    async def _dispatch(self, handler: EventHandler, event: Event) -> None:
        try:
            await handler(event)
        except Exception as e:
            _logger.warning(
                "Handler %s failed on '%s' (event %s): %s",
                getattr(handler, "__qualname__", handler), event.topic, event.id, e,
            )

    def history(
        self,
        topic_filter: str = "*",
        limit: int = 50,
        since: int | None = None,
    ) -> list[Event]:
        """Recent events, newest first.

        `since` keeps only events emitted at or after that tick.
        """
        selected = [
            e for e in self._history
            if fnmatch.fnmatch(e.topic, topic_filter) and (since is None or e.tick >= since)
        ]
        return selected[::-1][:limit]

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def topics(self) -> list[str]:
        """Distinct topics still present in the history."""
        return sorted({e.topic for e in self._history})
