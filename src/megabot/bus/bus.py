"""Process-wide publish/subscribe of orchestration events."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable

from megabot.bus.events import Event, EventLevel, EventType

logger = logging.getLogger(__name__)

Handler = Callable[[Event], None]


@dataclass
class EventFilter:
    """Selects events for a stream queue. Empty fields match everything."""

    types: frozenset[EventType] = field(default_factory=frozenset)
    agent_id: str | None = None
    conversation_id: str | None = None

    def matches(self, event: Event) -> bool:
        if self.types and event.type not in self.types:
            return False
        if self.agent_id is not None and event.agent_id != self.agent_id:
            return False
        if self.conversation_id is not None and event.conversation_id != self.conversation_id:
            return False
        return True


class EventBus:
    """Synchronous multicast event bus with per-type and global subscribers.

    Usage::

        bus = EventBus()

        def on_tool(event: Event) -> None:
            print(event.data["tool"])

        unsubscribe = bus.on(EventType.TOOL_CALLED, on_tool)
        bus.emit(EventType.TOOL_CALLED, "chat-handler", {"tool": "get_current_time"})

        # Queue-based (for SSE streaming)
        queue = bus.stream(EventFilter(conversation_id="c1"))
        event = await queue.get()

    Handlers for the emitted type run first, then global handlers, each in
    registration order. A handler that raises is logged and skipped.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[EventType, list[Handler]] = defaultdict(list)
        self._global_handlers: list[Handler] = []
        self._streams: list[tuple[EventFilter, asyncio.Queue[Event]]] = []

    def on(self, event_type: EventType, handler: Handler) -> Callable[[], None]:
        """Register a handler for one event type. Returns an unsubscribe function."""
        with self._lock:
            self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(event_type, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def on_any(self, handler: Handler) -> Callable[[], None]:
        """Register a handler for every event. Returns an unsubscribe function."""
        with self._lock:
            self._global_handlers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._global_handlers:
                    self._global_handlers.remove(handler)

        return unsubscribe

    def stream(self, event_filter: EventFilter | None = None) -> asyncio.Queue[Event]:
        """Return a queue that receives every event matching the filter."""
        queue: asyncio.Queue[Event] = asyncio.Queue()
        with self._lock:
            self._streams.append((event_filter or EventFilter(), queue))
        return queue

    def unstream(self, queue: asyncio.Queue[Event]) -> None:
        """Remove a previously created stream queue."""
        with self._lock:
            self._streams = [(f, q) for f, q in self._streams if q is not queue]

    def emit(
        self,
        event_type: EventType,
        source: str,
        data: dict[str, Any] | None = None,
        *,
        level: EventLevel | str = EventLevel.INFO,
        agent_id: str | None = None,
        conversation_id: str | None = None,
    ) -> Event:
        """Build an event and deliver it to all matching subscribers."""
        event = Event(
            type=event_type,
            source=source,
            data=data or {},
            level=EventLevel(level),
            agent_id=agent_id,
            conversation_id=conversation_id,
        )

        with self._lock:
            typed = list(self._handlers.get(event_type, []))
            global_ = list(self._global_handlers)
            streams = list(self._streams)

        for handler in typed:
            try:
                handler(event)
            except Exception:
                logger.exception("Handler error for %s", event_type.value)

        for handler in global_:
            try:
                handler(event)
            except Exception:
                logger.exception("Global handler error for %s", event_type.value)

        for event_filter, queue in streams:
            if event_filter.matches(event):
                queue.put_nowait(event)

        return event

    def clear(self) -> None:
        """Remove all handlers and streams."""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()
            self._streams.clear()
