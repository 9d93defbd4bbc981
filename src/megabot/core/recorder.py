"""Event persistence and log mirroring."""

from __future__ import annotations

import asyncio
import logging

from megabot.bus import Event, EventBus, EventLevel
from megabot.persistence.store import Store

logger = logging.getLogger(__name__)
event_logger = logging.getLogger("megabot.events")

_LOG_LEVELS = {
    EventLevel.DEBUG: logging.DEBUG,
    EventLevel.INFO: logging.INFO,
    EventLevel.WARN: logging.WARNING,
    EventLevel.ERROR: logging.ERROR,
}


def log_event(event: Event) -> None:
    """Mirror an event into the ``megabot.events`` logger at its level."""
    event_logger.log(
        _LOG_LEVELS.get(event.level, logging.INFO),
        "[%s] %s %s",
        event.source,
        event.type.value,
        event.data,
    )


class EventRecorder:
    """Drains a wildcard bus stream into the store's append-only event log."""

    def __init__(self, bus: EventBus, store: Store) -> None:
        self.bus = bus
        self.store = store
        self._queue: asyncio.Queue[Event] | None = None
        self._task: asyncio.Task | None = None
        self._unsubscribe_log = None

    def start(self) -> None:
        if self._task is not None:
            return
        self._queue = self.bus.stream()
        self._unsubscribe_log = self.bus.on_any(log_event)
        self._task = asyncio.create_task(self._drain(self._queue), name="event-recorder")

    async def _drain(self, queue: asyncio.Queue[Event]) -> None:
        while True:
            event = await queue.get()
            try:
                await self._record(event)
            finally:
                queue.task_done()

    async def _record(self, event: Event) -> None:
        try:
            await self.store.add_event(event)
        except Exception:
            logger.exception("Failed to record event %s", event.type.value)

    async def flush(self) -> None:
        """Write every event queued so far."""
        if self._queue is None:
            return
        if self._task is not None and not self._task.done():
            await self._queue.join()
            return
        while not self._queue.empty():
            await self._record(self._queue.get_nowait())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        if self._unsubscribe_log is not None:
            self._unsubscribe_log()
            self._unsubscribe_log = None
        if self._queue is not None:
            await self.flush()
            self.bus.unstream(self._queue)
            self._queue = None
