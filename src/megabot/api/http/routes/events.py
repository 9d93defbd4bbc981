"""Live orchestration event feeds over Server-Sent Events."""

from __future__ import annotations

import asyncio
import json

from fastapi import APIRouter, Depends, Query
from sse_starlette.sse import EventSourceResponse

from megabot.api.service import NOTIFICATION_EVENTS, MegabotService
from megabot.bus import EventFilter, EventType

from ..dependencies import get_service
from ..schemas import EventListResponse

router = APIRouter(prefix="/api", tags=["events"])

KEEPALIVE_SECONDS = 30.0


def _event_stream(service: MegabotService, event_filter: EventFilter) -> EventSourceResponse:
    async def event_generator():
        queue = service.subscribe_events(event_filter)
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield {"event": "ping", "data": "{}"}
                    continue
                yield {"event": event.type.value, "data": json.dumps(event.to_dict(), default=str)}
        finally:
            service.unsubscribe_events(queue)

    return EventSourceResponse(event_generator())


@router.get("/events")
async def stream_events(
    type: list[EventType] = Query(default=[]),
    agent_id: str | None = None,
    conversation_id: str | None = None,
    service: MegabotService = Depends(get_service),
):
    """Live feed of every orchestration event, optionally filtered."""
    return _event_stream(
        service,
        EventFilter(types=frozenset(type), agent_id=agent_id, conversation_id=conversation_id),
    )


@router.get("/events/recent", response_model=EventListResponse)
async def recent_events(
    type: EventType | None = None,
    agent_id: str | None = None,
    conversation_id: str | None = None,
    limit: int = 100,
    service: MegabotService = Depends(get_service),
) -> EventListResponse:
    """Recorded events, newest first."""
    events = await service.recent_events(
        event_type=type.value if type else None,
        agent_id=agent_id,
        conversation_id=conversation_id,
        limit=limit,
    )
    return EventListResponse(events=[e.to_dict() for e in events])


@router.get("/notifications")
async def stream_notifications(service: MegabotService = Depends(get_service)):
    """Agent, chat and scheduler lifecycle events only."""
    return _event_stream(service, EventFilter(types=NOTIFICATION_EVENTS))
