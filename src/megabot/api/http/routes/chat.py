"""Chat endpoints: start a turn and attach to its stream."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Response, status
from sse_starlette.sse import EventSourceResponse

from megabot.api.service import MegabotService

from ..dependencies import get_service
from ..schemas import ChatAccepted, ChatRequest

router = APIRouter(prefix="/api/chat", tags=["chat"])


@router.post("", response_model=ChatAccepted, status_code=status.HTTP_202_ACCEPTED)
async def send_message(
    data: ChatRequest,
    service: MegabotService = Depends(get_service),
) -> ChatAccepted:
    """Start a chat turn.

    The turn runs detached from this request. Routing errors are reported
    here, before any stream exists.
    """
    response = await service.send_message(
        data.conversation_id, data.message, model_id=data.model_id, tier=data.tier
    )
    return ChatAccepted(
        conversation_id=response.conversation_id,
        message_id=response.message_id,
        stream_url=f"/api/chat/{response.conversation_id}/stream?from_start=true",
    )


@router.get("/{conversation_id}/stream")
async def stream_chat(
    conversation_id: str,
    from_start: bool = False,
    service: MegabotService = Depends(get_service),
):
    """Attach to a running turn via Server-Sent Events.

    Replays the current turn (or the whole buffer with ``from_start``) and
    then follows live chunks. A finished turn is still replayed from the
    start while its buffer lives. Returns 204 when there is nothing to send.
    Disconnecting only detaches this listener.
    """
    if from_start:
        available = service.has_stream_buffer(conversation_id)
    else:
        available = service.is_streaming(conversation_id)
    if not available:
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    async def event_generator():
        async for chunk in service.stream_chat(conversation_id, from_current_turn=not from_start):
            yield {"event": chunk.type.value, "data": json.dumps(chunk.to_dict())}
        yield {"event": "end", "data": json.dumps({"conversation_id": conversation_id})}

    return EventSourceResponse(event_generator())
