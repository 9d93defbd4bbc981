"""Conversation history endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from megabot.api.service import MegabotService

from ..dependencies import get_service
from ..schemas import (
    ConversationListResponse,
    ConversationResponse,
    MessageListResponse,
    MessageResponse,
)

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


def _conversation_to_response(conversation) -> ConversationResponse:
    return ConversationResponse(
        id=conversation.id,
        title=conversation.title,
        agent_id=conversation.agent_id,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
    )


def _message_to_response(message) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        conversation_id=message.conversation_id,
        role=message.role.value,
        content=message.content,
        blocks=[b.to_dict() for b in message.blocks or []],
        model=message.model,
        token_count=message.token_count,
        created_at=message.created_at,
    )


@router.get("", response_model=ConversationListResponse)
async def list_conversations(
    limit: int = 50,
    service: MegabotService = Depends(get_service),
) -> ConversationListResponse:
    """List conversations, most recently updated first."""
    conversations = await service.list_conversations(limit=limit)
    return ConversationListResponse(
        conversations=[_conversation_to_response(c) for c in conversations]
    )


@router.get("/{conversation_id}/messages", response_model=MessageListResponse)
async def get_messages(
    conversation_id: str,
    service: MegabotService = Depends(get_service),
) -> MessageListResponse:
    """Persisted messages of a conversation, oldest first."""
    conversation = await service.get_conversation(conversation_id)
    if conversation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Conversation not found: {conversation_id}",
        )
    messages = await service.get_messages(conversation_id)
    return MessageListResponse(
        conversation_id=conversation_id,
        streaming=service.is_streaming(conversation_id),
        messages=[_message_to_response(m) for m in messages],
    )
