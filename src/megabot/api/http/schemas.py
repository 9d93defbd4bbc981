"""Pydantic schemas for HTTP API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from megabot.persistence.models import ModelTier


# --- Chat ---

class ChatRequest(BaseModel):
    """Start one chat turn."""
    message: str = Field(..., min_length=1, max_length=100000)
    conversation_id: str | None = None
    model_id: str | None = None
    tier: ModelTier | None = None


class ChatAccepted(BaseModel):
    """A chat turn is running; attach to its stream to observe it."""
    conversation_id: str
    message_id: str
    stream_url: str


# --- Conversations ---

class ConversationResponse(BaseModel):
    id: str
    title: str | None
    agent_id: str | None
    created_at: datetime
    updated_at: datetime


class ConversationListResponse(BaseModel):
    conversations: list[ConversationResponse]


class MessageResponse(BaseModel):
    id: str
    conversation_id: str
    role: str
    content: str
    blocks: list[dict[str, Any]] = []
    model: str | None = None
    token_count: int | None = None
    created_at: datetime


class MessageListResponse(BaseModel):
    conversation_id: str
    streaming: bool = False
    messages: list[MessageResponse]


# --- Agents ---

class AgentCreate(BaseModel):
    """Request to define a new agent."""
    name: str = Field(..., min_length=1, max_length=200)
    prompt: str = Field(..., min_length=1)
    tools: list[str] = []
    model: str | None = None
    tier: ModelTier | None = None


class AgentResponse(BaseModel):
    id: str
    name: str
    prompt: str
    tools: list[str]
    model: str | None
    tier: str | None
    created_by: str | None
    created_at: datetime


class AgentListResponse(BaseModel):
    agents: list[AgentResponse]


class SpawnRequest(BaseModel):
    input: str = Field(..., min_length=1)
    conversation_id: str | None = None


class SpawnResponse(BaseModel):
    task_id: str
    status: str = "dispatched"


# --- Tasks ---

class TaskResponse(BaseModel):
    id: str
    type: str
    status: str
    agent_id: str | None
    conversation_id: str | None
    origin_conversation_id: str | None
    input: dict[str, Any]
    result: dict[str, Any] | None
    error: str | None
    attempts: int
    created_at: datetime
    completed_at: datetime | None


class TaskListResponse(BaseModel):
    tasks: list[TaskResponse]


class ScheduledTaskListResponse(BaseModel):
    scheduled_tasks: list[dict[str, Any]]


# --- Events ---

class EventListResponse(BaseModel):
    events: list[dict[str, Any]]


# --- Health ---

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    llm_plugins: list[str] = []
    tools: int = 0


# --- Error ---

class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: str | None = None
