"""MegabotService: frontend-agnostic service layer used by the CLI and HTTP API."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from megabot.bus import Event, EventFilter, EventType
from megabot.config import Settings
from megabot.core.app import MegabotApp
from megabot.core.chat import ChatResponse
from megabot.persistence.models import (
    AgentCreator,
    AgentDefinition,
    Conversation,
    Message,
    ModelTier,
    ScheduledTask,
    ScheduleStatus,
    Task,
    TaskStatus,
)
from megabot.providers.base import Chunk
from megabot.tools.base import ToolContext

logger = logging.getLogger(__name__)

# Lifecycle events surfaced to notification listeners
NOTIFICATION_EVENTS = frozenset(
    {
        EventType.AGENT_COMPLETED,
        EventType.AGENT_ERROR,
        EventType.CHAT_COMPLETED,
        EventType.NOTIFICATION_SENT,
        EventType.SCHEDULED_TASK_COMPLETED,
        EventType.TASK_FAILED,
    }
)


class MegabotService:
    """High-level service layer wrapping MegabotApp.

    Chat turns started here run detached; callers observe them through
    ``stream_chat`` and may disconnect at any time.
    """

    def __init__(self, settings: Settings | None = None, app: MegabotApp | None = None) -> None:
        self.settings = settings or (app.settings if app else Settings.load())
        self.app = app or MegabotApp(self.settings)
        self.event_bus = self.app.bus

    async def initialize(self, start_scheduler: bool = True) -> None:
        await self.app.initialize()
        if start_scheduler:
            self.app.start_scheduler()

    async def shutdown(self) -> None:
        await self.app.shutdown()

    # --- Chat ---

    async def send_message(
        self,
        conversation_id: str | None,
        message: str,
        model_id: str | None = None,
        tier: ModelTier | str | None = None,
    ) -> ChatResponse:
        return await self.app.send_message(conversation_id, message, model_id=model_id, tier=tier)

    def is_streaming(self, conversation_id: str) -> bool:
        return self.app.streams.is_active(conversation_id)

    def has_stream_buffer(self, conversation_id: str) -> bool:
        return self.app.streams.has_buffer(conversation_id)

    def stream_chat(self, conversation_id: str, from_current_turn: bool = True) -> AsyncIterator[Chunk]:
        return self.app.streams.listen(conversation_id, from_current_turn=from_current_turn)

    # --- Conversations ---

    async def list_conversations(self, limit: int = 50) -> list[Conversation]:
        return await self.app.store.list_conversations(limit=limit)

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        return await self.app.store.get_conversation(conversation_id)

    async def get_messages(self, conversation_id: str, limit: int | None = None) -> list[Message]:
        return await self.app.store.get_messages(conversation_id, limit=limit)

    # --- Agents and tasks ---

    async def list_agents(self, created_by: str | None = None) -> list[AgentDefinition]:
        return await self.app.store.list_agents(AgentCreator(created_by) if created_by else None)

    async def create_agent(
        self,
        name: str,
        prompt: str,
        tools: list[str],
        model: str | None = None,
        tier: str | None = None,
    ) -> AgentDefinition:
        """Define an agent on behalf of the user. Raises ValueError for unknown tools."""
        known = set(self.app.tool_registry.names())
        invalid = [t for t in tools if t not in known]
        if invalid:
            raise ValueError(f"Unknown tool(s): {', '.join(invalid)}")
        return await self.app.store.create_agent(
            AgentDefinition(
                name=name,
                prompt=prompt,
                tools=list(tools),
                model=model,
                tier=ModelTier(tier) if tier else None,
                created_by=AgentCreator.USER,
            )
        )

    async def spawn_agent(
        self, agent_id: str, task_input: str, conversation_id: str | None = None
    ) -> str:
        return await self.app.dispatcher.spawn_agent(
            agent_id, task_input, ToolContext(conversation_id=conversation_id)
        )

    async def list_tasks(self, status: str | None = None, limit: int = 50) -> list[Task]:
        return await self.app.store.list_tasks(
            status=TaskStatus(status) if status else None, limit=limit
        )

    async def get_task(self, task_id: str) -> Task | None:
        return await self.app.store.get_task(task_id)

    async def list_scheduled_tasks(self, status: str | None = None) -> list[ScheduledTask]:
        return await self.app.store.list_scheduled_tasks(
            ScheduleStatus(status) if status else None
        )

    async def run_scheduler_tick(self) -> int:
        return await self.app.dispatcher.check_due_tasks()

    # --- Events ---

    def subscribe_events(self, event_filter: EventFilter | None = None) -> asyncio.Queue[Event]:
        return self.event_bus.stream(event_filter)

    def unsubscribe_events(self, queue: asyncio.Queue[Event]) -> None:
        self.event_bus.unstream(queue)

    async def recent_events(
        self,
        event_type: str | None = None,
        agent_id: str | None = None,
        conversation_id: str | None = None,
        limit: int = 100,
    ) -> list[Event]:
        await self.app.recorder.flush()
        return await self.app.store.list_events(
            event_type=EventType(event_type) if event_type else None,
            agent_id=agent_id,
            conversation_id=conversation_id,
            limit=limit,
        )
