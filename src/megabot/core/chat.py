"""ChatHandler: one user turn from request to chunk stream."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator

from megabot.bus import EventBus, EventType
from megabot.core.history import messages_to_history, truncate_history
from megabot.core.prompts import build_system_prompt
from megabot.core.router import ModelRouter
from megabot.core.runner import BASE_TOOL_NAMES, AgentRunner, AgentRunParams
from megabot.persistence.models import Conversation, Message, MessageRole, ModelTier, new_id
from megabot.persistence.store import Store
from megabot.providers.base import Chunk

logger = logging.getLogger(__name__)


@dataclass
class ChatResponse:
    conversation_id: str
    message_id: str
    stream: AsyncIterator[Chunk]


class ChatHandler:
    """Persists the user message, loads history, routes, and returns the runner stream.

    Routing errors propagate from ``handle`` before any stream exists.
    """

    def __init__(
        self,
        store: Store,
        router: ModelRouter,
        runner: AgentRunner,
        bus: EventBus,
        history_char_budget: int = 400_000,
    ) -> None:
        self.store = store
        self.router = router
        self.runner = runner
        self.bus = bus
        self.history_char_budget = history_char_budget

    async def handle(
        self,
        conversation_id: str | None,
        message: str,
        model_id: str | None = None,
        tier: ModelTier | str | None = None,
    ) -> ChatResponse:
        route = self.router.route(tier=tier, model_id=model_id)

        conversation_id = await self._setup_conversation(conversation_id, message)
        user_message = await self.store.add_message(
            Message.from_text(conversation_id, MessageRole.USER, message)
        )
        self.bus.emit(
            EventType.MESSAGE_RECEIVED,
            "chat-handler",
            {"message_id": user_message.id, "length": len(message)},
            conversation_id=conversation_id,
        )

        rows = await self.store.get_messages(conversation_id)
        history = truncate_history(messages_to_history(rows), self.history_char_budget)

        tool_names = [
            name for name in BASE_TOOL_NAMES if self.runner.tool_registry.get(name) is not None
        ]
        system_prompt = build_system_prompt(
            tools=tool_names if route.provider.supports_tools else []
        )

        params = AgentRunParams(
            system_prompt=system_prompt,
            initial_messages=history,
            model_id=route.qualified_id,
            conversation_id=conversation_id,
            message_id=user_message.id,
        )
        logger.debug(
            "Chat turn: conversation=%s model=%s history=%d",
            conversation_id,
            route.qualified_id,
            len(history),
        )
        return ChatResponse(
            conversation_id=conversation_id,
            message_id=user_message.id,
            stream=self.runner.stream(params),
        )

    async def _setup_conversation(self, conversation_id: str | None, message: str) -> str:
        conversation_id = conversation_id or new_id()
        created = await self.store.ensure_conversation(
            Conversation(id=conversation_id, title=message[:100])
        )
        if created:
            self.bus.emit(
                EventType.CONVERSATION_CREATED,
                "chat-handler",
                {"title": message[:100]},
                conversation_id=conversation_id,
            )
        return conversation_id
