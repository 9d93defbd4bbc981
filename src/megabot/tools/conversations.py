"""Conversation and task history tools."""

from __future__ import annotations

import logging
from typing import Any

from megabot.persistence.models import TaskStatus
from megabot.persistence.store import Store
from megabot.plugins.base import ToolPlugin
from megabot.tools.base import BaseTool, PermissionLevel, ToolContext, ToolResult

logger = logging.getLogger(__name__)

MAX_MESSAGE_CHARS = 2000


def _clamp(value: Any, default: int, low: int, high: int) -> int:
    try:
        number = int(value) if value is not None else default
    except (TypeError, ValueError):
        number = default
    return min(max(low, number), high)


class ListConversationsTool(BaseTool):
    name = "list_conversations"
    description = (
        "List recent conversations with their ID, title, and last updated timestamp. "
        "Returns newest first. Use this to find a conversation before reading its messages."
    )
    parameters = {
        "type": "object",
        "properties": {
            "limit": {
                "type": "number",
                "description": "Maximum number of conversations to return. Defaults to 20.",
            },
        },
        "required": [],
    }
    permissions = PermissionLevel.READ
    keywords = ["conversation", "conversations", "chat", "history", "list", "recent"]

    def __init__(self, store: Store) -> None:
        self.store = store

    async def execute(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        limit = _clamp(params.get("limit"), 20, 1, 100)
        conversations = await self.store.list_conversations(limit=limit)
        if not conversations:
            return ToolResult.ok("No conversations found.")
        return ToolResult.ok(
            [
                {
                    "id": c.id,
                    "title": c.title or "(untitled)",
                    "agent_id": c.agent_id,
                    "updated_at": c.updated_at.isoformat(),
                }
                for c in conversations
            ]
        )


class GetConversationMessagesTool(BaseTool):
    name = "get_conversation_messages"
    description = (
        "Retrieve messages from a specific conversation. Returns role, content, "
        "and timestamp for each message (newest last). Use list_conversations first "
        "to find the conversation ID."
    )
    parameters = {
        "type": "object",
        "properties": {
            "conversation_id": {
                "type": "string",
                "description": "The conversation ID to retrieve messages from.",
            },
            "limit": {
                "type": "number",
                "description": "Maximum number of messages to return. Defaults to 50.",
            },
            "offset": {
                "type": "number",
                "description": "Number of messages to skip (for pagination). Defaults to 0.",
            },
        },
        "required": ["conversation_id"],
    }
    permissions = PermissionLevel.READ
    keywords = ["conversation", "messages", "chat", "history", "read", "context"]

    def __init__(self, store: Store) -> None:
        self.store = store

    async def execute(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        conversation_id = params["conversation_id"]
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            return ToolResult.fail(
                f'Conversation "{conversation_id}" not found. '
                "Use list_conversations to see available conversations."
            )

        limit = _clamp(params.get("limit"), 50, 1, 200)
        offset = _clamp(params.get("offset"), 0, 0, 1_000_000)
        rows = (await self.store.get_messages(conversation_id))[offset : offset + limit]
        if not rows:
            if offset > 0:
                return ToolResult.ok("No more messages at this offset.")
            return ToolResult.ok(
                f'Conversation "{conversation.title or conversation_id}" has no messages.'
            )

        messages = []
        for m in rows:
            content = m.content
            if len(content) > MAX_MESSAGE_CHARS:
                content = f"{content[:MAX_MESSAGE_CHARS]}... (truncated)"
            messages.append(
                {
                    "id": m.id,
                    "role": m.role.value,
                    "content": content,
                    "model": m.model,
                    "created_at": m.created_at.isoformat(),
                }
            )
        return ToolResult.ok(
            {
                "conversation_id": conversation_id,
                "title": conversation.title or "(untitled)",
                "message_count": len(messages),
                "offset": offset,
                "messages": messages,
            }
        )


class ListTasksTool(BaseTool):
    name = "list_tasks"
    description = (
        "List background task executions (spawned agents and scheduled runs) with their "
        "status, result and error. Newest first."
    )
    parameters = {
        "type": "object",
        "properties": {
            "status": {
                "type": "string",
                "enum": [s.value for s in TaskStatus],
                "description": "Optional filter by status.",
            },
            "limit": {
                "type": "number",
                "description": "Maximum number of tasks to return. Defaults to 20.",
            },
        },
        "required": [],
    }
    permissions = PermissionLevel.READ
    keywords = ["task", "tasks", "background", "status", "agent", "progress"]

    def __init__(self, store: Store) -> None:
        self.store = store

    async def execute(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        status = params.get("status")
        tasks = await self.store.list_tasks(
            status=TaskStatus(status) if status else None,
            limit=_clamp(params.get("limit"), 20, 1, 100),
        )
        if not tasks:
            return ToolResult.ok("No tasks found.")
        return ToolResult.ok([t.to_summary() for t in tasks])


class ConversationsPlugin(ToolPlugin):
    id = "conversations"
    name = "Conversations"
    description = "List conversations, read message history and inspect background tasks"

    def __init__(self, store: Store) -> None:
        super().__init__(
            [
                ListConversationsTool(store),
                GetConversationMessagesTool(store),
                ListTasksTool(store),
            ]
        )

    async def after_tool_call(
        self, tool_name: str, params: dict[str, Any], context: ToolContext, result: ToolResult
    ) -> None:
        if not result.success:
            logger.warning("Conversations tool %s failed: %s", tool_name, result.error)
