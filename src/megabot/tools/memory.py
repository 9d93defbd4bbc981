"""Persistent key-value memory shared across conversations."""

from __future__ import annotations

import logging
from typing import Any

from megabot.persistence.store import Store
from megabot.plugins.base import ToolPlugin
from megabot.tools.base import BaseTool, PermissionLevel, ToolContext, ToolResult

logger = logging.getLogger(__name__)


class MemoryStoreTool(BaseTool):
    name = "memory_store"
    description = (
        "Store a piece of information for later recall. Use this to remember facts, user "
        "preferences, important details, or anything that should persist across conversations. "
        "Keys should be descriptive (e.g. 'user_favorite_color', 'project_deadline'). "
        "Storing an existing key replaces its value."
    )
    parameters = {
        "type": "object",
        "properties": {
            "key": {
                "type": "string",
                "description": "A descriptive key for the memory (e.g. 'user_name', 'favorite_language').",
            },
            "value": {"type": "string", "description": "The value to store."},
        },
        "required": ["key", "value"],
    }
    permissions = PermissionLevel.WRITE
    keywords = ["remember", "note", "save", "knowledge", "fact", "persist", "preference"]

    def __init__(self, store: Store) -> None:
        self.store = store

    async def execute(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        key = str(params.get("key") or "").strip()
        if not key:
            return ToolResult.fail("Memory key cannot be empty")
        value = str(params.get("value", ""))
        await self.store.set_memory(key, value)
        return ToolResult.ok(f'Stored memory: "{key}" = "{value}"')


class MemoryRecallTool(BaseTool):
    name = "memory_recall"
    description = (
        "Search stored memories by keyword. Returns all memories whose key matches the query. "
        "Use this to recall previously stored information like user preferences, names, "
        "dates, or facts."
    )
    parameters = {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "Search query to match against memory keys. Leave empty to list all memories.",
            },
        },
        "required": [],
    }
    permissions = PermissionLevel.READ
    keywords = ["remember", "note", "lookup", "knowledge", "fact", "preference", "retrieve"]

    def __init__(self, store: Store) -> None:
        self.store = store

    async def execute(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        query = str(params.get("query") or "").strip()
        memories = await self.store.search_memories(query)
        if not memories:
            if query:
                return ToolResult.ok(f'No memories found matching "{query}".')
            return ToolResult.ok("No memories stored yet.")
        lines = "\n".join(f"- **{key}**: {value}" for key, value in memories)
        return ToolResult.ok(f"Found {len(memories)} memory(ies):\n{lines}")


class MemoryPlugin(ToolPlugin):
    id = "memory"
    name = "Memory"
    description = "Persistent key-value memory store"

    def __init__(self, store: Store) -> None:
        super().__init__([MemoryStoreTool(store), MemoryRecallTool(store)])

    async def after_tool_call(
        self, tool_name: str, params: dict[str, Any], context: ToolContext, result: ToolResult
    ) -> None:
        if not result.success:
            logger.warning("Memory tool %s failed: %s", tool_name, result.error)
        elif tool_name == MemoryStoreTool.name:
            logger.debug("Memory stored: %s", params.get("key"))
        else:
            logger.debug("Memory recalled: query=%r", params.get("query"))
