"""Tool system base: BaseTool, ToolResult, ToolContext, ToolRegistry."""

from __future__ import annotations

import enum
import inspect
import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from megabot.errors import ToolRegistrationError
from megabot.providers.base import ToolDefinition

logger = logging.getLogger(__name__)


class PermissionLevel(str, enum.Enum):
    NONE = "none"
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"


@dataclass
class ToolResult:
    """Structured outcome of a tool execution."""

    success: bool = True
    data: Any = None
    error: str = ""

    @staticmethod
    def ok(data: Any = None) -> ToolResult:
        return ToolResult(success=True, data=data)

    @staticmethod
    def fail(error: str) -> ToolResult:
        return ToolResult(success=False, error=error)

    def to_content(self) -> str:
        """Render the result as tool-result block content."""
        if not self.success:
            return self.error
        if isinstance(self.data, str):
            return self.data
        return json.dumps(self.data, default=str)


@dataclass
class ToolContext:
    """Context passed to tool execution."""

    conversation_id: str | None = None
    message_id: str | None = None
    agent_id: str | None = None
    task_id: str | None = None


class BaseTool(ABC):
    """Abstract base class for all tools.

    ``execute`` may be a coroutine function or a plain function.
    """

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {"type": "object", "properties": {}}
    permissions: PermissionLevel = PermissionLevel.NONE
    keywords: list[str] = []
    plugin_id: str = "core"

    @abstractmethod
    def execute(self, params: dict[str, Any], context: ToolContext) -> Any:
        """Execute the tool with given parameters and context."""
        ...

    def get_definition(self) -> ToolDefinition:
        """Get the tool definition for LLM function calling."""
        return ToolDefinition(
            name=self.name, description=self.description, parameters=self.parameters
        )


class ToolRegistry:
    """Registry of tools keyed by their globally unique name."""

    def __init__(self) -> None:
        self._tools: dict[str, BaseTool] = {}
        self._lock = threading.Lock()

    def register(self, tool: BaseTool, plugin_id: str | None = None) -> None:
        with self._lock:
            if tool.name in self._tools:
                raise ToolRegistrationError(f'Tool "{tool.name}" is already registered')
            if plugin_id is not None:
                tool.plugin_id = plugin_id
            self._tools[tool.name] = tool
        logger.debug("Registered tool %s (plugin %s)", tool.name, tool.plugin_id)

    def unregister(self, name: str) -> bool:
        with self._lock:
            return self._tools.pop(name, None) is not None

    def get(self, name: str) -> BaseTool | None:
        return self._tools.get(name)

    def list(self) -> list[BaseTool]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools)

    def search(self, query: str) -> list[BaseTool]:
        """Rank tools by how many query words appear in their name, description or keywords.

        Words of two characters or fewer are ignored. A query with no usable
        words returns every tool in registration order.
        """
        words = [w for w in query.lower().split() if len(w) > 2]
        tools = self.list()
        if not words:
            return tools

        scored: list[tuple[int, BaseTool]] = []
        for tool in tools:
            haystack = " ".join([tool.name, tool.description, *tool.keywords]).lower()
            score = sum(1 for w in words if w in haystack)
            if score > 0:
                scored.append((score, tool))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [tool for _, tool in scored]

    async def execute(
        self, name: str, params: dict[str, Any], context: ToolContext | None = None
    ) -> ToolResult:
        """Run a tool. Never raises: failures come back as ``ToolResult.fail``."""
        tool = self.get(name)
        if tool is None:
            return ToolResult.fail(f'Tool "{name}" not found')
        try:
            result = tool.execute(params, context or ToolContext())
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.warning("Tool %s raised: %s", name, e)
            return ToolResult.fail(str(e))
        if not isinstance(result, ToolResult):
            result = ToolResult.ok(result)
        return result
