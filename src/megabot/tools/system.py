"""Core system tools: clock and tool discovery."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from megabot.plugins.base import ToolPlugin
from megabot.tools.base import BaseTool, ToolContext, ToolRegistry, ToolResult

logger = logging.getLogger(__name__)


class GetCurrentTimeTool(BaseTool):
    name = "get_current_time"
    description = (
        "Returns the current date and time with timezone information. Useful when you need "
        "to know what time it is, calculate deadlines, or include timestamps."
    )
    parameters = {
        "type": "object",
        "properties": {
            "timezone": {
                "type": "string",
                "description": (
                    'IANA timezone string (e.g. "America/New_York", "Europe/Amsterdam"). '
                    "Defaults to the system timezone."
                ),
            },
        },
        "required": [],
    }
    keywords = ["time", "date", "clock", "now", "today", "timezone"]

    def execute(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        tz_name = params.get("timezone")
        now = datetime.now(timezone.utc)
        if tz_name:
            try:
                local = now.astimezone(ZoneInfo(tz_name))
            except (ZoneInfoNotFoundError, ValueError):
                return ToolResult.fail(f'Unknown timezone: "{tz_name}"')
        else:
            local = now.astimezone()
        formatted = local.strftime("%A, %B %d, %Y %I:%M:%S %p %Z")
        return ToolResult.ok(f"{formatted} (ISO: {now.isoformat()})")


class SearchToolsTool(BaseTool):
    """Keyword search over the registry.

    A successful call also widens the caller's active tool set; the runner
    does that by re-running the same search.
    """

    name = "search_tools"
    description = (
        "Search for available tools by keyword. Returns matching tool names and descriptions. "
        "Use this to discover what capabilities are available before deciding which tool to call."
    )
    parameters = {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "Search query to match against tool names and descriptions.",
            },
        },
        "required": ["query"],
    }
    keywords = ["discover", "capabilities", "find"]

    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry

    def execute(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        query = str(params.get("query", ""))
        results = self.registry.search(query)
        if not results:
            return ToolResult.ok(f'No tools found matching "{query}".')
        lines = [f"- **{t.name}**: {t.description}" for t in results]
        return ToolResult.ok(f"Found {len(results)} tool(s):\n" + "\n".join(lines))


class SystemPlugin(ToolPlugin):
    id = "system"
    name = "System"
    description = "Core system utilities (time, tool discovery)"

    def __init__(self, registry: ToolRegistry) -> None:
        super().__init__([GetCurrentTimeTool(), SearchToolsTool(registry)])

    async def after_tool_call(
        self, tool_name: str, params: dict[str, Any], context: ToolContext, result: ToolResult
    ) -> None:
        if not result.success:
            logger.warning("System tool %s failed: %s", tool_name, result.error)
