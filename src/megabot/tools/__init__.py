"""Tool system."""

from megabot.tools.base import BaseTool, PermissionLevel, ToolContext, ToolRegistry, ToolResult

__all__ = [
    "BaseTool",
    "PermissionLevel",
    "ToolContext",
    "ToolRegistry",
    "ToolResult",
]
