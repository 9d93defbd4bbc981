"""Plugin registry with exhaustive dispatch on plugin kind."""

from __future__ import annotations

import inspect
import logging
from typing import Any

from megabot.errors import PluginRegistrationError
from megabot.plugins.base import CommPlugin, LLMPlugin, Plugin, PluginKind, ToolPlugin
from megabot.tools.base import BaseTool, ToolContext, ToolRegistry, ToolResult

logger = logging.getLogger(__name__)


class HookedTool(BaseTool):
    """Runs a tool plugin's hooks around the wrapped tool."""

    def __init__(self, tool: BaseTool, plugin: ToolPlugin) -> None:
        self.tool = tool
        self.plugin = plugin
        self.name = tool.name
        self.description = tool.description
        self.parameters = tool.parameters
        self.permissions = tool.permissions
        self.keywords = tool.keywords

    async def execute(self, params: dict[str, Any], context: ToolContext) -> Any:
        await self.plugin.before_tool_call(self.name, params, context)
        result = self.tool.execute(params, context)
        if inspect.isawaitable(result):
            result = await result
        if not isinstance(result, ToolResult):
            result = ToolResult.ok(result)
        try:
            await self.plugin.after_tool_call(self.name, params, context, result)
        except Exception:
            logger.exception("after_tool_call hook of %s failed", self.plugin.id)
        return result


class PluginRegistry:
    """Holds every plugin by id; tool plugins feed the tool registry."""

    def __init__(self, tool_registry: ToolRegistry | None = None) -> None:
        self._plugins: dict[str, Plugin] = {}
        self._tool_registry = tool_registry

    def register(self, plugin: Plugin) -> None:
        kind = getattr(plugin, "kind", None)
        if kind not in set(PluginKind):
            raise PluginRegistrationError(f"Unknown plugin kind: {kind!r}")
        if plugin.id in self._plugins:
            raise PluginRegistrationError(f'Plugin "{plugin.id}" is already registered')

        if kind == PluginKind.LLM:
            if not isinstance(plugin, LLMPlugin):
                raise PluginRegistrationError(f'Plugin "{plugin.id}" is not an LLMPlugin')
        elif kind == PluginKind.COMM:
            if not isinstance(plugin, CommPlugin):
                raise PluginRegistrationError(f'Plugin "{plugin.id}" is not a CommPlugin')
        elif kind == PluginKind.TOOL:
            if not isinstance(plugin, ToolPlugin):
                raise PluginRegistrationError(f'Plugin "{plugin.id}" is not a ToolPlugin')
            if self._tool_registry is not None:
                self._register_tools(plugin)

        self._plugins[plugin.id] = plugin
        logger.info("Registered %s plugin %s", kind.value, plugin.id)

    def _register_tools(self, plugin: ToolPlugin) -> None:
        hooked = (
            type(plugin).before_tool_call is not ToolPlugin.before_tool_call
            or type(plugin).after_tool_call is not ToolPlugin.after_tool_call
        )
        for tool in plugin.tools:
            self._tool_registry.register(HookedTool(tool, plugin) if hooked else tool, plugin.id)

    async def unregister(self, plugin_id: str) -> bool:
        plugin = self._plugins.pop(plugin_id, None)
        if plugin is None:
            return False
        if isinstance(plugin, ToolPlugin) and self._tool_registry is not None:
            for tool in plugin.tools:
                self._tool_registry.unregister(tool.name)
        if isinstance(plugin, (CommPlugin, ToolPlugin)):
            await plugin.shutdown()
        return True

    def get(self, plugin_id: str) -> Plugin | None:
        return self._plugins.get(plugin_id)

    def all(self) -> list[Plugin]:
        return list(self._plugins.values())

    def llm_plugins(self) -> list[LLMPlugin]:
        return [p for p in self._plugins.values() if p.kind == PluginKind.LLM]

    def comm_plugins(self) -> list[CommPlugin]:
        return [p for p in self._plugins.values() if p.kind == PluginKind.COMM]

    def tool_plugins(self) -> list[ToolPlugin]:
        return [p for p in self._plugins.values() if p.kind == PluginKind.TOOL]

    def providers(self) -> list:
        """Providers of the registered LLM plugins, in registration order."""
        return [p.provider for p in self.llm_plugins()]

    async def shutdown(self) -> None:
        for plugin_id in list(self._plugins):
            await self.unregister(plugin_id)
