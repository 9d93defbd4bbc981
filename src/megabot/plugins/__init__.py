"""Plugins: LLM providers, comm channels and tool bundles."""

from megabot.plugins.base import (
    CommPlugin,
    LLMPlugin,
    Plugin,
    PluginKind,
    ToolPlugin,
    WebhookCommPlugin,
)
from megabot.plugins.registry import PluginRegistry

__all__ = [
    "CommPlugin",
    "LLMPlugin",
    "Plugin",
    "PluginKind",
    "PluginRegistry",
    "ToolPlugin",
    "WebhookCommPlugin",
]
