"""Plugin shapes: a closed union of LLM, comm and tool plugins."""

from __future__ import annotations

import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Union

import httpx

from megabot.providers.base import BaseProvider
from megabot.tools.base import BaseTool, ToolContext, ToolResult

logger = logging.getLogger(__name__)


class PluginKind(str, enum.Enum):
    LLM = "llm"
    COMM = "comm"
    TOOL = "tool"


@dataclass
class LLMPlugin:
    """Exposes one model provider to the router."""

    provider: BaseProvider
    description: str = ""
    kind: PluginKind = field(default=PluginKind.LLM, init=False)

    @property
    def id(self) -> str:
        return self.provider.id

    @property
    def name(self) -> str:
        return self.provider.name


class CommPlugin(ABC):
    """Out-of-band message channel (notifications, chat bridges)."""

    id: str = ""
    name: str = ""
    description: str = ""
    kind: PluginKind = PluginKind.COMM

    @abstractmethod
    async def send_message(self, channel_id: str, content: str) -> None:
        ...

    async def shutdown(self) -> None:
        pass


class ToolPlugin:
    """A bundle of tools registered together, with optional call hooks.

    Override ``before_tool_call`` / ``after_tool_call`` to observe calls.
    An exception from ``before_tool_call`` fails the call; one from
    ``after_tool_call`` is logged and ignored.
    """

    id: str = ""
    name: str = ""
    description: str = ""
    kind: PluginKind = PluginKind.TOOL

    def __init__(self, tools: list[BaseTool] | None = None) -> None:
        self.tools: list[BaseTool] = list(tools or [])

    async def before_tool_call(
        self, tool_name: str, params: dict[str, Any], context: ToolContext
    ) -> None:
        pass

    async def after_tool_call(
        self, tool_name: str, params: dict[str, Any], context: ToolContext, result: ToolResult
    ) -> None:
        pass

    async def shutdown(self) -> None:
        pass


Plugin = Union[LLMPlugin, CommPlugin, ToolPlugin]


class WebhookCommPlugin(CommPlugin):
    """Posts notifications as JSON to an HTTP endpoint."""

    id = "webhook"
    name = "Webhook"
    description = "Deliver notifications to a webhook URL"

    def __init__(self, url: str, client: httpx.AsyncClient | None = None) -> None:
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=10.0)

    async def send_message(self, channel_id: str, content: str) -> None:
        response = await self._client.post(
            self.url, json={"channel": channel_id, "content": content}
        )
        response.raise_for_status()

    async def shutdown(self) -> None:
        await self._client.aclose()
