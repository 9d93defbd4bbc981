"""Notifications: fan-out to comm plugins plus the send_notification tool."""

from __future__ import annotations

import logging
from typing import Any

from megabot.bus import EventBus, EventType
from megabot.plugins.base import ToolPlugin
from megabot.plugins.registry import PluginRegistry
from megabot.tools.base import BaseTool, PermissionLevel, ToolContext, ToolResult

logger = logging.getLogger(__name__)

NOTIFICATION_CHANNEL = "notifications"


class NotificationCenter:
    """Publishes a notification on the bus and to every registered comm plugin.

    A failing channel is logged and skipped. Returns how many channels
    accepted the message.
    """

    def __init__(
        self, plugins: PluginRegistry, bus: EventBus, channel: str = NOTIFICATION_CHANNEL
    ) -> None:
        self.plugins = plugins
        self.bus = bus
        self.channel = channel

    async def notify(
        self,
        title: str,
        message: str,
        *,
        agent_id: str | None = None,
        conversation_id: str | None = None,
    ) -> int:
        self.bus.emit(
            EventType.NOTIFICATION_SENT,
            "notifications",
            {"title": title, "message": message},
            agent_id=agent_id,
            conversation_id=conversation_id,
        )
        content = f"**{title}**\n{message}"
        delivered = 0
        for plugin in self.plugins.comm_plugins():
            try:
                await plugin.send_message(self.channel, content)
                delivered += 1
            except Exception as e:
                logger.warning("Comm plugin %s failed to deliver %r: %s", plugin.id, title, e)
        return delivered


class SendNotificationTool(BaseTool):
    name = "send_notification"
    description = (
        "Send a notification to the user through every connected channel. Use this to alert "
        "the user about completed tasks, important updates, reminders, or anything that needs "
        "their attention, especially from background agents or scheduled tasks."
    )
    parameters = {
        "type": "object",
        "properties": {
            "title": {"type": "string", "description": "The notification title."},
            "message": {"type": "string", "description": "The notification body text."},
        },
        "required": ["title", "message"],
    }
    permissions = PermissionLevel.WRITE
    keywords = [
        "notification",
        "notify",
        "alert",
        "remind",
        "reminder",
        "popup",
        "attention",
        "message",
    ]

    def __init__(self, center: NotificationCenter) -> None:
        self.center = center

    async def execute(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        title = params["title"]
        delivered = await self.center.notify(
            title,
            params["message"],
            agent_id=context.agent_id,
            conversation_id=context.conversation_id,
        )
        if delivered:
            return ToolResult.ok(f'Notification sent: "{title}" ({delivered} channel(s))')
        return ToolResult.ok(f'Notification sent: "{title}"')


class NotificationsPlugin(ToolPlugin):
    id = "notifications"
    name = "Notifications"
    description = "Send notifications to the user"

    def __init__(self, center: NotificationCenter) -> None:
        super().__init__([SendNotificationTool(center)])

    async def after_tool_call(
        self, tool_name: str, params: dict[str, Any], context: ToolContext, result: ToolResult
    ) -> None:
        if result.success:
            logger.debug("Notification sent: %s", params.get("title"))
        else:
            logger.warning("Notification %s failed: %s", params.get("title"), result.error)
