"""Event types and the event record for the megabot event bus."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class EventType(str, Enum):
    """All event types in the system."""

    # Messages
    MESSAGE_RECEIVED = "message.received"
    MESSAGE_SENT = "message.sent"

    # LLM calls
    LLM_REQUEST = "llm.request"
    LLM_RESPONSE = "llm.response"
    LLM_ERROR = "llm.error"

    # Tool lifecycle
    TOOL_CALLED = "tool.called"
    TOOL_RESULT = "tool.result"
    TOOL_ERROR = "tool.error"

    # Spawned agents
    AGENT_SPAWNED = "agent.spawned"
    AGENT_COMPLETED = "agent.completed"
    AGENT_ERROR = "agent.error"

    # Background tasks
    TASK_DISPATCHED = "task.dispatched"
    TASK_COMPLETED = "task.completed"
    TASK_FAILED = "task.failed"
    TASK_RETRYING = "task.retrying"

    # Chat streams
    CHAT_COMPLETED = "chat.completed"
    CONVERSATION_CREATED = "conversation.created"

    # Scheduler
    CRON_TRIGGERED = "cron.triggered"
    CRON_CREATED = "cron.created"
    SCHEDULED_TASK_STARTED = "scheduled_task.started"
    SCHEDULED_TASK_COMPLETED = "scheduled_task.completed"

    # Notifications
    NOTIFICATION_SENT = "notification.sent"

    SYSTEM_INFO = "system.info"


class EventLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


@dataclass
class Event:
    """Write-once record of one orchestration step."""

    type: EventType
    source: str
    data: dict[str, Any] = field(default_factory=dict)
    level: EventLevel = EventLevel.INFO
    agent_id: str | None = None
    conversation_id: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "source": self.source,
            "agent_id": self.agent_id,
            "conversation_id": self.conversation_id,
            "data": self.data,
            "level": self.level.value,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_row(self) -> dict[str, Any]:
        row = self.to_dict()
        row["data"] = json.dumps(self.data, default=str)
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Event:
        return cls(
            id=row["id"],
            type=EventType(row["type"]),
            source=row["source"],
            agent_id=row.get("agent_id"),
            conversation_id=row.get("conversation_id"),
            data=json.loads(row.get("data") or "{}"),
            level=EventLevel(row["level"]),
            timestamp=datetime.fromisoformat(row["timestamp"]),
        )
