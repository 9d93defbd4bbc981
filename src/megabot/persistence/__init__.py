"""Persistence layer: dataclass models and the aiosqlite store."""

from megabot.persistence.models import (
    AgentCreator,
    AgentDefinition,
    Conversation,
    Message,
    MessageRole,
    ModelTier,
    ScheduledTask,
    ScheduleKind,
    ScheduleStatus,
    Task,
    TaskStatus,
    TaskType,
    TokenUsage,
)
from megabot.persistence.store import DeliveryOutcome, Store

__all__ = [
    "AgentCreator",
    "AgentDefinition",
    "Conversation",
    "DeliveryOutcome",
    "Message",
    "MessageRole",
    "ModelTier",
    "ScheduledTask",
    "ScheduleKind",
    "ScheduleStatus",
    "Store",
    "Task",
    "TaskStatus",
    "TaskType",
    "TokenUsage",
]
