"""Data models for conversations, messages, agents, tasks, schedules and events."""

from __future__ import annotations

import enum
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union


def new_id() -> str:
    """Generate a new unique ID."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Return the current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def _parse_dt(value: Any) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class ModelTier(str, enum.Enum):
    FAST = "fast"
    STANDARD = "standard"
    POWERFUL = "powerful"


class AgentCreator(str, enum.Enum):
    SYSTEM = "system"
    BOT = "bot"
    USER = "user"


class TaskType(str, enum.Enum):
    AGENT = "agent"
    SCHEDULED = "scheduled"


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class ScheduleKind(str, enum.Enum):
    RECURRING = "recurring"
    ONE_SHOT = "one_shot"


class ScheduleStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    def add(self, other: TokenUsage) -> None:
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> dict[str, int]:
        return {"input_tokens": self.input_tokens, "output_tokens": self.output_tokens}


# --- Content blocks ---


@dataclass
class TextBlock:
    text: str
    type: str = field(default="text", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass
class ToolUseBlock:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    type: str = field(default="tool_use", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "id": self.id, "name": self.name, "input": self.input}


@dataclass
class ToolResultBlock:
    tool_use_id: str
    content: str
    is_error: bool = False
    type: str = field(default="tool_result", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "tool_use_id": self.tool_use_id,
            "content": self.content,
            "is_error": self.is_error,
        }


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]


def block_from_dict(data: dict[str, Any]) -> ContentBlock:
    kind = data.get("type")
    if kind == "text":
        return TextBlock(text=data.get("text", ""))
    if kind == "tool_use":
        return ToolUseBlock(id=data["id"], name=data["name"], input=data.get("input") or {})
    if kind == "tool_result":
        return ToolResultBlock(
            tool_use_id=data["tool_use_id"],
            content=data.get("content", ""),
            is_error=bool(data.get("is_error", False)),
        )
    raise ValueError(f"Unknown content block type: {kind!r}")


def dump_blocks(blocks: list[ContentBlock]) -> str:
    return json.dumps([b.to_dict() for b in blocks])


def load_blocks(raw: str) -> list[ContentBlock]:
    return [block_from_dict(b) for b in json.loads(raw)]


# --- Entities ---


@dataclass
class Conversation:
    id: str = field(default_factory=new_id)
    title: str | None = None
    agent_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "agent_id": self.agent_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Conversation:
        return cls(
            id=row["id"],
            title=row.get("title"),
            agent_id=row.get("agent_id"),
            created_at=_parse_dt(row.get("created_at")) or utcnow(),
            updated_at=_parse_dt(row.get("updated_at")) or utcnow(),
        )


@dataclass
class Message:
    id: str = field(default_factory=new_id)
    conversation_id: str = ""
    role: MessageRole = MessageRole.USER
    content: str = ""
    blocks: list[ContentBlock] | None = None
    token_count: int | None = None
    model: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    @staticmethod
    def from_text(conversation_id: str, role: MessageRole, text: str) -> Message:
        return Message(conversation_id=conversation_id, role=role, content=text)

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "role": self.role.value,
            "content": self.content,
            "tool_calls": dump_blocks(self.blocks) if self.blocks is not None else None,
            "token_count": self.token_count,
            "model": self.model,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Message:
        raw_blocks = row.get("tool_calls")
        return cls(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=MessageRole(row["role"]),
            content=row["content"],
            blocks=load_blocks(raw_blocks) if raw_blocks else None,
            token_count=row.get("token_count"),
            model=row.get("model"),
            created_at=_parse_dt(row.get("created_at")) or utcnow(),
        )


@dataclass
class AgentDefinition:
    id: str = field(default_factory=new_id)
    name: str = ""
    prompt: str = ""
    tools: list[str] = field(default_factory=list)
    model: str | None = None
    tier: ModelTier | None = None
    created_by: AgentCreator | None = None
    created_at: datetime = field(default_factory=utcnow)

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "prompt": self.prompt,
            "tools": json.dumps(self.tools),
            "model": self.model,
            "tier": self.tier.value if self.tier else None,
            "created_by": self.created_by.value if self.created_by else None,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> AgentDefinition:
        return cls(
            id=row["id"],
            name=row["name"],
            prompt=row["prompt"],
            tools=json.loads(row.get("tools") or "[]"),
            model=row.get("model"),
            tier=ModelTier(row["tier"]) if row.get("tier") else None,
            created_by=AgentCreator(row["created_by"]) if row.get("created_by") else None,
            created_at=_parse_dt(row.get("created_at")) or utcnow(),
        )

    def to_summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "tools": self.tools,
            "model": self.model,
            "tier": self.tier.value if self.tier else None,
            "created_by": self.created_by.value if self.created_by else None,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Task:
    """One background execution (dispatch record)."""

    id: str = field(default_factory=new_id)
    type: TaskType = TaskType.AGENT
    status: TaskStatus = TaskStatus.PENDING
    input: dict[str, Any] = field(default_factory=dict)
    agent_id: str | None = None
    conversation_id: str | None = None
    origin_conversation_id: str | None = None
    origin_message_id: str | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    attempts: int = 0
    created_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "status": self.status.value,
            "input": json.dumps(self.input),
            "agent_id": self.agent_id,
            "conversation_id": self.conversation_id,
            "origin_conversation_id": self.origin_conversation_id,
            "origin_message_id": self.origin_message_id,
            "result": json.dumps(self.result) if self.result is not None else None,
            "error": self.error,
            "attempts": self.attempts,
            "created_at": self.created_at.isoformat(),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Task:
        return cls(
            id=row["id"],
            type=TaskType(row["type"]),
            status=TaskStatus(row["status"]),
            input=json.loads(row.get("input") or "{}"),
            agent_id=row.get("agent_id"),
            conversation_id=row.get("conversation_id"),
            origin_conversation_id=row.get("origin_conversation_id"),
            origin_message_id=row.get("origin_message_id"),
            result=json.loads(row["result"]) if row.get("result") else None,
            error=row.get("error"),
            attempts=row.get("attempts") or 0,
            created_at=_parse_dt(row.get("created_at")) or utcnow(),
            completed_at=_parse_dt(row.get("completed_at")),
        )

    def to_summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "status": self.status.value,
            "agent_id": self.agent_id,
            "conversation_id": self.conversation_id,
            "origin_conversation_id": self.origin_conversation_id,
            "result": self.result,
            "error": self.error,
            "attempts": self.attempts,
            "created_at": self.created_at.isoformat(),
            "completed_at": _iso(self.completed_at),
        }


@dataclass
class ScheduledTask:
    id: str = field(default_factory=new_id)
    name: str = ""
    description: str | None = None
    schedule: str = ""
    kind: ScheduleKind = ScheduleKind.RECURRING
    agent_id: str | None = None
    input: str = ""
    status: ScheduleStatus = ScheduleStatus.ACTIVE
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "schedule": self.schedule,
            "kind": self.kind.value,
            "agent_id": self.agent_id,
            "input": self.input,
            "status": self.status.value,
            "last_run_at": _iso(self.last_run_at),
            "next_run_at": _iso(self.next_run_at),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ScheduledTask:
        return cls(
            id=row["id"],
            name=row["name"],
            description=row.get("description"),
            schedule=row["schedule"],
            kind=ScheduleKind(row["kind"]),
            agent_id=row.get("agent_id"),
            input=row.get("input") or "",
            status=ScheduleStatus(row["status"]),
            last_run_at=_parse_dt(row.get("last_run_at")),
            next_run_at=_parse_dt(row.get("next_run_at")),
            created_at=_parse_dt(row.get("created_at")) or utcnow(),
        )

    def to_summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "schedule": self.schedule,
            "kind": self.kind.value,
            "status": self.status.value,
            "agent_id": self.agent_id,
            "input": self.input if len(self.input) <= 200 else f"{self.input[:200]}...",
            "last_run_at": _iso(self.last_run_at),
            "next_run_at": _iso(self.next_run_at),
            "created_at": self.created_at.isoformat(),
        }
