"""SQLite-based persistence store for conversations, agents, tasks, schedules and events."""

from __future__ import annotations

import asyncio
import enum
import json
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite

from megabot.bus.events import Event, EventType
from megabot.persistence.models import (
    AgentCreator,
    AgentDefinition,
    Conversation,
    Message,
    ScheduledTask,
    ScheduleStatus,
    Task,
    TaskStatus,
    utcnow,
)

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    title TEXT,
    agent_id TEXT,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    role TEXT NOT NULL CHECK(role IN ('user', 'assistant', 'system', 'tool')),
    content TEXT NOT NULL,
    tool_calls TEXT,
    token_count INTEGER,
    model TEXT,
    created_at TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, created_at);

CREATE TABLE IF NOT EXISTS agents (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    prompt TEXT NOT NULL,
    tools TEXT,
    model TEXT,
    tier TEXT CHECK(tier IN ('fast', 'standard', 'powerful')),
    created_by TEXT CHECK(created_by IN ('system', 'bot', 'user')),
    created_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    status TEXT NOT NULL
        CHECK(status IN ('pending', 'running', 'completed', 'failed', 'cancelled')),
    input TEXT,
    agent_id TEXT,
    conversation_id TEXT,
    origin_conversation_id TEXT,
    origin_message_id TEXT,
    result TEXT,
    error TEXT,
    attempts INTEGER DEFAULT 0,
    created_at TIMESTAMP NOT NULL,
    completed_at TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);

CREATE TABLE IF NOT EXISTS scheduled_tasks (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    schedule TEXT NOT NULL,
    kind TEXT NOT NULL CHECK(kind IN ('recurring', 'one_shot')),
    agent_id TEXT,
    input TEXT NOT NULL,
    status TEXT NOT NULL CHECK(status IN ('active', 'paused', 'completed')),
    last_run_at TIMESTAMP,
    next_run_at TIMESTAMP,
    created_at TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_scheduled_due ON scheduled_tasks(status, next_run_at);

CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    source TEXT NOT NULL,
    agent_id TEXT,
    conversation_id TEXT,
    data TEXT,
    level TEXT NOT NULL CHECK(level IN ('debug', 'info', 'warn', 'error')),
    timestamp TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_type ON events(type, timestamp);

CREATE TABLE IF NOT EXISTS memories (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
);
"""

_TERMINAL = tuple(s.value for s in TaskStatus if s.is_terminal)


class DeliveryOutcome(str, enum.Enum):
    SYNTHESIZED = "synthesized"
    NOTIFIED = "notified"
    ALREADY_DELIVERED = "already_delivered"


class Store:
    """Async SQLite store for persistence.

    All writes go through one connection guarded by an asyncio lock, so a
    multi-statement transaction is never committed halfway by a concurrent
    writer.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON")
        if self.db_path != ":memory:":
            await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.executescript(SCHEMA_SQL)
        await self._db.execute(
            "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Store not initialized. Call initialize() first.")
        return self._db

    # --- Helpers ---

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run statements atomically. Do not call other write methods inside."""
        async with self._lock:
            await self.db.execute("BEGIN IMMEDIATE")
            try:
                yield self.db
            except BaseException:
                await self.db.rollback()
                raise
            else:
                await self.db.commit()

    async def _write(self, sql: str, params: list[Any] | tuple[Any, ...] = ()) -> int:
        async with self._lock:
            cursor = await self.db.execute(sql, params)
            await self.db.commit()
            return cursor.rowcount

    async def _insert(self, table: str, row: dict, *, or_ignore: bool = False) -> int:
        cols = ", ".join(row.keys())
        placeholders = ", ".join(["?"] * len(row))
        verb = "INSERT OR IGNORE" if or_ignore else "INSERT"
        return await self._write(
            f"{verb} INTO {table} ({cols}) VALUES ({placeholders})",
            list(row.values()),
        )

    async def _update(self, table: str, row: dict) -> int:
        sets = ", ".join(f"{k} = ?" for k in row if k != "id")
        values = [v for k, v in row.items() if k != "id"]
        values.append(row["id"])
        return await self._write(f"UPDATE {table} SET {sets} WHERE id = ?", values)

    async def _fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> dict | None:
        cursor = await self.db.execute(sql, params)
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def _fetchall(self, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> list[dict]:
        cursor = await self.db.execute(sql, params)
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]

    # --- Conversations ---

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        await self._insert("conversations", conversation.to_row())
        return conversation

    async def ensure_conversation(self, conversation: Conversation) -> bool:
        """Insert the conversation unless its id exists. Returns True if created."""
        return await self._insert("conversations", conversation.to_row(), or_ignore=True) > 0

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        row = await self._fetchone("SELECT * FROM conversations WHERE id = ?", (conversation_id,))
        return Conversation.from_row(row) if row else None

    async def touch_conversation(self, conversation_id: str, when: datetime | None = None) -> None:
        await self._write(
            "UPDATE conversations SET updated_at = ? WHERE id = ?",
            ((when or utcnow()).isoformat(), conversation_id),
        )

    async def list_conversations(self, limit: int = 50) -> list[Conversation]:
        rows = await self._fetchall(
            "SELECT * FROM conversations ORDER BY updated_at DESC LIMIT ?", (limit,)
        )
        return [Conversation.from_row(r) for r in rows]

    # --- Messages ---

    async def add_message(self, message: Message) -> Message:
        await self._insert("messages", message.to_row())
        await self.touch_conversation(message.conversation_id, message.created_at)
        return message

    async def ensure_message(self, message: Message) -> bool:
        """Insert the message unless its id exists. Returns True if created."""
        return await self._insert("messages", message.to_row(), or_ignore=True) > 0

    async def get_message(self, message_id: str) -> Message | None:
        row = await self._fetchone("SELECT * FROM messages WHERE id = ?", (message_id,))
        return Message.from_row(row) if row else None

    async def get_messages(self, conversation_id: str, limit: int | None = None) -> list[Message]:
        """Messages of a conversation in creation order (oldest first)."""
        sql = "SELECT * FROM messages WHERE conversation_id = ? ORDER BY created_at ASC, rowid ASC"
        params: tuple[Any, ...] = (conversation_id,)
        if limit is not None:
            sql = (
                "SELECT * FROM (SELECT rowid AS _rid, * FROM messages WHERE conversation_id = ? "
                "ORDER BY created_at DESC, rowid DESC LIMIT ?) ORDER BY created_at ASC, _rid ASC"
            )
            params = (conversation_id, limit)
        rows = await self._fetchall(sql, params)
        return [Message.from_row(r) for r in rows]

    async def delete_messages_except(self, conversation_id: str, keep_ids: list[str]) -> int:
        placeholders = ", ".join(["?"] * len(keep_ids)) or "''"
        return await self._write(
            f"DELETE FROM messages WHERE conversation_id = ? AND id NOT IN ({placeholders})",
            [conversation_id, *keep_ids],
        )

    async def has_newer_user_message(self, conversation_id: str, after: datetime) -> bool:
        row = await self._fetchone(
            "SELECT 1 FROM messages WHERE conversation_id = ? AND role = 'user' "
            "AND created_at > ? LIMIT 1",
            (conversation_id, after.isoformat()),
        )
        return row is not None

    # --- Agents ---

    async def create_agent(self, agent: AgentDefinition) -> AgentDefinition:
        await self._insert("agents", agent.to_row())
        return agent

    async def get_agent(self, agent_id: str) -> AgentDefinition | None:
        row = await self._fetchone("SELECT * FROM agents WHERE id = ?", (agent_id,))
        return AgentDefinition.from_row(row) if row else None

    async def update_agent(self, agent: AgentDefinition) -> bool:
        return await self._update("agents", agent.to_row()) > 0

    async def list_agents(self, created_by: AgentCreator | None = None) -> list[AgentDefinition]:
        if created_by is not None:
            rows = await self._fetchall(
                "SELECT * FROM agents WHERE created_by = ? ORDER BY created_at ASC",
                (created_by.value,),
            )
        else:
            rows = await self._fetchall("SELECT * FROM agents ORDER BY created_at ASC")
        return [AgentDefinition.from_row(r) for r in rows]

    # --- Tasks ---

    async def create_task(self, task: Task) -> Task:
        await self._insert("tasks", task.to_row())
        return task

    async def get_task(self, task_id: str) -> Task | None:
        row = await self._fetchone("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return Task.from_row(row) if row else None

    async def update_task(self, task: Task) -> bool:
        """Write the task unless the stored row is already terminal.

        Returns False when the update was refused, which keeps status
        transitions monotonic.
        """
        row = task.to_row()
        sets = ", ".join(f"{k} = ?" for k in row if k != "id")
        values = [v for k, v in row.items() if k != "id"]
        placeholders = ", ".join(["?"] * len(_TERMINAL))
        updated = await self._write(
            f"UPDATE tasks SET {sets} WHERE id = ? AND status NOT IN ({placeholders})",
            [*values, task.id, *_TERMINAL],
        )
        return updated > 0

    async def claim_task(self, task_id: str, attempt: int) -> bool:
        """Mark the task running for ``attempt`` if no delivery holds it yet.

        A pending task, or a running one left by an earlier attempt, can be
        claimed. Returns False when another delivery already owns this or a
        later attempt, or the task is terminal.
        """
        claimed = await self._write(
            "UPDATE tasks SET status = ?, attempts = ? WHERE id = ? "
            "AND (status = ? OR (status = ? AND attempts < ?))",
            (
                TaskStatus.RUNNING.value,
                attempt,
                task_id,
                TaskStatus.PENDING.value,
                TaskStatus.RUNNING.value,
                attempt,
            ),
        )
        return claimed > 0

    async def list_tasks(self, status: TaskStatus | None = None, limit: int = 50) -> list[Task]:
        if status is not None:
            rows = await self._fetchall(
                "SELECT * FROM tasks WHERE status = ? ORDER BY created_at DESC LIMIT ?",
                (status.value, limit),
            )
        else:
            rows = await self._fetchall(
                "SELECT * FROM tasks ORDER BY created_at DESC LIMIT ?", (limit,)
            )
        return [Task.from_row(r) for r in rows]

    async def deliver_task_result(
        self,
        task_id: str,
        result: dict[str, Any],
        *,
        reply: Message | None,
        notification: Message,
        origin_time: datetime,
    ) -> DeliveryOutcome:
        """Complete a task and write its delivery message in one transaction.

        The reply is written only if the task is still open and no user
        message newer than ``origin_time`` exists in the reply's
        conversation; otherwise the notification is written instead. A task
        that is already terminal is left untouched.
        """
        now = utcnow()
        async with self.transaction() as db:
            cursor = await db.execute("SELECT status FROM tasks WHERE id = ?", (task_id,))
            row = await cursor.fetchone()
            if row is None or TaskStatus(row["status"]).is_terminal:
                return DeliveryOutcome.ALREADY_DELIVERED

            moved_on = True
            if reply is not None:
                cursor = await db.execute(
                    "SELECT 1 FROM messages WHERE conversation_id = ? AND role = 'user' "
                    "AND created_at > ? LIMIT 1",
                    (reply.conversation_id, origin_time.isoformat()),
                )
                moved_on = await cursor.fetchone() is not None

            message = reply if reply is not None and not moved_on else notification
            message.created_at = now
            row_data = message.to_row()
            await db.execute(
                f"INSERT INTO messages ({', '.join(row_data)}) "
                f"VALUES ({', '.join(['?'] * len(row_data))})",
                list(row_data.values()),
            )
            await db.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (now.isoformat(), message.conversation_id),
            )
            await db.execute(
                "UPDATE tasks SET status = ?, result = ?, error = NULL, completed_at = ? "
                "WHERE id = ?",
                (TaskStatus.COMPLETED.value, json.dumps(result), now.isoformat(), task_id),
            )
        return DeliveryOutcome.NOTIFIED if moved_on else DeliveryOutcome.SYNTHESIZED

    # --- Scheduled tasks ---

    async def create_scheduled_task(self, task: ScheduledTask) -> ScheduledTask:
        await self._insert("scheduled_tasks", task.to_row())
        return task

    async def get_scheduled_task(self, task_id: str) -> ScheduledTask | None:
        row = await self._fetchone("SELECT * FROM scheduled_tasks WHERE id = ?", (task_id,))
        return ScheduledTask.from_row(row) if row else None

    async def update_scheduled_task(self, task: ScheduledTask) -> bool:
        return await self._update("scheduled_tasks", task.to_row()) > 0

    async def delete_scheduled_task(self, task_id: str) -> bool:
        return await self._write("DELETE FROM scheduled_tasks WHERE id = ?", (task_id,)) > 0

    async def list_scheduled_tasks(
        self, status: ScheduleStatus | None = None
    ) -> list[ScheduledTask]:
        if status is not None:
            rows = await self._fetchall(
                "SELECT * FROM scheduled_tasks WHERE status = ? ORDER BY created_at ASC",
                (status.value,),
            )
        else:
            rows = await self._fetchall("SELECT * FROM scheduled_tasks ORDER BY created_at ASC")
        return [ScheduledTask.from_row(r) for r in rows]

    async def get_due_scheduled_tasks(self, now: datetime) -> list[ScheduledTask]:
        rows = await self._fetchall(
            "SELECT * FROM scheduled_tasks WHERE status = 'active' "
            "AND next_run_at IS NOT NULL AND next_run_at <= ? ORDER BY next_run_at ASC",
            (now.isoformat(),),
        )
        return [ScheduledTask.from_row(r) for r in rows]

    # --- Memories ---

    async def set_memory(self, key: str, value: str) -> None:
        now = utcnow().isoformat()
        await self._write(
            "INSERT INTO memories (key, value, created_at, updated_at) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
            (key, value, now, now),
        )

    async def search_memories(self, query: str | None = None) -> list[tuple[str, str]]:
        """(key, value) pairs whose key contains ``query``, case-insensitively."""
        if query and query.strip():
            rows = await self._fetchall(
                "SELECT key, value FROM memories WHERE instr(lower(key), lower(?)) > 0 "
                "ORDER BY key",
                (query.strip(),),
            )
        else:
            rows = await self._fetchall("SELECT key, value FROM memories ORDER BY key")
        return [(r["key"], r["value"]) for r in rows]

    # --- Events ---

    async def add_event(self, event: Event) -> None:
        await self._insert("events", event.to_row(), or_ignore=True)

    async def list_events(
        self,
        event_type: EventType | None = None,
        agent_id: str | None = None,
        conversation_id: str | None = None,
        limit: int = 100,
    ) -> list[Event]:
        clauses: list[str] = []
        params: list[Any] = []
        if event_type is not None:
            clauses.append("type = ?")
            params.append(event_type.value)
        if agent_id is not None:
            clauses.append("agent_id = ?")
            params.append(agent_id)
        if conversation_id is not None:
            clauses.append("conversation_id = ?")
            params.append(conversation_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        rows = await self._fetchall(
            f"SELECT * FROM events {where} ORDER BY timestamp DESC LIMIT ?", params
        )
        return [Event.from_row(r) for r in rows]


__all__ = ["DeliveryOutcome", "Store"]
