"""Scheduler tools: create, list and delete scheduled tasks (cron and one-shot)."""

from __future__ import annotations

import logging
from datetime import tzinfo
from typing import Any

from megabot.bus import EventBus, EventType
from megabot.core.schedules import compute_next_run, validate_schedule
from megabot.errors import ScheduleError
from megabot.persistence.models import ScheduleKind, ScheduledTask, ScheduleStatus, utcnow
from megabot.persistence.store import Store
from megabot.plugins.base import ToolPlugin
from megabot.tools.base import BaseTool, PermissionLevel, ToolContext, ToolResult

logger = logging.getLogger(__name__)


class CreateScheduledTaskTool(BaseTool):
    name = "create_scheduled_task"
    description = (
        "Schedule a recurring or one-shot task. Recurring tasks use cron expressions "
        "(e.g. '0 9 * * *' for daily at 9am, '*/30 * * * *' for every 30 minutes). "
        "One-shot tasks use an ISO date string. The task input describes what to do, "
        "and an optional agent_id specifies which agent should run it. "
        "Tasks are executed in the background."
    )
    parameters = {
        "type": "object",
        "properties": {
            "name": {
                "type": "string",
                "description": "Short descriptive name for the task (e.g. 'morning-briefing').",
            },
            "description": {
                "type": "string",
                "description": "Optional longer description of what this task does.",
            },
            "schedule": {
                "type": "string",
                "description": (
                    "Cron expression for recurring tasks (e.g. '0 9 * * 1-5' for weekdays at 9am) "
                    "or ISO date string for one-shot tasks (e.g. '2025-06-01T14:00:00Z')."
                ),
            },
            "type": {
                "type": "string",
                "enum": [k.value for k in ScheduleKind],
                "description": "Whether this task repeats on a schedule or runs once.",
            },
            "input": {
                "type": "string",
                "description": "The task instruction: what should be done when this task triggers.",
            },
            "agent_id": {
                "type": "string",
                "description": "Optional agent ID to run this task. If omitted, the main bot handles it.",
            },
        },
        "required": ["name", "schedule", "type", "input"],
    }
    permissions = PermissionLevel.WRITE
    keywords = [
        "schedule",
        "cron",
        "recurring",
        "timer",
        "reminder",
        "periodic",
        "task",
        "automation",
        "routine",
    ]

    def __init__(self, store: Store, bus: EventBus | None = None, tz: tzinfo | None = None) -> None:
        self.store = store
        self.bus = bus
        self.tz = tz

    async def execute(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        schedule = str(params["schedule"]).strip()
        try:
            kind = ScheduleKind(params["type"])
        except ValueError:
            return ToolResult.fail(f'Invalid task type: "{params["type"]}"')

        now = utcnow()
        try:
            validate_schedule(schedule, kind, now)
            next_run = compute_next_run(schedule, kind, now, self.tz)
        except ScheduleError as e:
            return ToolResult.fail(str(e))

        task = await self.store.create_scheduled_task(
            ScheduledTask(
                name=params["name"],
                description=params.get("description"),
                schedule=schedule,
                kind=kind,
                agent_id=params.get("agent_id"),
                input=params["input"],
                status=ScheduleStatus.ACTIVE,
                next_run_at=next_run,
                created_at=now,
            )
        )
        if self.bus is not None:
            self.bus.emit(
                EventType.CRON_CREATED,
                "scheduler",
                {"scheduled_task_id": task.id, "name": task.name, "kind": kind.value},
                agent_id=task.agent_id,
                conversation_id=context.conversation_id,
            )

        if kind == ScheduleKind.RECURRING:
            message = f'Recurring task "{task.name}" scheduled with cron: {schedule}'
        else:
            message = f'One-shot task "{task.name}" scheduled for: {schedule}'
        return ToolResult.ok(
            {
                "id": task.id,
                "name": task.name,
                "type": kind.value,
                "schedule": schedule,
                "status": task.status.value,
                "next_run_at": next_run.isoformat() if next_run else None,
                "message": message,
            }
        )


class ListScheduledTasksTool(BaseTool):
    name = "list_scheduled_tasks"
    description = "List all scheduled tasks with their status, schedule, and last run time."
    parameters = {
        "type": "object",
        "properties": {
            "status": {
                "type": "string",
                "enum": [s.value for s in ScheduleStatus],
                "description": "Optional filter by status.",
            },
        },
        "required": [],
    }
    permissions = PermissionLevel.READ
    keywords = ["schedule", "cron", "list", "tasks", "recurring", "timer", "automation"]

    def __init__(self, store: Store) -> None:
        self.store = store

    async def execute(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        status = params.get("status")
        tasks = await self.store.list_scheduled_tasks(ScheduleStatus(status) if status else None)
        if not tasks:
            if status:
                return ToolResult.ok(f'No scheduled tasks with status "{status}".')
            return ToolResult.ok("No scheduled tasks found.")
        return ToolResult.ok([t.to_summary() for t in tasks])


class DeleteScheduledTaskTool(BaseTool):
    name = "delete_scheduled_task"
    description = "Delete a scheduled task by ID. The task will no longer be executed."
    parameters = {
        "type": "object",
        "properties": {
            "task_id": {
                "type": "string",
                "description": "The ID of the scheduled task to delete.",
            },
        },
        "required": ["task_id"],
    }
    permissions = PermissionLevel.WRITE
    keywords = ["schedule", "cron", "delete", "remove", "cancel", "stop", "task"]

    def __init__(self, store: Store) -> None:
        self.store = store

    async def execute(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        task_id = params["task_id"]
        existing = await self.store.get_scheduled_task(task_id)
        if existing is None:
            return ToolResult.fail(
                f'Scheduled task "{task_id}" not found. '
                "Use list_scheduled_tasks to see available tasks."
            )
        await self.store.delete_scheduled_task(task_id)
        return ToolResult.ok(f'Deleted scheduled task: "{existing.name}" ({task_id})')


class SchedulerPlugin(ToolPlugin):
    id = "scheduler"
    name = "Scheduler"
    description = "Create, list, and delete scheduled tasks (cron and one-shot)"

    def __init__(self, store: Store, bus: EventBus | None = None, tz: tzinfo | None = None) -> None:
        super().__init__(
            [
                CreateScheduledTaskTool(store, bus, tz),
                ListScheduledTasksTool(store),
                DeleteScheduledTaskTool(store),
            ]
        )

    async def after_tool_call(
        self, tool_name: str, params: dict[str, Any], context: ToolContext, result: ToolResult
    ) -> None:
        if not result.success:
            logger.warning("Scheduler tool %s failed: %s", tool_name, result.error)
        elif tool_name == "create_scheduled_task":
            logger.info("Scheduled task created: %s", params.get("name"))
        elif tool_name == "delete_scheduled_task":
            logger.info("Scheduled task deleted: %s", params.get("task_id"))
