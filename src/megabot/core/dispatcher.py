"""BackgroundDispatcher: spawned agents, the scheduler tick and scheduled-task runs."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone, tzinfo
from typing import Any, Awaitable, Callable

from megabot.bus import EventBus, EventLevel, EventType
from megabot.core.history import messages_to_history, truncate_history
from megabot.core.jobs import JobContext, JobQueue
from megabot.core.prompts import build_system_prompt
from megabot.core.runner import BASE_TOOL_NAMES, AgentRunner, AgentRunParams, AgentRunResult
from megabot.core.schedules import compute_next_run
from megabot.errors import AgentNotFoundError, DispatchError, TaskNotFoundError
from megabot.persistence.models import (
    AgentDefinition,
    Conversation,
    Message,
    MessageRole,
    ScheduleKind,
    ScheduleStatus,
    ScheduledTask,
    Task,
    TaskStatus,
    TaskType,
    TokenUsage,
    utcnow,
)
from megabot.persistence.store import DeliveryOutcome, Store
from megabot.tools.base import ToolContext

logger = logging.getLogger(__name__)

AGENT_SPAWN_JOB = "agent.spawn"
SCHEDULED_TASK_JOB = "scheduled-task.run"

_TASK_NAMESPACE = uuid.UUID("6f1d2c8e-5b7a-4e8f-9a51-3c0d7e2b9f14")

Notifier = Callable[[str, str], Awaitable[Any]]


def task_scoped_id(task_id: str, purpose: str) -> str:
    """Stable id derived from a task id, so retries reuse the same rows."""
    return str(uuid.uuid5(_TASK_NAMESPACE, f"{task_id}:{purpose}"))


def synthesis_prompt(agent_name: str, result: AgentRunResult) -> str:
    return (
        f'[Agent "{agent_name}" has completed the task you dispatched. '
        f"It made {result.tool_call_count} tool call(s). Here is its output:]\n\n"
        f"{result.text}\n\n"
        "[Please synthesize this into a natural response for the user. "
        "Reference the agent's findings directly. Don't say \"the agent found\", "
        "just present the information as your own answer.]"
    )


def scheduled_task_prompt(task_name: str, task_input: str) -> str:
    return (
        f'[Scheduled Task: "{task_name}"]\n\n'
        f"{task_input}\n\n"
        "[You are executing this task in the background. Use your tools to ACTUALLY PERFORM "
        "the requested action. Do NOT just describe what you would do. "
        "If the task involves communicating with the user, use send_notification. "
        "If you need context from previous conversations, use list_conversations and "
        "get_conversation_messages.]"
    )


class BackgroundDispatcher:
    """Turns spawns and due schedules into retried, idempotent agent runs.

    Every background execution is keyed by its Task row. Redelivering a job
    for a task that is already terminal does nothing, and a retry reuses the
    conversation derived from the task id.
    """

    def __init__(
        self,
        store: Store,
        runner: AgentRunner,
        bus: EventBus,
        jobs: JobQueue,
        notifier: Notifier | None = None,
        retries: int = 1,
        history_char_budget: int = 400_000,
        schedule_tz: tzinfo | None = None,
    ) -> None:
        self.store = store
        self.runner = runner
        self.bus = bus
        self.jobs = jobs
        self.notifier = notifier
        self.history_char_budget = history_char_budget
        self.schedule_tz = schedule_tz
        self._tick_lock = asyncio.Lock()
        jobs.register(AGENT_SPAWN_JOB, self._spawn_job, retries=retries)
        jobs.register(SCHEDULED_TASK_JOB, self._scheduled_job, retries=retries)

    # --- Entry points ---

    async def spawn_agent(
        self, agent_id: str, task_input: str, context: ToolContext | None = None
    ) -> str:
        """Create a pending task for ``agent_id`` and queue its execution."""
        context = context or ToolContext()
        agent = await self.store.get_agent(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)

        task = await self.store.create_task(
            Task(
                type=TaskType.AGENT,
                status=TaskStatus.PENDING,
                input={"input": task_input},
                agent_id=agent_id,
                origin_conversation_id=context.conversation_id,
                origin_message_id=context.message_id,
            )
        )
        self.jobs.send(AGENT_SPAWN_JOB, {"task_id": task.id})
        self.bus.emit(
            EventType.TASK_DISPATCHED,
            "dispatcher",
            {"task_id": task.id, "agent_name": agent.name},
            agent_id=agent_id,
            conversation_id=context.conversation_id,
        )
        logger.info("Spawned agent %s as task %s", agent.name, task.id)
        return task.id

    async def check_due_tasks(self, now: datetime | None = None) -> int:
        """Fire every active scheduled task whose next run has passed.

        Returns the number of tasks dispatched.
        """
        now = now or utcnow()
        async with self._tick_lock:
            due = await self.store.get_due_scheduled_tasks(now)
            if not due:
                return 0
            logger.info("Found %d due scheduled task(s)", len(due))

            dispatched = 0
            for scheduled in due:
                try:
                    if await self._fire(scheduled, now):
                        dispatched += 1
                except Exception:
                    logger.exception("Failed to dispatch scheduled task %s", scheduled.id)
            logger.info("Scheduled tasks dispatched: %d", dispatched)
            return dispatched

    async def _fire(self, scheduled: ScheduledTask, now: datetime) -> bool:
        if scheduled.agent_id:
            agent = await self.store.get_agent(scheduled.agent_id)
            if agent is None:
                logger.warning(
                    "Scheduled task %s references missing agent %s, skipping",
                    scheduled.id,
                    scheduled.agent_id,
                )
                return False
            conversation_id, message_id = await self._create_scheduled_conversation(
                scheduled.name, scheduled.input
            )
            task = await self.store.create_task(
                Task(
                    type=TaskType.AGENT,
                    input={"input": scheduled.input, "scheduled_task_id": scheduled.id},
                    agent_id=agent.id,
                    origin_conversation_id=conversation_id,
                    origin_message_id=message_id,
                )
            )
            self.jobs.send(AGENT_SPAWN_JOB, {"task_id": task.id})
        else:
            task = await self.store.create_task(
                Task(
                    type=TaskType.SCHEDULED,
                    input={
                        "scheduled_task_id": scheduled.id,
                        "task_name": scheduled.name,
                        "input": scheduled.input,
                    },
                )
            )
            self.jobs.send(SCHEDULED_TASK_JOB, {"task_id": task.id})

        scheduled.last_run_at = now
        if scheduled.kind == ScheduleKind.ONE_SHOT:
            scheduled.status = ScheduleStatus.COMPLETED
            scheduled.next_run_at = None
        else:
            scheduled.next_run_at = compute_next_run(
                scheduled.schedule, scheduled.kind, now, self.schedule_tz
            )
        await self.store.update_scheduled_task(scheduled)

        self.bus.emit(
            EventType.CRON_TRIGGERED,
            "scheduler",
            {
                "scheduled_task_id": scheduled.id,
                "task_name": scheduled.name,
                "kind": scheduled.kind.value,
                "has_agent": scheduled.agent_id is not None,
                "task_id": task.id,
            },
        )
        return True

    async def _create_scheduled_conversation(self, name: str, task_input: str) -> tuple[str, str]:
        title = f"Scheduled: {name}"
        conversation = await self.store.create_conversation(Conversation(title=title))
        self.bus.emit(
            EventType.CONVERSATION_CREATED,
            "scheduler",
            {"title": title},
            conversation_id=conversation.id,
        )
        seed = await self.store.add_message(
            Message.from_text(conversation.id, MessageRole.USER, task_input)
        )
        return conversation.id, seed.id

    # --- Job handlers ---

    async def _spawn_job(self, data: dict[str, Any], context: JobContext) -> None:
        await self._guarded(data["task_id"], context, self.handle_spawn)

    async def _scheduled_job(self, data: dict[str, Any], context: JobContext) -> None:
        await self._guarded(data["task_id"], context, self.run_scheduled_task)

    async def _guarded(
        self,
        task_id: str,
        context: JobContext,
        handler: Callable[[Task, JobContext], Awaitable[None]],
    ) -> None:
        task = await self.store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        if task.status.is_terminal:
            logger.info("Task %s already %s, skipping redelivery", task_id, task.status.value)
            return
        if not await self.store.claim_task(task_id, context.attempt):
            logger.info("Task %s is held by another delivery, skipping", task_id)
            return
        task.status = TaskStatus.RUNNING
        task.attempts = context.attempt
        try:
            await handler(task, context)
        except Exception as e:
            await self._record_failure(task_id, e, context)
            raise

    async def _record_failure(self, task_id: str, error: Exception, context: JobContext) -> None:
        task = await self.store.get_task(task_id)
        if task is None or task.status.is_terminal:
            return
        task.error = str(error) or type(error).__name__
        task.attempts = max(task.attempts, context.attempt)
        final = context.is_last_attempt or isinstance(error, AgentNotFoundError)
        if not final:
            task.status = TaskStatus.RUNNING
            await self.store.update_task(task)
            self.bus.emit(
                EventType.TASK_RETRYING,
                "dispatcher",
                {"task_id": task.id, "attempt": context.attempt, "error": task.error},
                level=EventLevel.WARN,
                agent_id=task.agent_id,
            )
            return

        task.status = TaskStatus.FAILED
        task.completed_at = utcnow()
        if not await self.store.update_task(task):
            return
        logger.error("Task %s failed: %s", task.id, task.error)
        payload = {"task_id": task.id, "error": task.error, "attempts": task.attempts}
        if task.type == TaskType.AGENT:
            self.bus.emit(
                EventType.AGENT_ERROR,
                f"agent:{task.agent_id}",
                payload,
                level=EventLevel.ERROR,
                agent_id=task.agent_id,
                conversation_id=task.origin_conversation_id,
            )
        self.bus.emit(
            EventType.TASK_FAILED,
            "dispatcher",
            payload,
            level=EventLevel.ERROR,
            agent_id=task.agent_id,
            conversation_id=task.origin_conversation_id,
        )
        if task.origin_conversation_id:
            await self.store.add_message(
                Message(
                    conversation_id=task.origin_conversation_id,
                    role=MessageRole.SYSTEM,
                    content=json.dumps(
                        {
                            "type": "agent_error",
                            "task_id": task.id,
                            "agent_id": task.agent_id,
                            "error": task.error,
                        }
                    ),
                )
            )
        await self._notify("Background task failed", task.error)

    async def handle_spawn(self, task: Task, context: JobContext) -> None:
        """Run a spawned agent and deliver its result to the origin conversation."""
        agent = await self.store.get_agent(task.agent_id or "")
        if agent is None:
            raise AgentNotFoundError(task.agent_id or "")

        task_input = str(task.input.get("input", ""))
        result = await self._execute_once(
            task,
            context,
            title=f"Agent: {agent.name}",
            agent=agent,
            seed_text=task_input,
            run_params=AgentRunParams(
                system_prompt=build_system_prompt(tools=list(BASE_TOOL_NAMES), agent_prompt=agent.prompt),
                initial_messages=[{"role": "user", "content": task_input}],
                tools=list(agent.tools),
                model_id=agent.model,
                tier=agent.tier,
                agent_id=agent.id,
                task_id=task.id,
            ),
            spawned_event=EventType.AGENT_SPAWNED,
        )
        await self._deliver(task, agent, result)

    async def run_scheduled_task(self, task: Task, context: JobContext) -> None:
        """Run the default assistant against a scheduled task's input."""
        task_name = str(task.input.get("task_name", ""))
        task_input = str(task.input.get("input", ""))
        result = await self._execute_once(
            task,
            context,
            title=f"Scheduled: {task_name}",
            agent=None,
            seed_text=task_input,
            run_params=AgentRunParams(
                system_prompt=build_system_prompt(tools=list(BASE_TOOL_NAMES)),
                initial_messages=[
                    {"role": "user", "content": scheduled_task_prompt(task_name, task_input)}
                ],
                tools=list(BASE_TOOL_NAMES),
                task_id=task.id,
            ),
            spawned_event=EventType.SCHEDULED_TASK_STARTED,
        )

        task = await self.store.get_task(task.id) or task
        task.status = TaskStatus.COMPLETED
        task.result = _result_to_dict(result)
        task.error = None
        task.completed_at = utcnow()
        if not await self.store.update_task(task):
            return

        await self._notify(
            f"Scheduled: {task_name}",
            f"Task completed with {result.tool_call_count} action(s)."
            if result.tool_call_count
            else "Task completed.",
        )
        self.bus.emit(
            EventType.SCHEDULED_TASK_COMPLETED,
            "scheduler",
            {
                "scheduled_task_id": task.input.get("scheduled_task_id"),
                "task_name": task_name,
                "task_id": task.id,
                "tool_call_count": result.tool_call_count,
                "text_length": len(result.text),
            },
            conversation_id=task.conversation_id,
        )
        self.bus.emit(
            EventType.TASK_COMPLETED,
            "dispatcher",
            {"task_id": task.id, "type": task.type.value},
            conversation_id=task.conversation_id,
        )

    # --- Steps ---

    async def _execute_once(
        self,
        task: Task,
        context: JobContext,
        *,
        title: str,
        agent: AgentDefinition | None,
        seed_text: str,
        run_params: AgentRunParams,
        spawned_event: EventType,
    ) -> AgentRunResult:
        """Run the agent in the task's own conversation, at most once to success.

        A stored result from an earlier attempt is reused so that a failed
        delivery does not rerun the agent.
        """
        if task.result is not None:
            return _result_from_dict(task.result)

        conversation_id = task.conversation_id or task_scoped_id(task.id, "conversation")
        seed_id = task_scoped_id(task.id, "seed")
        created = await self.store.ensure_conversation(
            Conversation(id=conversation_id, title=title, agent_id=agent.id if agent else None)
        )
        if created:
            self.bus.emit(
                EventType.CONVERSATION_CREATED,
                "dispatcher",
                {"title": title, "task_id": task.id},
                agent_id=agent.id if agent else None,
                conversation_id=conversation_id,
            )
        await self.store.ensure_message(
            Message(
                id=seed_id,
                conversation_id=conversation_id,
                role=MessageRole.USER,
                content=seed_text,
            )
        )
        if not created and context.attempt > 1:
            # Drop whatever a previous failed attempt left behind
            await self.store.delete_messages_except(conversation_id, [seed_id])

        task.status = TaskStatus.RUNNING
        task.conversation_id = conversation_id
        task.attempts = context.attempt
        if not await self.store.update_task(task):
            raise DispatchError(f"Task {task.id} was closed concurrently")

        self.bus.emit(
            spawned_event,
            f"agent:{agent.id}" if agent else "scheduler",
            {
                "task_id": task.id,
                "agent_name": agent.name if agent else None,
                "input": seed_text,
                "attempt": context.attempt,
            },
            agent_id=agent.id if agent else None,
            conversation_id=task.origin_conversation_id or conversation_id,
        )

        run_params.conversation_id = conversation_id
        run_params.message_id = seed_id
        result = await self.runner.run(run_params)
        if result.error:
            raise DispatchError(result.error)

        logger.info(
            "Task %s executed: tool_calls=%d length=%d",
            task.id,
            result.tool_call_count,
            len(result.text),
        )
        task.result = _result_to_dict(result)
        await self.store.update_task(task)
        return result

    async def _deliver(self, task: Task, agent: AgentDefinition, result: AgentRunResult) -> None:
        result_payload = _result_to_dict(result)
        origin_id = task.origin_conversation_id
        if not origin_id or await self.store.get_conversation(origin_id) is None:
            task.status = TaskStatus.COMPLETED
            task.result = result_payload
            task.error = None
            task.completed_at = utcnow()
            if await self.store.update_task(task):
                await self._notify(f"Agent {agent.name} finished", result.text[:500])
                self._emit_completed(task, agent, result)
            return

        origin_time = datetime.fromtimestamp(0, tz=timezone.utc)
        if task.origin_message_id:
            origin = await self.store.get_message(task.origin_message_id)
            if origin is not None:
                origin_time = origin.created_at

        reply: Message | None = None
        if not await self.store.has_newer_user_message(origin_id, origin_time):
            reply = await self._synthesize(origin_id, agent, result)
        else:
            logger.info("User moved on, posting notification for task %s", task.id)

        notification = Message(
            conversation_id=origin_id,
            role=MessageRole.SYSTEM,
            content=json.dumps(
                {
                    "type": "agent_result",
                    "task_id": task.id,
                    "agent_id": agent.id,
                    "agent_name": agent.name,
                    "summary": result.text[:500],
                }
            ),
        )
        outcome = await self.store.deliver_task_result(
            task.id,
            result_payload,
            reply=reply,
            notification=notification,
            origin_time=origin_time,
        )
        if outcome == DeliveryOutcome.ALREADY_DELIVERED:
            logger.info("Task %s was already delivered", task.id)
            return
        delivered = reply if outcome == DeliveryOutcome.SYNTHESIZED else notification
        self.bus.emit(
            EventType.MESSAGE_SENT,
            "dispatcher",
            {"message_id": delivered.id, "role": delivered.role.value, "task_id": task.id},
            agent_id=agent.id,
            conversation_id=origin_id,
        )
        if outcome == DeliveryOutcome.NOTIFIED:
            await self._notify(f"Agent {agent.name} finished", result.text[:500])
        self._emit_completed(task, agent, result, outcome=outcome)

    async def _synthesize(
        self, conversation_id: str, agent: AgentDefinition, result: AgentRunResult
    ) -> Message | None:
        rows = await self.store.get_messages(conversation_id)
        history = truncate_history(messages_to_history(rows), self.history_char_budget)
        history.append({"role": "user", "content": synthesis_prompt(agent.name, result)})

        synthesized = await self.runner.run(
            AgentRunParams(
                system_prompt=build_system_prompt(tools=list(BASE_TOOL_NAMES)),
                initial_messages=history,
                tools=list(BASE_TOOL_NAMES),
            )
        )
        if synthesized.error or not synthesized.text:
            logger.warning(
                "Synthesis for %s failed (%s), falling back to notification",
                conversation_id,
                synthesized.error or "empty response",
            )
            return None
        return Message(
            conversation_id=conversation_id,
            role=MessageRole.ASSISTANT,
            content=synthesized.text,
            token_count=synthesized.usage.total or None,
        )

    def _emit_completed(
        self,
        task: Task,
        agent: AgentDefinition,
        result: AgentRunResult,
        outcome: DeliveryOutcome | None = None,
    ) -> None:
        self.bus.emit(
            EventType.AGENT_COMPLETED,
            f"agent:{agent.id}",
            {
                "agent_name": agent.name,
                "task_id": task.id,
                "tool_call_count": result.tool_call_count,
                "text_length": len(result.text),
                "delivery": outcome.value if outcome else "notification",
            },
            agent_id=agent.id,
            conversation_id=task.origin_conversation_id,
        )
        self.bus.emit(
            EventType.TASK_COMPLETED,
            "dispatcher",
            {"task_id": task.id, "type": task.type.value},
            agent_id=agent.id,
            conversation_id=task.origin_conversation_id,
        )

    async def _notify(self, title: str, message: str) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier(title, message)
        except Exception:
            logger.warning("Notification %r failed", title, exc_info=True)


def _result_to_dict(result: AgentRunResult) -> dict[str, Any]:
    return {
        "text": result.text,
        "tool_call_count": result.tool_call_count,
        "usage": result.usage.to_dict(),
    }


def _result_from_dict(data: dict[str, Any]) -> AgentRunResult:
    usage = data.get("usage") or {}
    return AgentRunResult(
        text=data.get("text", ""),
        tool_call_count=data.get("tool_call_count", 0),
        usage=TokenUsage(
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
        ),
    )
