"""Tests for the aiosqlite store."""

from __future__ import annotations

from datetime import timedelta

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
    TextBlock,
    ToolUseBlock,
    utcnow,
)
from megabot.persistence.store import DeliveryOutcome
from megabot.bus import Event, EventType


class TestConversations:
    async def test_ensure_is_idempotent(self, store):
        conv = Conversation(id="fixed", title="first")
        assert await store.ensure_conversation(conv) is True
        assert await store.ensure_conversation(Conversation(id="fixed", title="second")) is False
        assert (await store.get_conversation("fixed")).title == "first"

    async def test_list_orders_by_activity(self, store):
        old = await store.create_conversation(Conversation(title="old"))
        new = await store.create_conversation(Conversation(title="new"))
        await store.add_message(Message.from_text(old.id, MessageRole.USER, "bump"))

        listed = await store.list_conversations()
        assert [c.id for c in listed] == [old.id, new.id]


class TestMessages:
    async def test_blocks_round_trip(self, store, conversation):
        await store.add_message(
            Message(
                conversation_id=conversation.id,
                role=MessageRole.ASSISTANT,
                content="calling",
                blocks=[TextBlock(text="calling"), ToolUseBlock(id="t1", name="echo", input={"x": 1})],
            )
        )
        [message] = await store.get_messages(conversation.id)
        assert isinstance(message.blocks[1], ToolUseBlock)
        assert message.blocks[1].input == {"x": 1}

    async def test_limit_returns_most_recent_oldest_first(self, store, conversation):
        for i in range(5):
            await store.add_message(Message.from_text(conversation.id, MessageRole.USER, str(i)))
        messages = await store.get_messages(conversation.id, limit=2)
        assert [m.content for m in messages] == ["3", "4"]

    async def test_delete_except(self, store, conversation):
        keep = await store.add_message(Message.from_text(conversation.id, MessageRole.USER, "seed"))
        await store.add_message(Message.from_text(conversation.id, MessageRole.ASSISTANT, "stale"))
        assert await store.delete_messages_except(conversation.id, [keep.id]) == 1
        assert [m.id for m in await store.get_messages(conversation.id)] == [keep.id]

    async def test_has_newer_user_message(self, store, conversation):
        first = await store.add_message(Message.from_text(conversation.id, MessageRole.USER, "a"))
        await store.add_message(Message.from_text(conversation.id, MessageRole.ASSISTANT, "b"))
        assert await store.has_newer_user_message(conversation.id, first.created_at) is False

        await store.add_message(Message.from_text(conversation.id, MessageRole.USER, "c"))
        assert await store.has_newer_user_message(conversation.id, first.created_at) is True


class TestAgents:
    async def test_create_and_filter(self, store):
        await store.create_agent(
            AgentDefinition(name="bot-made", prompt="p", tools=["echo"], created_by=AgentCreator.BOT)
        )
        user = await store.create_agent(
            AgentDefinition(
                name="mine", prompt="p", tier=ModelTier.FAST, created_by=AgentCreator.USER
            )
        )

        [only] = await store.list_agents(AgentCreator.USER)
        assert only.id == user.id
        assert only.tier == ModelTier.FAST
        assert len(await store.list_agents()) == 2


class TestTasks:
    async def test_update_is_monotonic(self, store):
        task = await store.create_task(Task(input={"input": "x"}))
        task.status = TaskStatus.RUNNING
        assert await store.update_task(task) is True

        task.status = TaskStatus.COMPLETED
        assert await store.update_task(task) is True

        task.status = TaskStatus.RUNNING
        assert await store.update_task(task) is False
        assert (await store.get_task(task.id)).status == TaskStatus.COMPLETED

    async def test_claim_is_exclusive_per_attempt(self, store):
        task = await store.create_task(Task(input={"input": "x"}))

        assert await store.claim_task(task.id, 1) is True
        assert await store.claim_task(task.id, 1) is False
        stored = await store.get_task(task.id)
        assert stored.status == TaskStatus.RUNNING
        assert stored.attempts == 1

        # A later attempt of the same delivery takes over
        assert await store.claim_task(task.id, 2) is True
        assert (await store.get_task(task.id)).attempts == 2

        stored.status = TaskStatus.COMPLETED
        await store.update_task(stored)
        assert await store.claim_task(task.id, 3) is False

    async def test_list_by_status(self, store):
        await store.create_task(Task())
        failed = await store.create_task(Task(status=TaskStatus.FAILED))
        [only] = await store.list_tasks(TaskStatus.FAILED)
        assert only.id == failed.id


class TestDeliverTaskResult:
    async def _setup(self, store, conversation):
        origin = await store.add_message(
            Message.from_text(conversation.id, MessageRole.USER, "research this")
        )
        task = await store.create_task(
            Task(
                status=TaskStatus.RUNNING,
                origin_conversation_id=conversation.id,
                origin_message_id=origin.id,
            )
        )
        reply = Message.from_text(conversation.id, MessageRole.ASSISTANT, "Here is what I found")
        notification = Message.from_text(conversation.id, MessageRole.SYSTEM, '{"type": "agent_result"}')
        return origin, task, reply, notification

    async def test_synthesized_reply(self, store, conversation):
        origin, task, reply, notification = await self._setup(store, conversation)

        outcome = await store.deliver_task_result(
            task.id, {"text": "x"}, reply=reply, notification=notification, origin_time=origin.created_at
        )

        assert outcome == DeliveryOutcome.SYNTHESIZED
        messages = await store.get_messages(conversation.id)
        assert messages[-1].content == "Here is what I found"
        stored = await store.get_task(task.id)
        assert stored.status == TaskStatus.COMPLETED
        assert stored.result == {"text": "x"}
        assert stored.completed_at is not None

    async def test_user_moved_on(self, store, conversation):
        origin, task, reply, notification = await self._setup(store, conversation)
        await store.add_message(Message.from_text(conversation.id, MessageRole.USER, "never mind"))

        outcome = await store.deliver_task_result(
            task.id, {}, reply=reply, notification=notification, origin_time=origin.created_at
        )

        assert outcome == DeliveryOutcome.NOTIFIED
        messages = await store.get_messages(conversation.id)
        assert messages[-1].role == MessageRole.SYSTEM
        assert all(m.content != "Here is what I found" for m in messages)

    async def test_without_reply_posts_notification(self, store, conversation):
        origin, task, _, notification = await self._setup(store, conversation)
        outcome = await store.deliver_task_result(
            task.id, {}, reply=None, notification=notification, origin_time=origin.created_at
        )
        assert outcome == DeliveryOutcome.NOTIFIED
        messages = await store.get_messages(conversation.id)
        assert messages[-1].content == '{"type": "agent_result"}'
        assert (await store.get_task(task.id)).status == TaskStatus.COMPLETED

    async def test_terminal_task_left_untouched(self, store, conversation):
        origin, task, reply, notification = await self._setup(store, conversation)
        task.status = TaskStatus.FAILED
        await store.update_task(task)

        outcome = await store.deliver_task_result(
            task.id, {}, reply=reply, notification=notification, origin_time=origin.created_at
        )

        assert outcome == DeliveryOutcome.ALREADY_DELIVERED
        assert len(await store.get_messages(conversation.id)) == 1
        assert (await store.get_task(task.id)).status == TaskStatus.FAILED


class TestScheduledTasks:
    async def test_due_tasks(self, store):
        now = utcnow()
        due = await store.create_scheduled_task(
            ScheduledTask(name="due", schedule="* * * * *", input="x", next_run_at=now - timedelta(minutes=1))
        )
        await store.create_scheduled_task(
            ScheduledTask(name="later", schedule="* * * * *", input="x", next_run_at=now + timedelta(hours=1))
        )
        await store.create_scheduled_task(
            ScheduledTask(
                name="paused",
                schedule="* * * * *",
                input="x",
                status=ScheduleStatus.PAUSED,
                next_run_at=now - timedelta(minutes=1),
            )
        )

        assert [t.id for t in await store.get_due_scheduled_tasks(now)] == [due.id]

    async def test_update_and_delete(self, store):
        task = await store.create_scheduled_task(
            ScheduledTask(name="once", schedule="2030-01-01T00:00:00Z", kind=ScheduleKind.ONE_SHOT, input="x")
        )
        task.status = ScheduleStatus.COMPLETED
        assert await store.update_scheduled_task(task)
        assert (await store.get_scheduled_task(task.id)).status == ScheduleStatus.COMPLETED
        assert await store.delete_scheduled_task(task.id) is True
        assert await store.get_scheduled_task(task.id) is None


class TestEvents:
    async def test_filtering(self, store):
        await store.add_event(Event(type=EventType.TOOL_CALLED, source="s", agent_id="a1"))
        await store.add_event(Event(type=EventType.TOOL_CALLED, source="s", agent_id="a2"))
        await store.add_event(Event(type=EventType.LLM_ERROR, source="s", agent_id="a1"))

        assert len(await store.list_events(event_type=EventType.TOOL_CALLED)) == 2
        assert len(await store.list_events(agent_id="a1")) == 2
        assert len(await store.list_events(event_type=EventType.LLM_ERROR, agent_id="a1")) == 1

    async def test_duplicate_event_ignored(self, store):
        event = Event(type=EventType.SYSTEM_INFO, source="s")
        await store.add_event(event)
        await store.add_event(event)
        assert len(await store.list_events()) == 1


class TestMemories:
    async def test_upsert_and_search(self, store):
        await store.set_memory("user_name", "Ada")
        await store.set_memory("project_deadline", "Friday")
        await store.set_memory("user_name", "Grace")

        assert await store.search_memories("USER") == [("user_name", "Grace")]
        assert await store.search_memories() == [
            ("project_deadline", "Friday"),
            ("user_name", "Grace"),
        ]
        assert await store.search_memories("%") == []
