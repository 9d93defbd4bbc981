"""Tests for the EventBus and Event types."""

from megabot.bus import Event, EventBus, EventFilter, EventLevel, EventType


def test_typed_handler_receives_event():
    bus = EventBus()
    received: list[Event] = []

    bus.on(EventType.TOOL_CALLED, received.append)
    bus.emit(EventType.TOOL_CALLED, "chat-handler", {"tool": "echo"}, conversation_id="c1")

    assert len(received) == 1
    assert received[0].type == EventType.TOOL_CALLED
    assert received[0].data["tool"] == "echo"
    assert received[0].conversation_id == "c1"
    assert received[0].level == EventLevel.INFO


def test_typed_handlers_run_before_global_handlers():
    bus = EventBus()
    order: list[str] = []

    bus.on_any(lambda e: order.append("global"))
    bus.on(EventType.MESSAGE_SENT, lambda e: order.append("typed"))
    bus.emit(EventType.MESSAGE_SENT, "test")

    assert order == ["typed", "global"]


def test_unsubscribe():
    bus = EventBus()
    received: list[Event] = []

    unsubscribe = bus.on(EventType.LLM_ERROR, received.append)
    bus.emit(EventType.LLM_ERROR, "test")
    assert len(received) == 1

    unsubscribe()
    bus.emit(EventType.LLM_ERROR, "test")
    assert len(received) == 1


def test_failing_handler_does_not_stop_delivery():
    bus = EventBus()
    received: list[Event] = []

    def broken(event: Event) -> None:
        raise RuntimeError("boom")

    bus.on(EventType.TASK_FAILED, broken)
    bus.on(EventType.TASK_FAILED, received.append)
    bus.on_any(received.append)

    event = bus.emit(EventType.TASK_FAILED, "dispatcher", level="error")

    assert received == [event, event]
    assert event.level == EventLevel.ERROR


async def test_stream_queue_with_filter():
    bus = EventBus()
    queue = bus.stream(EventFilter(types=frozenset({EventType.AGENT_COMPLETED}), agent_id="a1"))

    bus.emit(EventType.AGENT_COMPLETED, "agent:a2", agent_id="a2")
    bus.emit(EventType.AGENT_SPAWNED, "agent:a1", agent_id="a1")
    bus.emit(EventType.AGENT_COMPLETED, "agent:a1", {"task_id": "t1"}, agent_id="a1")

    assert queue.qsize() == 1
    event = await queue.get()
    assert event.data["task_id"] == "t1"

    bus.unstream(queue)
    bus.emit(EventType.AGENT_COMPLETED, "agent:a1", agent_id="a1")
    assert queue.empty()


def test_clear_removes_everything():
    bus = EventBus()
    received: list[Event] = []
    bus.on(EventType.SYSTEM_INFO, received.append)
    bus.on_any(received.append)
    queue = bus.stream()

    bus.clear()
    bus.emit(EventType.SYSTEM_INFO, "test")

    assert received == []
    assert queue.empty()


def test_event_row_round_trip():
    event = Event(
        type=EventType.CRON_TRIGGERED,
        source="scheduler",
        data={"task_name": "daily"},
        agent_id="a1",
    )
    restored = Event.from_row(event.to_row())

    assert restored.id == event.id
    assert restored.type == EventType.CRON_TRIGGERED
    assert restored.data == {"task_name": "daily"}
    assert restored.timestamp == event.timestamp
