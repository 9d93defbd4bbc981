"""Tests for detached chat streams: buffering, reconnection and TTL."""

from __future__ import annotations

import asyncio

from megabot.bus import EventBus, EventType
from megabot.core.streams import ChatStreamManager, find_current_turn_start
from megabot.providers.base import Chunk, ChunkType


def text(t: str) -> Chunk:
    return Chunk(type=ChunkType.TEXT, text=t)


def tool_start() -> Chunk:
    return Chunk(type=ChunkType.TOOL_CALL_START, tool_call_id="tc", tool_name="echo")


def tool_result() -> Chunk:
    return Chunk(type=ChunkType.TOOL_RESULT, tool_call_id="tc", tool_name="echo", text="ok")


def done() -> Chunk:
    return Chunk(type=ChunkType.DONE)


class Feed:
    """A chunk source the test pushes into; ``None`` ends it."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue[Chunk | None] = asyncio.Queue()

    def push(self, *chunks: Chunk | None) -> None:
        for chunk in chunks:
            self.queue.put_nowait(chunk)

    async def __aiter__(self):
        while True:
            chunk = await self.queue.get()
            if chunk is None:
                return
            yield chunk


async def settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class TestFindCurrentTurnStart:
    def test_no_tool_result_means_whole_buffer(self):
        assert find_current_turn_start([text("a"), tool_start()]) == 0

    def test_after_last_tool_result(self):
        chunks = [text("a"), tool_start(), tool_result(), text("b"), tool_start(), tool_result(), text("c")]
        assert find_current_turn_start(chunks) == 6

    def test_tool_call_start_begins_turn(self):
        chunks = [tool_start(), tool_result(), Chunk(type=ChunkType.TOOL_EXECUTING), tool_start()]
        assert find_current_turn_start(chunks) == 3

    def test_nothing_started_since_result(self):
        chunks = [tool_start(), tool_result()]
        assert find_current_turn_start(chunks) == 2

    def test_empty(self):
        assert find_current_turn_start([]) == 0


class TestSubscribe:
    async def test_replay_then_live(self):
        manager = ChatStreamManager(EventBus())
        feed = Feed()
        manager.start_stream("c1", feed)
        feed.push(text("a"), text("b"))
        await settle()

        received: list[str] = []
        manager.subscribe("c1", lambda c: received.append(c.text))
        assert received == ["a", "b"]

        feed.push(text("c"), None)
        await manager.wait("c1")
        assert received == ["a", "b", "c"]

    async def test_reconnect_replays_current_turn_only(self):
        manager = ChatStreamManager(EventBus())
        feed = Feed()
        manager.start_stream("c1", feed)
        feed.push(text("plan"), tool_start(), tool_result(), text("answer "))
        await settle()

        received: list[Chunk] = []
        unsubscribe = manager.subscribe_from_current_turn("c1", received.append)
        assert [c.text for c in received] == ["answer "]

        feed.push(text("continues"))
        await settle()
        unsubscribe()
        feed.push(text("after unsubscribe"), None)
        await manager.wait("c1")

        assert [c.text for c in received] == ["answer ", "continues"]

    async def test_done_stream_replays_nothing_from_current_turn(self):
        manager = ChatStreamManager(EventBus())
        feed = Feed()
        manager.start_stream("c1", feed)
        feed.push(text("a"), done(), None)
        await manager.wait("c1")

        received: list[Chunk] = []
        manager.subscribe_from_current_turn("c1", received.append)
        assert received == []

        # Full replay is still available until the TTL expires
        manager.subscribe("c1", received.append)
        assert [c.type for c in received] == [ChunkType.TEXT, ChunkType.DONE]

    async def test_unknown_stream(self):
        manager = ChatStreamManager(EventBus())
        unsubscribe = manager.subscribe("missing", lambda c: None)
        unsubscribe()
        assert not manager.is_active("missing")

    async def test_failing_subscriber_does_not_stop_consumption(self):
        manager = ChatStreamManager(EventBus())
        feed = Feed()
        manager.start_stream("c1", feed)

        def broken(chunk: Chunk) -> None:
            raise RuntimeError("render failed")

        good: list[Chunk] = []
        manager.subscribe("c1", broken)
        manager.subscribe("c1", good.append)
        feed.push(text("a"), text("b"), None)
        await manager.wait("c1")

        assert len(good) == 2


class TestListen:
    async def test_listener_leaving_does_not_cancel_execution(self):
        manager = ChatStreamManager(EventBus())
        feed = Feed()
        manager.start_stream("c1", feed)
        feed.push(text("a"))

        async for chunk in manager.listen("c1"):
            assert chunk.text == "a"
            break

        feed.push(text("b"), done(), None)
        await manager.wait("c1")
        assert not manager.is_active("c1")
        assert manager.has_buffer("c1")

        replay = [c async for c in manager.listen("c1")]
        assert [c.type for c in replay] == [ChunkType.TEXT, ChunkType.TEXT, ChunkType.DONE]

    async def test_two_listeners_see_the_same_chunks(self):
        manager = ChatStreamManager(EventBus())
        feed = Feed()
        manager.start_stream("c1", feed)

        async def read() -> list[str]:
            return [c.text async for c in manager.listen("c1")]

        first = asyncio.create_task(read())
        second = asyncio.create_task(read())
        await settle()
        feed.push(text("x"), text("y"), None)

        assert await first == ["x", "y"]
        assert await second == ["x", "y"]

    async def test_listen_current_turn_on_finished_stream(self):
        manager = ChatStreamManager(EventBus())
        feed = Feed()
        manager.start_stream("c1", feed)
        feed.push(text("a"), None)
        await manager.wait("c1")

        assert [c async for c in manager.listen("c1", from_current_turn=True)] == []


class TestLifecycle:
    async def test_buffer_expires_after_ttl(self):
        manager = ChatStreamManager(EventBus(), buffer_ttl=0.05)
        feed = Feed()
        manager.start_stream("c1", feed)
        feed.push(text("a"), None)
        await manager.wait("c1")
        assert manager.has_buffer("c1")

        await asyncio.sleep(0.1)
        assert not manager.has_buffer("c1")

    async def test_close_drops_finished_buffer(self):
        manager = ChatStreamManager(EventBus())
        feed = Feed()
        manager.start_stream("c1", feed)
        assert manager.close("c1") is False

        feed.push(None)
        await manager.wait("c1")
        assert manager.close("c1") is True
        assert not manager.has_buffer("c1")

    async def test_completion_emits_event(self):
        bus = EventBus()
        completed = []
        bus.on(EventType.CHAT_COMPLETED, completed.append)
        manager = ChatStreamManager(bus)
        feed = Feed()
        manager.start_stream("c1", feed)
        feed.push(text("a"), None)
        await manager.wait("c1")

        assert completed[0].conversation_id == "c1"
        assert completed[0].data == {"chunks": 1}

    async def test_source_failure_still_finishes_stream(self):
        manager = ChatStreamManager(EventBus())

        async def broken():
            yield text("a")
            raise RuntimeError("provider crashed")

        manager.start_stream("c1", broken())
        await manager.wait("c1")
        assert not manager.is_active("c1")

    async def test_new_turn_replaces_finished_stream(self):
        manager = ChatStreamManager(EventBus())
        first = Feed()
        manager.start_stream("c1", first)
        first.push(text("old"), None)
        await manager.wait("c1")

        second = Feed()
        manager.start_stream("c1", second)
        second.push(text("new"), None)
        await manager.wait("c1")

        assert [c.text async for c in manager.listen("c1")] == ["new"]

    async def test_shutdown_cancels_running_streams(self):
        manager = ChatStreamManager(EventBus())
        manager.start_stream("c1", Feed())
        await settle()
        await manager.shutdown(timeout=0.05)
        assert not manager.has_buffer("c1")
