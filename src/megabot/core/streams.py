"""ChatStreamManager: detached, buffered, multi-subscriber chunk streams."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from megabot.bus import EventBus, EventType
from megabot.providers.base import Chunk, ChunkType

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[Chunk], None]

BUFFER_TTL_SECONDS = 60.0


def find_current_turn_start(chunks: list[Chunk]) -> int:
    """Index where the current, not yet persisted model round begins.

    That is the first ``text`` or ``tool_call_start`` chunk after the most
    recent ``tool_result``. Without any tool result the whole buffer is the
    current turn. If nothing has started since the last tool result, the
    index is the end of the buffer.
    """
    last_result = -1
    for i in range(len(chunks) - 1, -1, -1):
        if chunks[i].type == ChunkType.TOOL_RESULT:
            last_result = i
            break
    if last_result < 0:
        return 0
    for i in range(last_result + 1, len(chunks)):
        if chunks[i].type in (ChunkType.TEXT, ChunkType.TOOL_CALL_START):
            return i
    return len(chunks)


@dataclass
class ActiveStream:
    """Tracks one detached execution and its chunk buffer."""

    stream_id: str
    chunks: list[Chunk] = field(default_factory=list)
    subscribers: list[ChunkCallback] = field(default_factory=list)
    listeners: list[asyncio.Queue[Chunk | None]] = field(default_factory=list)
    done: bool = False
    task: asyncio.Task | None = None
    cleanup: asyncio.TimerHandle | None = None


class ChatStreamManager:
    """Runs chunk sequences in supervised tasks that outlive their observers.

    Consumption never waits for subscribers and is not cancelled when they
    leave. A finished stream keeps its buffer for ``buffer_ttl`` seconds.
    """

    def __init__(self, bus: EventBus, buffer_ttl: float = BUFFER_TTL_SECONDS) -> None:
        self.bus = bus
        self.buffer_ttl = buffer_ttl
        self._streams: dict[str, ActiveStream] = {}
        self._tasks: set[asyncio.Task] = set()

    def start_stream(self, stream_id: str, chunks: AsyncIterator[Chunk]) -> asyncio.Task:
        """Begin consuming ``chunks`` in the background under ``stream_id``."""
        existing = self._streams.get(stream_id)
        if existing is not None:
            if existing.done:
                self._discard(existing)
            else:
                logger.warning("Stream %s replaced while still running", stream_id)

        stream = ActiveStream(stream_id=stream_id)
        self._streams[stream_id] = stream
        task = asyncio.create_task(self._consume(stream, chunks), name=f"chat-stream:{stream_id}")
        stream.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _consume(self, stream: ActiveStream, chunks: AsyncIterator[Chunk]) -> None:
        try:
            async for chunk in chunks:
                stream.chunks.append(chunk)
                for callback in list(stream.subscribers):
                    try:
                        callback(chunk)
                    except Exception:
                        logger.debug("Subscriber of %s failed", stream.stream_id, exc_info=True)
                for queue in stream.listeners:
                    queue.put_nowait(chunk)
        except Exception:
            logger.exception("Background stream %s failed", stream.stream_id)
        finally:
            stream.done = True
            stream.subscribers.clear()
            for queue in stream.listeners:
                queue.put_nowait(None)
            stream.listeners.clear()
            self.bus.emit(
                EventType.CHAT_COMPLETED,
                "chat-stream-manager",
                {"chunks": len(stream.chunks)},
                conversation_id=stream.stream_id,
            )
            logger.info("Background stream %s completed", stream.stream_id)
            stream.cleanup = asyncio.get_running_loop().call_later(
                self.buffer_ttl, self._expire, stream
            )

    def _expire(self, stream: ActiveStream) -> None:
        if self._streams.get(stream.stream_id) is stream:
            del self._streams[stream.stream_id]

    def _discard(self, stream: ActiveStream) -> None:
        if stream.cleanup is not None:
            stream.cleanup.cancel()
        self._expire(stream)

    def subscribe(self, stream_id: str, callback: ChunkCallback) -> Callable[[], None]:
        """Replay the whole buffer, then deliver live chunks until the stream ends."""
        return self._subscribe(stream_id, callback, from_current_turn=False)

    def subscribe_from_current_turn(
        self, stream_id: str, callback: ChunkCallback
    ) -> Callable[[], None]:
        """Reconnection variant: replay only the current turn.

        A finished stream replays nothing, since all of its turns are
        already persisted.
        """
        return self._subscribe(stream_id, callback, from_current_turn=True)

    def _subscribe(
        self, stream_id: str, callback: ChunkCallback, from_current_turn: bool
    ) -> Callable[[], None]:
        stream = self._streams.get(stream_id)
        if stream is None or (from_current_turn and stream.done):
            return lambda: None

        start = find_current_turn_start(stream.chunks) if from_current_turn else 0
        for chunk in stream.chunks[start:]:
            try:
                callback(chunk)
            except Exception:
                logger.debug("Subscriber of %s failed during replay", stream_id, exc_info=True)

        if stream.done:
            return lambda: None

        stream.subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in stream.subscribers:
                stream.subscribers.remove(callback)

        return unsubscribe

    async def listen(self, stream_id: str, from_current_turn: bool = False) -> AsyncIterator[Chunk]:
        """Async-iterate a stream (replay then live), e.g. for SSE responses.

        Leaving the iteration early only detaches this listener.
        """
        stream = self._streams.get(stream_id)
        if stream is None or (from_current_turn and stream.done):
            return

        start = find_current_turn_start(stream.chunks) if from_current_turn else 0
        replay = list(stream.chunks[start:])
        if stream.done:
            for chunk in replay:
                yield chunk
            return

        queue: asyncio.Queue[Chunk | None] = asyncio.Queue()
        stream.listeners.append(queue)
        try:
            for chunk in replay:
                yield chunk
            while True:
                chunk = await queue.get()
                if chunk is None:
                    break
                yield chunk
        finally:
            if queue in stream.listeners:
                stream.listeners.remove(queue)

    def is_active(self, stream_id: str) -> bool:
        stream = self._streams.get(stream_id)
        return stream is not None and not stream.done

    def has_buffer(self, stream_id: str) -> bool:
        return stream_id in self._streams

    def close(self, stream_id: str) -> bool:
        """Drop a finished stream's buffer now instead of waiting for the TTL."""
        stream = self._streams.get(stream_id)
        if stream is None or not stream.done:
            return False
        self._discard(stream)
        return True

    async def wait(self, stream_id: str) -> None:
        """Wait for the stream's execution to finish."""
        stream = self._streams.get(stream_id)
        if stream is not None and stream.task is not None:
            await asyncio.shield(stream.task)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Give running executions ``timeout`` seconds to finish, then cancel them."""
        pending = [t for t in self._tasks if not t.done()]
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=timeout)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)
        for stream in list(self._streams.values()):
            if stream.cleanup is not None:
                stream.cleanup.cancel()
        self._streams.clear()
