"""AgentRunner: the model -> tool loop shared by chat turns and background agents."""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from megabot.bus import EventBus, EventLevel, EventType
from megabot.core.history import safe_parse_args
from megabot.core.router import ModelRouter, RouteResult
from megabot.persistence.models import (
    ContentBlock,
    Message,
    MessageRole,
    ModelTier,
    TextBlock,
    TokenUsage,
    ToolResultBlock,
    ToolUseBlock,
)
from megabot.persistence.store import Store
from megabot.providers.base import Chunk, ChunkType, ToolDefinition
from megabot.tools.base import ToolContext, ToolRegistry

logger = logging.getLogger(__name__)

# Injected into every run without discovery through search_tools.
BASE_TOOL_NAMES: tuple[str, ...] = (
    "search_tools",
    "get_current_time",
    "create_agent",
    "list_agents",
    "spawn_agent",
    "create_scheduled_task",
    "list_scheduled_tasks",
    "delete_scheduled_task",
    "calculate",
)

DISCOVERY_TOOL = "search_tools"


class RunnerState(str, enum.Enum):
    AWAITING_MODEL = "awaiting_model"
    TOOLS_PENDING = "tools_pending"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    ERRORED = "errored"


@dataclass
class AgentRunParams:
    system_prompt: str
    initial_messages: list[dict[str, Any]]
    tools: list[str] = field(default_factory=list)
    model_id: str | None = None
    tier: ModelTier | None = None
    agent_id: str | None = None
    conversation_id: str | None = None
    message_id: str | None = None
    task_id: str | None = None


@dataclass
class AgentRunResult:
    text: str = ""
    tool_call_count: int = 0
    usage: TokenUsage = field(default_factory=TokenUsage)
    error: str | None = None


@dataclass
class _PendingCall:
    id: str
    name: str
    args: str


@dataclass
class _ModelTurn:
    """What one model call produced."""

    text: str = ""
    calls: list[_PendingCall] = field(default_factory=list)
    tools_pending: bool = False
    failed: bool = False


class AgentRunner:
    """Drives one execution through the model until it stops requesting tools.

    Tool calls of a round run sequentially in the order the model emitted
    them. A failing tool becomes an error result block; a failing model call
    ends the execution with a single ``error`` chunk.
    """

    def __init__(
        self,
        store: Store,
        router: ModelRouter,
        tool_registry: ToolRegistry,
        bus: EventBus,
        max_rounds: int | None = None,
        max_tokens: int = 4096,
    ) -> None:
        self.store = store
        self.router = router
        self.tool_registry = tool_registry
        self.bus = bus
        self.max_rounds = max_rounds
        self.max_tokens = max_tokens

    async def stream(self, params: AgentRunParams) -> AsyncIterator[Chunk]:
        """Stream the tool-call loop as chunks."""
        route = self.router.route(tier=params.tier, model_id=params.model_id)
        history = list(params.initial_messages)
        usage = TokenUsage()
        active_tools = set(BASE_TOOL_NAMES) | set(params.tools)
        source = f"agent:{params.agent_id}" if params.agent_id else "chat-handler"
        rounds = 0
        state = RunnerState.AWAITING_MODEL

        logger.info(
            "Agent stream started: model=%s messages=%d tools=%d conversation=%s",
            route.qualified_id,
            len(history),
            len(active_tools),
            params.conversation_id,
        )

        while True:
            turn = _ModelTurn()
            async for chunk in self._call_model(route, history, params, active_tools, usage, source, turn):
                yield chunk

            if turn.failed:
                state = RunnerState.ERRORED
                break

            if turn.tools_pending and turn.calls:
                state = RunnerState.TOOLS_PENDING
                if self.max_rounds is not None and rounds >= self.max_rounds:
                    message = f"Reached maximum tool rounds ({self.max_rounds})"
                    logger.warning("%s: conversation=%s", message, params.conversation_id)
                    self._emit(
                        EventType.LLM_ERROR,
                        source,
                        params,
                        {"error": message, "model": route.model.id, "partial_text": turn.text},
                        level=EventLevel.ERROR,
                    )
                    yield Chunk(type=ChunkType.ERROR, error=message)
                    state = RunnerState.ERRORED
                    break

                state = RunnerState.EXECUTING_TOOLS
                rounds += 1
                async for chunk in self._process_tool_calls(turn, route, history, active_tools, source, params):
                    yield chunk
                state = RunnerState.AWAITING_MODEL
                continue

            await self._finish(params, turn.text, route, usage, source)
            state = RunnerState.DONE
            yield Chunk(type=ChunkType.DONE, usage=usage)
            break

        logger.debug("Agent stream ended in state %s after %d round(s)", state.value, rounds)

    async def run(self, params: AgentRunParams) -> AgentRunResult:
        """Run to completion without streaming."""
        result = AgentRunResult()
        async for chunk in self.stream(params):
            if chunk.type == ChunkType.TEXT:
                result.text += chunk.text
            elif chunk.type == ChunkType.TOOL_RESULT:
                result.tool_call_count += 1
            elif chunk.type == ChunkType.DONE and chunk.usage:
                result.usage = chunk.usage
            elif chunk.type == ChunkType.ERROR:
                result.error = chunk.error
        return result

    # --- Loop steps ---

    async def _call_model(
        self,
        route: RouteResult,
        history: list[dict[str, Any]],
        params: AgentRunParams,
        active_tools: set[str],
        usage: TokenUsage,
        source: str,
        turn: _ModelTurn,
    ) -> AsyncIterator[Chunk]:
        tool_defs = self._tool_definitions(route, active_tools)
        self._emit(
            EventType.LLM_REQUEST,
            source,
            params,
            {"model": route.model.id, "message_count": len(history), "tool_count": len(tool_defs)},
        )

        try:
            async for chunk in route.provider.chat(
                model=route.model.id,
                system_prompt=params.system_prompt,
                messages=history,
                tools=tool_defs or None,
                max_tokens=self.max_tokens,
            ):
                if chunk.type == ChunkType.TEXT:
                    turn.text += chunk.text
                elif chunk.type == ChunkType.TOOL_CALL_END:
                    turn.calls.append(
                        _PendingCall(chunk.tool_call_id, chunk.tool_name, chunk.tool_args or "{}")
                    )
                elif chunk.type == ChunkType.TOOL_CALLS_PENDING:
                    turn.tools_pending = True
                elif chunk.type == ChunkType.DONE:
                    if chunk.usage:
                        usage.add(chunk.usage)
                    continue
                elif chunk.type == ChunkType.ERROR:
                    logger.error("Model returned error: %s", chunk.error)
                    self._emit(
                        EventType.LLM_ERROR,
                        source,
                        params,
                        {"error": chunk.error, "model": route.model.id, "partial_text": turn.text},
                        level=EventLevel.ERROR,
                    )
                    turn.failed = True
                    yield chunk
                    return
                yield chunk
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error("LLM call failed: model=%s error=%s", route.model.id, error)
            self._emit(
                EventType.LLM_ERROR,
                source,
                params,
                {"error": error, "model": route.model.id, "partial_text": turn.text},
                level=EventLevel.ERROR,
            )
            turn.failed = True
            yield Chunk(type=ChunkType.ERROR, error=error)

    async def _process_tool_calls(
        self,
        turn: _ModelTurn,
        route: RouteResult,
        history: list[dict[str, Any]],
        active_tools: set[str],
        source: str,
        params: AgentRunParams,
    ) -> AsyncIterator[Chunk]:
        assistant_blocks: list[ContentBlock] = []
        if turn.text:
            assistant_blocks.append(TextBlock(text=turn.text))
        for call in turn.calls:
            assistant_blocks.append(
                ToolUseBlock(id=call.id, name=call.name, input=safe_parse_args(call.args))
            )

        if params.conversation_id:
            await self.store.add_message(
                Message(
                    conversation_id=params.conversation_id,
                    role=MessageRole.ASSISTANT,
                    content=turn.text or "[tool calls]",
                    blocks=assistant_blocks,
                    model=route.model.id,
                )
            )

        result_blocks: list[ToolResultBlock] = []
        for call in turn.calls:
            block = ToolResultBlock(tool_use_id=call.id, content="")
            async for chunk in self._execute_tool(call, block, active_tools, source, params):
                yield chunk
            result_blocks.append(block)

        if params.conversation_id:
            await self.store.add_message(
                Message(
                    conversation_id=params.conversation_id,
                    role=MessageRole.TOOL,
                    content="\n".join(
                        f"{b.tool_use_id}: {'ERROR ' if b.is_error else ''}{b.content[:200]}"
                        for b in result_blocks
                    ),
                    blocks=list(result_blocks),
                )
            )

        history.append({"role": "assistant", "content": [b.to_dict() for b in assistant_blocks]})
        history.append({"role": "user", "content": [b.to_dict() for b in result_blocks]})

    async def _execute_tool(
        self,
        call: _PendingCall,
        block: ToolResultBlock,
        active_tools: set[str],
        source: str,
        params: AgentRunParams,
    ) -> AsyncIterator[Chunk]:
        args = safe_parse_args(call.args)
        yield Chunk(
            type=ChunkType.TOOL_EXECUTING,
            tool_call_id=call.id,
            tool_name=call.name,
            tool_input=args,
        )
        self._emit(EventType.TOOL_CALLED, source, params, {"tool": call.name, "args": call.args})

        started = time.monotonic()
        result = await self.tool_registry.execute(
            call.name,
            args,
            ToolContext(
                conversation_id=params.conversation_id,
                message_id=params.message_id,
                agent_id=params.agent_id,
                task_id=params.task_id,
            ),
        )
        duration_ms = int((time.monotonic() - started) * 1000)

        block.is_error = not result.success
        block.content = result.to_content() if result.success else f"Error: {result.error}"

        yield Chunk(
            type=ChunkType.TOOL_RESULT,
            tool_call_id=call.id,
            tool_name=call.name,
            text=block.content,
            is_error=block.is_error,
        )

        if block.is_error:
            logger.warning("Tool %s failed in %dms: %s", call.name, duration_ms, result.error)
        else:
            logger.debug("Tool %s completed in %dms", call.name, duration_ms)

        self._emit(
            EventType.TOOL_ERROR if block.is_error else EventType.TOOL_RESULT,
            source,
            params,
            {"tool": call.name, "result": block.content, "is_error": block.is_error},
            level=EventLevel.ERROR if block.is_error else EventLevel.INFO,
        )

        if call.name == DISCOVERY_TOOL and result.success:
            query = args.get("query")
            if isinstance(query, str) and query:
                discovered = [t.name for t in self.tool_registry.search(query)]
                active_tools.update(discovered)
                logger.debug("search_tools activated %d tool(s)", len(discovered))

    async def _finish(
        self,
        params: AgentRunParams,
        text: str,
        route: RouteResult,
        usage: TokenUsage,
        source: str,
    ) -> None:
        logger.info(
            "Agent stream completed: model=%s input_tokens=%d output_tokens=%d length=%d",
            route.model.id,
            usage.input_tokens,
            usage.output_tokens,
            len(text),
        )
        if params.conversation_id:
            await self.store.add_message(
                Message(
                    conversation_id=params.conversation_id,
                    role=MessageRole.ASSISTANT,
                    content=text or "[Error: no response generated]",
                    model=route.model.id,
                    token_count=usage.total or None,
                )
            )
        if text:
            self._emit(
                EventType.LLM_RESPONSE,
                source,
                params,
                {"model": route.model.id, "tokens": usage.to_dict(), "content_length": len(text)},
            )

    # --- Helpers ---

    def _tool_definitions(self, route: RouteResult, active_tools: set[str]) -> list[ToolDefinition]:
        if not route.provider.supports_tools:
            return []
        return [t.get_definition() for t in self.tool_registry.list() if t.name in active_tools]

    def _emit(
        self,
        event_type: EventType,
        source: str,
        params: AgentRunParams,
        data: dict[str, Any],
        level: EventLevel = EventLevel.INFO,
    ) -> None:
        self.bus.emit(
            event_type,
            source,
            data,
            level=level,
            agent_id=params.agent_id,
            conversation_id=params.conversation_id,
        )
