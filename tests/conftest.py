"""Shared test fixtures for the megabot test suite."""

from __future__ import annotations

from typing import Any

import pytest

from megabot.bus import EventBus
from megabot.config import Settings
from megabot.core.app import MegabotApp
from megabot.core.router import ModelRouter
from megabot.core.runner import AgentRunner
from megabot.persistence.models import Conversation, ModelTier, TokenUsage
from megabot.persistence.store import Store
from megabot.providers.base import BaseProvider, Chunk, ChunkType, ModelDefinition
from megabot.tools.base import BaseTool, ToolContext, ToolRegistry, ToolResult


# ---------------------------------------------------------------------------
# Dummy tools for testing
# ---------------------------------------------------------------------------


class EchoTool(BaseTool):
    """A simple tool that echoes its input."""

    name = "echo"
    description = "Echo a message back"
    parameters = {
        "type": "object",
        "properties": {
            "message": {"type": "string", "description": "Message to echo"},
        },
        "required": ["message"],
    }
    keywords = ["echo", "repeat"]

    async def execute(self, params: dict, context: ToolContext) -> ToolResult:
        return ToolResult.ok(f"Echo: {params.get('message', '')}")


class FailTool(BaseTool):
    """A tool that always fails."""

    name = "fail_tool"
    description = "Always fails"
    keywords = ["broken"]

    def execute(self, params: dict, context: ToolContext) -> ToolResult:
        raise RuntimeError("Tool always fails")


# ---------------------------------------------------------------------------
# Chunk helpers
# ---------------------------------------------------------------------------


def text_chunks(text: str, input_tokens: int = 10, output_tokens: int = 5) -> list[Chunk]:
    """A text-only model response."""
    return [
        Chunk(type=ChunkType.TEXT, text=text),
        Chunk(
            type=ChunkType.DONE,
            usage=TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens),
        ),
    ]


def tool_call_chunks(
    tool_name: str, tool_args: str = "{}", tool_call_id: str = "tc-001", text: str = ""
) -> list[Chunk]:
    """A model response that requests a single tool call."""
    chunks = [Chunk(type=ChunkType.TEXT, text=text)] if text else []
    return chunks + [
        Chunk(type=ChunkType.TOOL_CALL_START, tool_call_id=tool_call_id, tool_name=tool_name),
        Chunk(
            type=ChunkType.TOOL_CALL_END,
            tool_call_id=tool_call_id,
            tool_name=tool_name,
            tool_args=tool_args,
        ),
        Chunk(type=ChunkType.TOOL_CALLS_PENDING),
        Chunk(type=ChunkType.DONE, usage=TokenUsage(input_tokens=10, output_tokens=20)),
    ]


def error_chunks(error: str = "rate limited") -> list[Chunk]:
    return [Chunk(type=ChunkType.ERROR, error=error)]


# ---------------------------------------------------------------------------
# Mock provider
# ---------------------------------------------------------------------------


def default_models() -> list[ModelDefinition]:
    return [
        ModelDefinition(id="mock-fast", name="Mock Fast", tier=ModelTier.FAST),
        ModelDefinition(id="mock-standard", name="Mock Standard", tier=ModelTier.STANDARD),
        ModelDefinition(id="mock-powerful", name="Mock Powerful", tier=ModelTier.POWERFUL),
    ]


class MockProvider(BaseProvider):
    """Deterministic provider returning pre-configured chunk sequences in order.

    An exception placed in a sequence is raised mid-stream. Once the script
    runs out, every call answers with an empty text response.
    """

    def __init__(
        self,
        responses: list[list[Any]] | None = None,
        provider_id: str = "mock",
        models: list[ModelDefinition] | None = None,
        supports_tools: bool = True,
    ) -> None:
        self.id = provider_id
        self.name = provider_id.title()
        self.models = default_models() if models is None else models
        self.supports_tools = supports_tools
        self.responses = list(responses or [])
        self.calls: list[dict[str, Any]] = []

    def script(self, *responses: list[Any]) -> None:
        self.responses.extend(responses)

    def chat(self, model, system_prompt, messages, tools=None, max_tokens=4096):
        self.calls.append(
            {
                "model": model,
                "system_prompt": system_prompt,
                "messages": list(messages),
                "tools": [t.name for t in tools or []],
            }
        )
        chunks = self.responses.pop(0) if self.responses else text_chunks("")
        return self._stream(chunks)

    async def _stream(self, chunks: list[Any]):
        for chunk in chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


# ---------------------------------------------------------------------------
# Pytest fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def tool_registry():
    reg = ToolRegistry()
    reg.register(EchoTool())
    reg.register(FailTool())
    return reg


@pytest.fixture
def provider():
    return MockProvider()


@pytest.fixture
async def store(tmp_path):
    store = Store(str(tmp_path / "megabot.db"))
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
async def conversation(store):
    return await store.create_conversation(Conversation(title="Test conversation"))


@pytest.fixture
def runner(store, provider, tool_registry, event_bus):
    return AgentRunner(
        store=store,
        router=ModelRouter(lambda: [provider]),
        tool_registry=tool_registry,
        bus=event_bus,
    )


@pytest.fixture
def settings(tmp_path):
    return Settings(
        working_directory=str(tmp_path),
        data_dir=str(tmp_path / "data"),
        database=str(tmp_path / "data" / "megabot.db"),
        stream_buffer_ttl=60.0,
        background_retries=1,
    )


@pytest.fixture
async def app(settings, provider):
    app = MegabotApp(settings, providers=[provider])
    await app.initialize()
    app.jobs.retry_min_seconds = 0
    app.jobs.retry_max_seconds = 0
    yield app
    await app.shutdown()
