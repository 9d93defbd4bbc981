"""Abstract provider interface for LLM backends and the streaming chunk contract."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from megabot.persistence.models import ModelTier, TokenUsage


class ChunkType(str, enum.Enum):
    TEXT = "text"
    TOOL_CALL_START = "tool_call_start"
    TOOL_CALL_DELTA = "tool_call_delta"
    TOOL_CALL_END = "tool_call_end"
    TOOL_CALLS_PENDING = "tool_calls_pending"
    TOOL_EXECUTING = "tool_executing"
    TOOL_RESULT = "tool_result"
    DONE = "done"
    ERROR = "error"


@dataclass
class Chunk:
    """One element of a streamed execution.

    Providers produce the text, tool-call, done and error chunks; the agent
    runner adds tool_executing and tool_result.
    """

    type: ChunkType
    text: str = ""
    tool_call_id: str = ""
    tool_name: str = ""
    tool_args: str = ""
    tool_input: dict[str, Any] = field(default_factory=dict)
    is_error: bool = False
    usage: TokenUsage | None = None
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type.value}
        if self.type == ChunkType.TEXT:
            data["text"] = self.text
        elif self.type in (
            ChunkType.TOOL_CALL_START,
            ChunkType.TOOL_CALL_DELTA,
            ChunkType.TOOL_CALL_END,
        ):
            data.update(
                tool_call_id=self.tool_call_id, tool_name=self.tool_name, tool_args=self.tool_args
            )
        elif self.type == ChunkType.TOOL_EXECUTING:
            data.update(
                tool_call_id=self.tool_call_id, tool_name=self.tool_name, input=self.tool_input
            )
        elif self.type == ChunkType.TOOL_RESULT:
            data.update(
                tool_call_id=self.tool_call_id,
                tool_name=self.tool_name,
                content=self.text,
                is_error=self.is_error,
            )
        elif self.type == ChunkType.DONE:
            data["usage"] = (self.usage or TokenUsage()).to_dict()
        elif self.type == ChunkType.ERROR:
            data["error"] = self.error
        return data


@dataclass
class ToolDefinition:
    """Tool definition for LLM function calling."""

    name: str
    description: str
    parameters: dict[str, Any]  # JSON Schema


@dataclass
class ModelDefinition:
    id: str
    name: str = ""
    tier: ModelTier = ModelTier.STANDARD
    context_window: int = 128000
    max_output: int = 4096


class BaseProvider(ABC):
    """Abstract base class for LLM providers.

    Message history is passed in the neutral form
    ``{"role": "user" | "assistant", "content": str | list[block dict]}``;
    each provider translates it to its own wire format.
    """

    id: str = ""
    name: str = ""
    models: list[ModelDefinition]
    supports_tools: bool = True

    @abstractmethod
    def chat(
        self,
        model: str,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[ToolDefinition] | None = None,
        max_tokens: int = 4096,
    ) -> AsyncIterator[Chunk]:
        """Stream one model response as chunks."""
        ...
