"""OpenAI-compatible provider implementation."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import tiktoken
from openai import AsyncOpenAI

from megabot.config.providers import ProviderConfig
from megabot.persistence.models import TokenUsage

from .base import BaseProvider, Chunk, ChunkType, ModelDefinition, ToolDefinition

logger = logging.getLogger(__name__)


class OpenAIProvider(BaseProvider):
    """OpenAI chat-completions provider with streaming and function calling."""

    def __init__(self, config: ProviderConfig, client: AsyncOpenAI | None = None) -> None:
        self.id = config.id
        self.name = config.name
        self.supports_tools = config.supports_tools
        self.models = [
            ModelDefinition(
                id=m.id,
                name=m.name,
                tier=m.tier,
                context_window=m.context_window,
                max_output=m.max_output,
            )
            for m in config.models
        ]
        self._client = client or AsyncOpenAI(
            api_key=config.resolve_api_key(), base_url=config.base_url
        )
        self._encodings: dict[str, Any] = {}

    async def chat(
        self,
        model: str,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[ToolDefinition] | None = None,
        max_tokens: int = 4096,
    ) -> AsyncIterator[Chunk]:
        api_messages = [{"role": "system", "content": system_prompt}] + to_openai_messages(
            messages
        )

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": api_messages,
            "max_tokens": max_tokens,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            kwargs["tools"] = [self._tool_to_openai(t) for t in tools]

        stream = await self._client.chat.completions.create(**kwargs)

        active_tool_calls: dict[int, dict[str, str]] = {}
        accumulated_text = ""
        usage: TokenUsage | None = None

        async for chunk in stream:
            if chunk.usage:
                usage = TokenUsage(
                    input_tokens=chunk.usage.prompt_tokens,
                    output_tokens=chunk.usage.completion_tokens,
                )
            if not chunk.choices:
                continue

            delta = chunk.choices[0].delta

            if delta.content:
                accumulated_text += delta.content
                yield Chunk(type=ChunkType.TEXT, text=delta.content)

            if delta.tool_calls:
                for tc in delta.tool_calls:
                    call = active_tool_calls.setdefault(
                        tc.index, {"id": tc.id or "", "name": "", "args": ""}
                    )
                    if tc.id:
                        call["id"] = tc.id
                    if tc.function:
                        if tc.function.name:
                            call["name"] = tc.function.name
                            yield Chunk(
                                type=ChunkType.TOOL_CALL_START,
                                tool_call_id=call["id"],
                                tool_name=tc.function.name,
                            )
                        if tc.function.arguments:
                            call["args"] += tc.function.arguments
                            yield Chunk(
                                type=ChunkType.TOOL_CALL_DELTA,
                                tool_call_id=call["id"],
                                tool_name=call["name"],
                                tool_args=tc.function.arguments,
                            )

            if chunk.choices[0].finish_reason:
                for call in active_tool_calls.values():
                    yield Chunk(
                        type=ChunkType.TOOL_CALL_END,
                        tool_call_id=call["id"],
                        tool_name=call["name"],
                        tool_args=call["args"],
                    )
                if active_tool_calls:
                    yield Chunk(type=ChunkType.TOOL_CALLS_PENDING)
                    active_tool_calls = {}

        if usage is None:
            # Some compatible endpoints ignore include_usage
            usage = TokenUsage(
                input_tokens=self.count_tokens(model, json.dumps(api_messages, default=str)),
                output_tokens=self.count_tokens(model, accumulated_text),
            )
        yield Chunk(type=ChunkType.DONE, usage=usage)

    def count_tokens(self, model: str, text: str) -> int:
        if not text:
            return 0
        if model not in self._encodings:
            try:
                self._encodings[model] = tiktoken.encoding_for_model(model)
            except KeyError:
                self._encodings[model] = tiktoken.get_encoding("cl100k_base")
        return len(self._encodings[model].encode(text))

    @staticmethod
    def _tool_to_openai(tool: ToolDefinition) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
            },
        }


def to_openai_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Translate neutral block history into chat-completions messages."""
    result: list[dict[str, Any]] = []
    for msg in messages:
        content = msg["content"]
        if isinstance(content, str):
            result.append({"role": msg["role"], "content": content})
            continue

        text = "".join(b.get("text", "") for b in content if b["type"] == "text")
        if msg["role"] == "assistant":
            entry: dict[str, Any] = {"role": "assistant", "content": text or None}
            calls = [
                {
                    "id": b["id"],
                    "type": "function",
                    "function": {"name": b["name"], "arguments": json.dumps(b.get("input") or {})},
                }
                for b in content
                if b["type"] == "tool_use"
            ]
            if calls:
                entry["tool_calls"] = calls
            result.append(entry)
            continue

        for b in content:
            if b["type"] == "tool_result":
                result.append(
                    {"role": "tool", "tool_call_id": b["tool_use_id"], "content": b["content"]}
                )
        if text:
            result.append({"role": "user", "content": text})
    return result
