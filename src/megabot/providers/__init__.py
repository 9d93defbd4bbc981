"""LLM providers."""

from megabot.providers.base import (
    BaseProvider,
    Chunk,
    ChunkType,
    ModelDefinition,
    ToolDefinition,
)

__all__ = ["BaseProvider", "Chunk", "ChunkType", "ModelDefinition", "ToolDefinition"]
