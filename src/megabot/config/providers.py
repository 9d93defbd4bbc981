"""Provider and model catalog schema using Pydantic v2."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field

from megabot.persistence.models import ModelTier


class ModelConfig(BaseModel):
    """One model offered by a provider, tagged with a routing tier."""

    id: str
    name: str = ""
    tier: ModelTier = ModelTier.STANDARD
    context_window: int = 128000
    max_output: int = 4096

    def model_post_init(self, __context: object) -> None:
        if not self.name:
            self.name = self.id


class ProviderConfig(BaseModel):
    """An OpenAI-compatible endpoint and its model catalog."""

    id: str = "openai"
    name: str = ""
    api_key: str = ""
    base_url: str | None = None
    supports_tools: bool = True
    models: list[ModelConfig] = Field(default_factory=list)

    def model_post_init(self, __context: object) -> None:
        if not self.name:
            self.name = self.id.replace("_", " ").title()

    def resolve_api_key(self) -> str | None:
        if self.api_key:
            return self.api_key
        env_map = {
            "openai": "OPENAI_API_KEY",
            "openrouter": "OPENROUTER_API_KEY",
        }
        env_var = env_map.get(self.id, f"{self.id.upper()}_API_KEY")
        return os.environ.get(env_var) or None


DEFAULT_PROVIDERS: list[dict] = [
    {
        "id": "openai",
        "name": "OpenAI",
        "models": [
            {"id": "gpt-4o-mini", "tier": "fast"},
            {"id": "gpt-4o", "tier": "standard"},
            {"id": "o3", "tier": "powerful", "context_window": 200000, "max_output": 16384},
        ],
    },
]
