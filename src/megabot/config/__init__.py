"""Configuration management."""

from megabot.config.providers import ModelConfig, ProviderConfig
from megabot.config.settings import Settings

__all__ = ["ModelConfig", "ProviderConfig", "Settings"]
