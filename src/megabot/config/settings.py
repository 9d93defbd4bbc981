"""Configuration management with TOML loading and environment overrides."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from datetime import tzinfo
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

from megabot.config.providers import DEFAULT_PROVIDERS, ProviderConfig
from megabot.persistence.models import ModelTier

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

DEFAULT_CONFIG_DIR = ".megabot"
DEFAULT_CONFIG_FILE = "config.toml"


@dataclass
class Settings:
    providers: list[ProviderConfig] = field(default_factory=list)
    default_tier: ModelTier = ModelTier.STANDARD
    max_tool_rounds: int | None = None
    max_tokens: int = 4096
    history_char_budget: int = 400_000
    stream_buffer_ttl: float = 60.0
    background_retries: int = 1
    scheduler_interval: float = 60.0
    timezone: str = ""
    webhook_url: str = ""
    working_directory: str = field(default_factory=lambda: os.getcwd())
    project_config_dir: str = DEFAULT_CONFIG_DIR
    data_dir: str = ""
    database: str = ""

    def __post_init__(self) -> None:
        if not self.data_dir:
            self.data_dir = os.path.join(self.working_directory, self.project_config_dir)
        if not self.providers:
            self.providers = [ProviderConfig(**p) for p in DEFAULT_PROVIDERS]

    @property
    def db_path(self) -> str:
        return self.database or os.path.join(self.data_dir, "megabot.db")

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "Settings":
        if config_path is None:
            config_path = Path(os.getcwd()) / DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE

        config_path = Path(config_path)
        raw: dict[str, Any] = {}

        if config_path.exists():
            with open(config_path, "rb") as f:
                raw = tomllib.load(f)

        return cls._from_dict(raw, os.environ)

    @classmethod
    def _from_dict(cls, data: dict[str, Any], env: Any = None) -> "Settings":
        env = env or {}
        providers = [ProviderConfig(**p) for p in data.get("providers", [])]
        general = data.get("megabot", data.get("general", {}))
        background = data.get("background", {})
        notifications = data.get("notifications", {})

        max_rounds = env.get("MEGABOT_MAX_TOOL_ROUNDS", general.get("max_tool_rounds"))

        return cls(
            providers=providers,
            default_tier=ModelTier(general.get("default_tier", "standard")),
            max_tool_rounds=int(max_rounds) if max_rounds else None,
            max_tokens=general.get("max_tokens", 4096),
            history_char_budget=general.get("history_char_budget", 400_000),
            stream_buffer_ttl=float(general.get("stream_buffer_ttl", 60.0)),
            background_retries=background.get("retries", 1),
            scheduler_interval=float(background.get("scheduler_interval", 60.0)),
            timezone=background.get("timezone", ""),
            webhook_url=env.get("MEGABOT_WEBHOOK_URL", notifications.get("webhook_url", "")),
            working_directory=data.get("working_directory", os.getcwd()),
            database=env.get("MEGABOT_DB", general.get("database", "")),
        )

    @property
    def schedule_tz(self) -> tzinfo | None:
        """Timezone that cron fields are evaluated in (None means UTC)."""
        return ZoneInfo(self.timezone) if self.timezone else None

    def ensure_dirs(self) -> None:
        os.makedirs(self.data_dir, exist_ok=True)
