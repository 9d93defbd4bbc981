"""Tests for TOML settings and environment overrides."""

from __future__ import annotations

import os

from megabot.config.providers import ProviderConfig
from megabot.config.settings import Settings
from megabot.persistence.models import ModelTier


CONFIG = """
working_directory = "{workdir}"

[megabot]
default_tier = "fast"
max_tool_rounds = 8
history_char_budget = 1000

[background]
retries = 3
scheduler_interval = 15
timezone = "Europe/Amsterdam"

[notifications]
webhook_url = "https://hooks.example.com/a"

[[providers]]
id = "local"
base_url = "http://localhost:11434/v1"
supports_tools = false

[[providers.models]]
id = "llama3"
tier = "fast"
"""


def test_defaults(tmp_path):
    settings = Settings(working_directory=str(tmp_path))

    assert settings.data_dir == os.path.join(str(tmp_path), ".megabot")
    assert settings.db_path == os.path.join(settings.data_dir, "megabot.db")
    assert settings.max_tool_rounds is None
    assert settings.schedule_tz is None
    assert [p.id for p in settings.providers] == ["openai"]
    assert {m.tier for m in settings.providers[0].models} == set(ModelTier)


def test_load_from_file(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text(CONFIG.format(workdir=tmp_path.as_posix()))

    settings = Settings.load(path)

    assert settings.default_tier == ModelTier.FAST
    assert settings.max_tool_rounds == 8
    assert settings.history_char_budget == 1000
    assert settings.background_retries == 3
    assert settings.scheduler_interval == 15.0
    assert str(settings.schedule_tz) == "Europe/Amsterdam"
    assert settings.webhook_url == "https://hooks.example.com/a"

    [provider] = settings.providers
    assert provider.name == "Local"
    assert provider.supports_tools is False
    assert provider.models[0].name == "llama3"


def test_missing_file_uses_defaults(tmp_path):
    settings = Settings.load(tmp_path / "absent.toml")
    assert settings.default_tier == ModelTier.STANDARD
    assert settings.background_retries == 1


def test_environment_overrides():
    settings = Settings._from_dict(
        {"megabot": {"max_tool_rounds": 8, "database": "from-file.db"}},
        {
            "MEGABOT_MAX_TOOL_ROUNDS": "3",
            "MEGABOT_DB": ":memory:",
            "MEGABOT_WEBHOOK_URL": "https://hooks.example.com/env",
        },
    )

    assert settings.max_tool_rounds == 3
    assert settings.db_path == ":memory:"
    assert settings.webhook_url == "https://hooks.example.com/env"


def test_general_section_alias():
    settings = Settings._from_dict({"general": {"max_tokens": 1024}})
    assert settings.max_tokens == 1024


def test_api_key_resolution(monkeypatch):
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-or")
    monkeypatch.delenv("LOCAL_API_KEY", raising=False)

    assert ProviderConfig(id="openrouter").resolve_api_key() == "sk-or"
    assert ProviderConfig(id="local").resolve_api_key() is None
    assert ProviderConfig(id="local", api_key="explicit").resolve_api_key() == "explicit"
