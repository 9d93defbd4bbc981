"""Tests for the click entry points."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from megabot.cli.app import cli
from megabot.persistence.models import ScheduledTask
from megabot.persistence.store import Store


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setattr("megabot.cli.app.configure_logging", lambda *args, **kwargs: None)
    db = tmp_path / "megabot.db"
    path = tmp_path / "config.toml"
    path.write_text(
        f'working_directory = "{tmp_path.as_posix()}"\n\n[megabot]\ndatabase = "{db.as_posix()}"\n'
    )
    return path, db


def _seed_scheduled(db_path: str) -> None:
    async def seed():
        store = Store(db_path)
        await store.initialize()
        await store.create_scheduled_task(
            ScheduledTask(name="standup", schedule="0 9 * * 1-5", input="Remind me")
        )
        await store.close()

    asyncio.run(seed())


class TestClickCommands:
    def test_cli_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("chat", "serve", "tasks", "scheduler"):
            assert command in result.output

    def test_no_subcommand_calls_repl(self):
        with patch("megabot.cli.app.asyncio.run") as mock_run, \
             patch("megabot.cli.app.Settings.load", return_value=MagicMock()), \
             patch("megabot.cli.app.configure_logging"):
            CliRunner().invoke(cli)
        mock_run.assert_called_once()

    def test_serve_passes_options(self):
        with patch("megabot.cli.app.asyncio.run") as mock_run, \
             patch("megabot.cli.app.Settings.load", return_value=MagicMock()), \
             patch("megabot.cli.app.configure_logging"), \
             patch("megabot.api.http.server.run_server", new=MagicMock()) as run_server:
            result = CliRunner().invoke(cli, ["serve", "--port", "9001", "--no-scheduler"])

        assert result.exit_code == 0
        mock_run.assert_called_once()
        assert run_server.call_args.kwargs["port"] == 9001
        assert run_server.call_args.kwargs["scheduler"] is False


class TestStoreBackedCommands:
    def test_tasks_empty(self, config_file):
        path, _ = config_file
        result = CliRunner().invoke(cli, ["-c", str(path), "tasks"])
        assert result.exit_code == 0, result.output
        assert "No tasks found." in result.output

    def test_scheduler_list(self, config_file):
        path, db = config_file
        _seed_scheduled(str(db))

        result = CliRunner().invoke(cli, ["-c", str(path), "scheduler", "list"])

        assert result.exit_code == 0, result.output
        assert "standup" in result.output

    def test_scheduler_tick_with_nothing_due(self, config_file):
        path, _ = config_file
        result = CliRunner().invoke(cli, ["-c", str(path), "scheduler", "tick"])
        assert result.exit_code == 0, result.output
        assert "Fired 0 scheduled task(s)." in result.output
