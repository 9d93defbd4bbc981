"""Tests for the tool registry: registration, search and execution."""

from __future__ import annotations

import pytest

from conftest import EchoTool, FailTool
from megabot.errors import ToolRegistrationError
from megabot.tools.base import BaseTool, ToolContext, ToolRegistry, ToolResult


class WeatherTool(BaseTool):
    name = "get_weather"
    description = "Current weather for a city"
    keywords = ["forecast", "temperature"]

    def execute(self, params, context):
        return {"city": params.get("city"), "temp": 21}


class OutlookTool(BaseTool):
    name = "weekly_outlook"
    description = "Weather outlook for the coming week"

    def execute(self, params, context):
        return "sunny"


class TestRegistration:
    def test_duplicate_name_rejected(self):
        reg = ToolRegistry()
        reg.register(EchoTool())
        with pytest.raises(ToolRegistrationError, match="echo"):
            reg.register(EchoTool())

    def test_plugin_id_recorded(self):
        reg = ToolRegistry()
        tool = EchoTool()
        reg.register(tool, plugin_id="testing")
        assert reg.get("echo").plugin_id == "testing"

    def test_unregister(self):
        reg = ToolRegistry()
        reg.register(EchoTool())
        assert reg.unregister("echo") is True
        assert reg.unregister("echo") is False
        assert reg.get("echo") is None

    def test_names_in_registration_order(self, tool_registry):
        assert tool_registry.names() == ["echo", "fail_tool"]

    def test_definition(self):
        definition = EchoTool().get_definition()
        assert definition.name == "echo"
        assert definition.parameters["required"] == ["message"]


class TestSearch:
    def test_ranks_by_matching_words(self):
        reg = ToolRegistry()
        reg.register(EchoTool())
        reg.register(WeatherTool())

        results = reg.search("weather forecast today")
        assert [t.name for t in results] == ["get_weather"]

    def test_matches_keywords(self):
        reg = ToolRegistry()
        reg.register(EchoTool())
        reg.register(WeatherTool())
        assert [t.name for t in reg.search("temperature")] == ["get_weather"]

    def test_short_words_ignored(self):
        reg = ToolRegistry()
        reg.register(EchoTool())
        reg.register(WeatherTool())
        # Every word is too short, so everything is returned
        assert len(reg.search("a of")) == 2

    @pytest.mark.parametrize("query", ["", "   "])
    def test_blank_query_returns_every_tool(self, query):
        reg = ToolRegistry()
        reg.register(WeatherTool())
        reg.register(EchoTool())
        reg.register(OutlookTool())
        assert [t.name for t in reg.search(query)] == ["get_weather", "echo", "weekly_outlook"]

    def test_ties_keep_registration_order(self):
        reg = ToolRegistry()
        reg.register(OutlookTool())
        reg.register(EchoTool())
        reg.register(WeatherTool())
        assert [t.name for t in reg.search("weather")] == ["weekly_outlook", "get_weather"]
        # A higher score still wins over registration order
        assert [t.name for t in reg.search("weather temperature")] == ["get_weather", "weekly_outlook"]

    def test_no_match(self):
        reg = ToolRegistry()
        reg.register(EchoTool())
        assert reg.search("spreadsheet") == []


class TestExecute:
    async def test_async_tool(self, tool_registry):
        result = await tool_registry.execute("echo", {"message": "hi"})
        assert result.success
        assert result.to_content() == "Echo: hi"

    async def test_plain_return_value_wrapped(self):
        reg = ToolRegistry()
        reg.register(WeatherTool())
        result = await reg.execute("get_weather", {"city": "Oslo"}, ToolContext())
        assert result.success
        assert result.data == {"city": "Oslo", "temp": 21}
        assert '"temp": 21' in result.to_content()

    async def test_exception_becomes_failure(self, tool_registry):
        result = await tool_registry.execute("fail_tool", {})
        assert not result.success
        assert result.error == "Tool always fails"
        assert result.to_content() == "Tool always fails"

    async def test_unknown_tool(self, tool_registry):
        result = await tool_registry.execute("nope", {})
        assert result == ToolResult.fail('Tool "nope" not found')
