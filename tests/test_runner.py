"""Tests for the AgentRunner tool-call loop."""

from __future__ import annotations

from conftest import error_chunks, text_chunks, tool_call_chunks
from megabot.bus import EventType
from megabot.core.router import ModelRouter
from megabot.core.runner import BASE_TOOL_NAMES, AgentRunner, AgentRunParams
from megabot.persistence.models import MessageRole
from megabot.providers.base import ChunkType
from megabot.tools.base import ToolRegistry
from megabot.tools.system import SearchToolsTool


def make_params(conversation_id=None, **kwargs) -> AgentRunParams:
    return AgentRunParams(
        system_prompt="You are a test assistant.",
        initial_messages=[{"role": "user", "content": "hello"}],
        conversation_id=conversation_id,
        **kwargs,
    )


async def collect(runner: AgentRunner, params: AgentRunParams):
    return [chunk async for chunk in runner.stream(params)]


class TestTextOnly:
    async def test_single_round(self, runner, provider, store, conversation):
        provider.script(text_chunks("Hi there", input_tokens=12, output_tokens=3))

        chunks = await collect(runner, make_params(conversation.id))

        assert [c.type for c in chunks] == [ChunkType.TEXT, ChunkType.DONE]
        assert chunks[-1].usage.input_tokens == 12
        assert len(provider.calls) == 1

        messages = await store.get_messages(conversation.id)
        assert len(messages) == 1
        assert messages[0].role == MessageRole.ASSISTANT
        assert messages[0].content == "Hi there"
        assert messages[0].model == "mock-standard"
        assert messages[0].token_count == 15

    async def test_empty_response_persists_placeholder(self, runner, provider, store, conversation):
        provider.script(text_chunks(""))
        await collect(runner, make_params(conversation.id))

        messages = await store.get_messages(conversation.id)
        assert messages[0].content == "[Error: no response generated]"

    async def test_no_conversation_writes_nothing(self, runner, provider, store):
        provider.script(text_chunks("ok"))
        result = await runner.run(make_params())
        assert result.text == "ok"
        assert result.error is None
        assert await store.list_conversations() == []


class TestToolRounds:
    async def test_tool_round_then_answer(self, runner, provider, store, conversation, event_bus):
        events = []
        event_bus.on_any(events.append)
        provider.script(
            tool_call_chunks("echo", '{"message": "ping"}', text="Let me check."),
            text_chunks("Echoed ping"),
        )

        chunks = await collect(runner, make_params(conversation.id, tools=["echo"]))

        types = [c.type for c in chunks]
        assert ChunkType.TOOL_EXECUTING in types
        assert types[-1] == ChunkType.DONE
        result = next(c for c in chunks if c.type == ChunkType.TOOL_RESULT)
        assert result.text == "Echo: ping"
        assert not result.is_error

        # The second model call sees the assistant tool_use and the tool_result
        second = provider.calls[1]["messages"]
        assert second[-2]["role"] == "assistant"
        assert second[-2]["content"][0] == {"type": "text", "text": "Let me check."}
        assert second[-2]["content"][1]["type"] == "tool_use"
        assert second[-2]["content"][1]["input"] == {"message": "ping"}
        assert second[-1]["role"] == "user"
        assert second[-1]["content"][0]["tool_use_id"] == "tc-001"

        messages = await store.get_messages(conversation.id)
        assert [m.role for m in messages] == [
            MessageRole.ASSISTANT,
            MessageRole.TOOL,
            MessageRole.ASSISTANT,
        ]
        assert messages[0].blocks is not None
        assert messages[1].blocks[0].content == "Echo: ping"
        assert messages[2].content == "Echoed ping"

        event_types = [e.type for e in events]
        assert EventType.TOOL_CALLED in event_types
        assert EventType.TOOL_RESULT in event_types
        assert EventType.LLM_RESPONSE in event_types

    async def test_tool_error_becomes_result_block(self, runner, provider, conversation, event_bus):
        errors = []
        event_bus.on(EventType.TOOL_ERROR, errors.append)
        provider.script(tool_call_chunks("fail_tool"), text_chunks("Sorry, that failed"))

        result = await runner.run(make_params(conversation.id, tools=["fail_tool"]))

        assert result.error is None
        assert result.text == "Sorry, that failed"
        assert result.tool_call_count == 1
        tool_result = provider.calls[1]["messages"][-1]["content"][0]
        assert tool_result["is_error"] is True
        assert tool_result["content"] == "Error: Tool always fails"
        assert len(errors) == 1

    async def test_invalid_arguments_parse_to_empty(self, runner, provider, conversation):
        provider.script(tool_call_chunks("echo", "{not json"), text_chunks("done"))
        chunks = await collect(runner, make_params(conversation.id, tools=["echo"]))
        executing = next(c for c in chunks if c.type == ChunkType.TOOL_EXECUTING)
        assert executing.tool_input == {}

    async def test_calls_in_one_round_run_in_order(self, runner, provider, conversation):
        first = tool_call_chunks("echo", '{"message": "one"}', tool_call_id="a")
        second = tool_call_chunks("echo", '{"message": "two"}', tool_call_id="b")
        # One model response carrying both calls
        provider.script(first[:2] + second[:2] + first[2:], text_chunks("both"))

        chunks = await collect(runner, make_params(conversation.id, tools=["echo"]))

        results = [c.text for c in chunks if c.type == ChunkType.TOOL_RESULT]
        assert results == ["Echo: one", "Echo: two"]

    async def test_max_rounds(self, store, provider, tool_registry, event_bus, conversation):
        runner = AgentRunner(
            store=store,
            router=ModelRouter(lambda: [provider]),
            tool_registry=tool_registry,
            bus=event_bus,
            max_rounds=1,
        )
        provider.script(
            tool_call_chunks("echo", '{"message": "1"}'),
            tool_call_chunks("echo", '{"message": "2"}'),
        )

        chunks = await collect(runner, make_params(conversation.id, tools=["echo"]))

        assert chunks[-1].type == ChunkType.ERROR
        assert "maximum tool rounds" in chunks[-1].error
        assert len(provider.calls) == 2


class TestModelErrors:
    async def test_error_chunk_ends_execution(self, runner, provider, store, conversation):
        provider.script(error_chunks("rate limited"))

        chunks = await collect(runner, make_params(conversation.id))

        assert [c.type for c in chunks] == [ChunkType.ERROR]
        assert chunks[0].error == "rate limited"
        assert await store.get_messages(conversation.id) == []

    async def test_exception_mid_stream(self, runner, provider, event_bus):
        errors = []
        event_bus.on(EventType.LLM_ERROR, errors.append)
        provider.script([text_chunks("partial")[0], ConnectionError("connection reset")])

        result = await runner.run(make_params())

        assert result.error == "connection reset"
        assert result.text == "partial"
        assert errors[0].data["partial_text"] == "partial"

    async def test_exception_mid_stream_ends_with_one_error_chunk(
        self, runner, provider, store, conversation
    ):
        provider.script([text_chunks("partial")[0], ConnectionError("connection reset")])

        chunks = await collect(runner, make_params(conversation.id))

        assert [c.type for c in chunks] == [ChunkType.TEXT, ChunkType.ERROR]
        assert chunks[-1].error == "connection reset"
        assert len(provider.calls) == 1


class TestToolActivation:
    async def test_base_tools_always_offered(self, store, provider, event_bus):
        registry = ToolRegistry()
        registry.register(SearchToolsTool(registry))
        runner = AgentRunner(store, ModelRouter(lambda: [provider]), registry, event_bus)
        provider.script(text_chunks("hi"))

        await runner.run(make_params())

        assert provider.calls[0]["tools"] == ["search_tools"]
        assert "search_tools" in BASE_TOOL_NAMES

    async def test_search_tools_activates_matches(self, store, provider, event_bus, tool_registry):
        tool_registry.register(SearchToolsTool(tool_registry))
        runner = AgentRunner(store, ModelRouter(lambda: [provider]), tool_registry, event_bus)
        provider.script(
            tool_call_chunks("search_tools", '{"query": "echo"}'),
            text_chunks("found it"),
        )

        await runner.run(make_params())

        assert "echo" not in provider.calls[0]["tools"]
        assert "echo" in provider.calls[1]["tools"]
        assert "fail_tool" not in provider.calls[1]["tools"]

    async def test_provider_without_tool_support(self, store, tool_registry, event_bus):
        from conftest import MockProvider

        provider = MockProvider(supports_tools=False)
        provider.script(text_chunks("plain"))
        runner = AgentRunner(store, ModelRouter(lambda: [provider]), tool_registry, event_bus)

        await runner.run(make_params(tools=["echo"]))

        assert provider.calls[0]["tools"] == []
