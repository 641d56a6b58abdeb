"""Tests for koro.api — wire-format conversion and the provider factory."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from koro.api import DEFAULT_BASE_URLS, AnthropicClient, OpenAICompatibleClient, create_client
from koro.api.anthropic_client import from_anthropic_response, to_anthropic_messages
from koro.api.openai_client import from_openai_response, to_openai_messages, to_openai_tools
from koro.config import LLMConfig
from koro.errors import ConfigError, LLMResponseError
from koro.tools import ToolDefinition
from koro.types import Message, ToolCall


def _config(**overrides) -> LLMConfig:
    values = {"provider": "openrouter", "api_key": "test-key", "model": "test-model", "retry_max_retries": 0}
    values.update(overrides)
    return LLMConfig(**values)


def _conversation() -> list[Message]:
    return [
        Message.system("You are Koro."),
        Message.system("Previous conversation summary:\nEarlier chat."),
        Message.user("Check my notes"),
        Message.assistant(
            "Looking.",
            [
                ToolCall(id="c1", name="search_logs", arguments='{"query": "milk"}'),
                ToolCall(id="c2", name="read_core_memory", arguments='{"file": "user.md"}'),
            ],
        ),
        Message.tool_result("c1", "[2026-01-05] - buy milk"),
        Message.tool_result("c2", "# User"),
        Message.user("thanks"),
    ]


_TOOL = ToolDefinition(
    name="search_logs",
    description="Search logs.",
    input_schema={"type": "object", "properties": {"query": {"type": "string"}}, "required": ["query"]},
)


class TestAnthropicConversion:
    def test_system_messages_are_merged(self) -> None:
        system, _ = to_anthropic_messages(_conversation())
        assert system == "You are Koro.\n\nPrevious conversation summary:\nEarlier chat."

    def test_turns_alternate_and_results_merge(self) -> None:
        _, turns = to_anthropic_messages(_conversation())
        assert [t["role"] for t in turns] == ["user", "assistant", "user"]

        assistant = turns[1]["content"]
        assert assistant[0] == {"type": "text", "text": "Looking."}
        assert assistant[1] == {"type": "tool_use", "id": "c1", "name": "search_logs", "input": {"query": "milk"}}

        results = turns[2]["content"]
        assert [b["type"] for b in results] == ["tool_result", "tool_result", "text"]
        assert results[0]["tool_use_id"] == "c1"
        assert results[1]["tool_use_id"] == "c2"
        assert results[2]["text"] == "thanks"

    def test_empty_assistant_turn_gets_placeholder(self) -> None:
        _, turns = to_anthropic_messages([Message.user("hi"), Message.assistant(""), Message.user("again")])
        assert turns[1]["content"] == [{"type": "text", "text": "(no content)"}]

    def test_bad_tool_arguments_become_empty_input(self) -> None:
        _, turns = to_anthropic_messages([
            Message.user("hi"),
            Message.assistant(None, [ToolCall(id="x", name="t", arguments="{broken")]),
        ])
        assert turns[1]["content"][0]["input"] == {}

    def test_response_parsing(self) -> None:
        response = SimpleNamespace(content=[
            SimpleNamespace(type="text", text="Let me check."),
            SimpleNamespace(type="tool_use", id="tu_1", name="search_logs", input={"query": "milk"}),
        ])
        parsed = from_anthropic_response(response)
        assert parsed.text == "Let me check."
        assert parsed.tool_calls == [ToolCall(id="tu_1", name="search_logs", arguments='{"query": "milk"}')]

    def test_response_without_text(self) -> None:
        parsed = from_anthropic_response(SimpleNamespace(content=[]))
        assert parsed.text is None
        assert parsed.tool_calls == []


class TestOpenAIConversion:
    def test_messages_map_directly(self) -> None:
        converted = to_openai_messages(_conversation())
        assert [m["role"] for m in converted] == ["system", "system", "user", "assistant", "tool", "tool", "user"]
        assistant = converted[3]
        assert assistant["tool_calls"][0] == {
            "id": "c1",
            "type": "function",
            "function": {"name": "search_logs", "arguments": '{"query": "milk"}'},
        }
        assert converted[4] == {"role": "tool", "tool_call_id": "c1", "content": "[2026-01-05] - buy milk"}

    def test_assistant_without_content_or_calls(self) -> None:
        converted = to_openai_messages([Message.assistant(None)])
        assert converted == [{"role": "assistant", "content": ""}]

    def test_tools_shape(self) -> None:
        assert to_openai_tools([_TOOL]) == [{
            "type": "function",
            "function": {
                "name": "search_logs",
                "description": "Search logs.",
                "parameters": _TOOL.input_schema,
            },
        }]

    def test_response_parsing(self) -> None:
        call = SimpleNamespace(id="call_9", function=SimpleNamespace(name="search_logs", arguments=""))
        response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=None, tool_calls=[call]))])
        parsed = from_openai_response(response)
        assert parsed.text is None
        assert parsed.tool_calls == [ToolCall(id="call_9", name="search_logs", arguments="{}")]

    def test_no_choices_is_an_error(self) -> None:
        with pytest.raises(LLMResponseError):
            from_openai_response(SimpleNamespace(choices=[]))


class TestClients:
    @pytest.mark.asyncio
    async def test_openai_client_request(self) -> None:
        client = OpenAICompatibleClient(_config(), "https://example.invalid/v1")
        message = SimpleNamespace(content="hello", tool_calls=None)
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(
            return_value=SimpleNamespace(choices=[SimpleNamespace(message=message)])
        )

        response = await client.chat([Message.user("hi")], [_TOOL])

        assert response.text == "hello"
        kwargs = client._client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["messages"] == [{"role": "user", "content": "hi"}]
        assert kwargs["tools"][0]["function"]["name"] == "search_logs"

    @pytest.mark.asyncio
    async def test_openai_client_omits_empty_tools(self) -> None:
        client = OpenAICompatibleClient(_config(), "https://example.invalid/v1")
        message = SimpleNamespace(content="summary", tool_calls=None)
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(
            return_value=SimpleNamespace(choices=[SimpleNamespace(message=message)])
        )
        await client.chat([Message.user("summarize")], [])
        assert "tools" not in client._client.chat.completions.create.await_args.kwargs

    @pytest.mark.asyncio
    async def test_anthropic_client_request(self) -> None:
        client = AnthropicClient(_config(provider="anthropic", model="claude-test"))
        client._client = MagicMock()
        client._client.messages.create = AsyncMock(
            return_value=SimpleNamespace(content=[SimpleNamespace(type="text", text="hi there")])
        )

        response = await client.chat([Message.system("sys"), Message.user("hi")], [_TOOL])

        assert response.text == "hi there"
        kwargs = client._client.messages.create.await_args.kwargs
        assert kwargs["system"] == "sys"
        assert kwargs["messages"] == [{"role": "user", "content": [{"type": "text", "text": "hi"}]}]
        assert kwargs["tools"] == [_TOOL.to_api_format()]
        assert json.dumps(kwargs["tools"])


class TestFactory:
    def test_requires_api_key(self) -> None:
        with pytest.raises(ConfigError, match="API key"):
            create_client(_config(api_key=None))

    def test_openrouter_default(self) -> None:
        client = create_client(_config())
        assert isinstance(client, OpenAICompatibleClient)
        assert client.provider == "openrouter"
        assert client._base_url == DEFAULT_BASE_URLS["openrouter"]

    def test_explicit_base_url_wins(self) -> None:
        client = create_client(_config(provider="openai", base_url="http://localhost:8080/v1/"))
        assert client._base_url == "http://localhost:8080/v1"

    def test_unknown_provider_needs_base_url(self) -> None:
        with pytest.raises(ConfigError, match="Unknown LLM provider"):
            create_client(_config(provider="mystery"))
        assert isinstance(create_client(_config(provider="mystery", base_url="http://x/v1")), OpenAICompatibleClient)

    def test_anthropic(self) -> None:
        assert isinstance(create_client(_config(provider="anthropic")), AnthropicClient)
