"""
Tests for koro.agent — full turns through the session store, context
builder, tool loop and a scripted LLM client.
"""

from __future__ import annotations

import asyncio
import json
import math
from unittest.mock import patch

import pytest

from helpers import ScriptedClient, text_reply, tool_reply
from koro.agent import (
    NO_RESPONSE_TEXT,
    SUMMARY_INSTRUCTIONS,
    TOOL_CALL_PLACEHOLDER,
    Agent,
    compression_split,
    merge_summaries,
    render_transcript,
)
from koro.harness.loop import LIMIT_MESSAGE
from koro.memory import SessionStore
from koro.types import InboundMessage, LLMResponse, Message, ToolCall


def _inbound(key: str, text: str) -> InboundMessage:
    return InboundMessage(session_key=key, user_display_name=key.split(":", 1)[1], text=text)


def _agent(client, registry, sessions, memory, **kwargs) -> Agent:
    return Agent(client, registry, sessions, memory, **kwargs)


class EchoClient:
    """Answers every request with the last user text, after a short pause."""

    def __init__(self, delay: float = 0.01):
        self._delay = delay
        self.calls: list[list[Message]] = []

    async def chat(self, messages, tools=None) -> LLMResponse:
        self.calls.append(list(messages))
        await asyncio.sleep(self._delay)
        last_user = [m for m in messages if m.role == "user"][-1]
        return LLMResponse(text=f"reply to {last_user.content}")


class TestScenarios:
    @pytest.mark.asyncio
    async def test_simple_question(self, registry, sessions, memory) -> None:
        client = ScriptedClient([text_reply("4")])
        agent = _agent(client, registry, sessions, memory)

        reply = await agent.handle_message(_inbound("cli:alice", "What is 2+2?"))

        assert reply.text == "4"
        assert reply.session_key == "cli:alice"
        assert not reply.is_error
        session = sessions.get("cli:alice")
        assert [(m.role, m.content) for m in session.messages] == [
            ("user", "What is 2+2?"),
            ("assistant", "4"),
        ]
        stored = json.loads(sessions.path_for("cli:alice").read_text(encoding="utf-8"))
        assert [m["role"] for m in stored["messages"]] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_tool_then_answer(self, registry, sessions, memory) -> None:
        memory.write_core("user.md", "# User\nAlice, likes tea.\n")
        client = ScriptedClient([
            tool_reply("read_core_memory", json.dumps({"file": "user.md"}), call_id="call_1"),
            text_reply("Done."),
        ])
        agent = _agent(client, registry, sessions, memory)

        reply = await agent.handle_message(_inbound("cli:alice", "What do you know about me?"))

        assert reply.text == "Done."
        messages = sessions.get("cli:alice").messages
        assert [m.role for m in messages] == ["user", "assistant", "tool", "assistant"]
        assert messages[1].tool_calls[0].name == "read_core_memory"
        assert messages[2].tool_call_id == "call_1"
        assert "Alice, likes tea." in messages[2].content
        assert messages[3].content == "Done."

    @pytest.mark.asyncio
    async def test_iteration_limit(self, registry, sessions, memory) -> None:
        client = ScriptedClient(default=tool_reply("read_core_memory", '{"file": "state.md"}'))
        agent = _agent(client, registry, sessions, memory, max_tool_iterations=3)

        reply = await agent.handle_message(_inbound("cli:alice", "loop forever"))

        assert reply.text == LIMIT_MESSAGE
        assert len(client.calls) == 3
        messages = sessions.get("cli:alice").messages
        # user turn + (tool request, tool result) per iteration
        assert len(messages) == 1 + 2 * 3
        assert all(m.content != LIMIT_MESSAGE for m in messages)

    @pytest.mark.asyncio
    async def test_iteration_limit_persists_id_matched_results(self, registry, sessions, memory) -> None:
        client = ScriptedClient([
            LLMResponse(tool_calls=[
                ToolCall(id=f"t{i}a", name="read_core_memory", arguments='{"file": "state.md"}'),
                ToolCall(id=f"t{i}b", name="no_such_tool", arguments="{}"),
            ])
            for i in range(3)
        ])
        agent = _agent(client, registry, sessions, memory, max_tool_iterations=3)

        reply = await agent.handle_message(_inbound("cli:alice", "loop forever"))

        assert reply.text == LIMIT_MESSAGE
        messages = sessions.get("cli:alice").messages
        assert len(messages) == 1 + 3 * 3
        expected_ids: list[str] = []
        for message in messages[1:]:
            if message.role == "assistant":
                assert not expected_ids
                expected_ids = [c.id for c in message.tool_calls]
            else:
                assert message.role == "tool"
                assert message.tool_call_id == expected_ids.pop(0)
        assert not expected_ids

    @pytest.mark.asyncio
    async def test_empty_reply_uses_placeholder(self, registry, sessions, memory) -> None:
        client = ScriptedClient([LLMResponse(text=None)])
        agent = _agent(client, registry, sessions, memory)

        with patch("koro.agent.logger") as log:
            reply = await agent.handle_message(_inbound("cli:alice", "hello?"))

        assert reply.text == NO_RESPONSE_TEXT
        assert not reply.is_error
        assert sessions.get("cli:alice").messages[-1].content == ""
        complete = [c for c in log.info.call_args_list if c.args == ("agent.turn_complete",)]
        assert complete[0].kwargs["tools_used"] == []

    @pytest.mark.asyncio
    async def test_turn_log_lists_tools_used(self, registry, sessions, memory) -> None:
        client = ScriptedClient([
            tool_reply("read_core_memory", '{"file": "state.md"}', call_id="c1"),
            tool_reply("read_core_memory", '{"file": "user.md"}', call_id="c2"),
            text_reply("ok"),
        ])
        agent = _agent(client, registry, sessions, memory)

        with patch("koro.agent.logger") as log:
            await agent.handle_message(_inbound("cli:alice", "look around"))

        complete = [c for c in log.info.call_args_list if c.args == ("agent.turn_complete",)]
        assert complete[0].kwargs["tools_used"] == ["read_core_memory"]
        assert complete[0].kwargs["tool_calls"] == 2

    @pytest.mark.asyncio
    async def test_system_prompt_contains_memory_and_tool_hint(self, registry, sessions, memory) -> None:
        client = ScriptedClient([text_reply("hi")])
        agent = _agent(client, registry, sessions, memory)
        await agent.handle_message(_inbound("cli:alice", "hello"))

        request, tools = client.calls[0]
        assert request[0].role == "system"
        assert "I am koro" in request[0].content
        assert "You have access to tools" in request[0].content
        assert request[-1].content == "hello"
        assert tools


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_same_key_turns_are_serialized(self, registry, sessions, memory) -> None:
        client = EchoClient()
        agent = _agent(client, registry, sessions, memory)

        replies = await asyncio.gather(
            agent.handle_message(_inbound("cli:alice", "A")),
            agent.handle_message(_inbound("cli:alice", "B")),
        )

        assert [r.text for r in replies] == ["reply to A", "reply to B"]
        messages = sessions.get("cli:alice").messages
        assert [m.content for m in messages] == ["A", "reply to A", "B", "reply to B"]
        # The second turn saw the first turn's full exchange.
        assert [m.content for m in client.calls[1][1:]] == ["A", "reply to A", "B"]

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self, registry, sessions, memory) -> None:
        client = EchoClient()
        agent = _agent(client, registry, sessions, memory)

        await asyncio.gather(
            agent.handle_message(_inbound("cli:alice", "secret from alice")),
            agent.handle_message(_inbound("cli:bob", "hello from bob")),
        )

        bob = sessions.get("cli:bob").messages
        assert [m.content for m in bob] == ["hello from bob", "reply to hello from bob"]
        for request in client.calls:
            contents = " ".join(m.text for m in request)
            if "hello from bob" in contents:
                assert "secret from alice" not in contents


class TestCompression:
    async def _seed(self, sessions: SessionStore, key: str, count: int) -> list[Message]:
        history = []
        for i in range(count // 2):
            history.append(Message.user(f"question {i}"))
            history.append(Message.assistant(f"answer {i}"))
        async with sessions.acquire(key) as session:
            session.messages = list(history)
            await sessions.persist(key, session)
        return history

    @pytest.mark.asyncio
    async def test_no_compression_below_threshold(self, registry, sessions, memory) -> None:
        await self._seed(sessions, "cli:alice", 2)
        client = ScriptedClient([text_reply("ok")])
        agent = _agent(client, registry, sessions, memory, compression_threshold=4)

        await agent.handle_message(_inbound("cli:alice", "next"))

        assert len(client.calls) == 1
        session = sessions.get("cli:alice")
        assert session.summary is None
        assert len(session.messages) == 4

    @pytest.mark.asyncio
    async def test_compression_folds_older_half(self, registry, sessions, memory) -> None:
        history = await self._seed(sessions, "cli:alice", 4)
        client = ScriptedClient([text_reply("Alice asked two questions."), text_reply("ok")])
        agent = _agent(client, registry, sessions, memory, compression_threshold=4)

        await agent.handle_message(_inbound("cli:alice", "next"))

        summary_request, summary_tools = client.calls[0]
        assert summary_tools is None
        assert summary_request[0].content == SUMMARY_INSTRUCTIONS
        assert "user: question 0" in summary_request[1].content

        session = sessions.get("cli:alice")
        assert session.summary == "Alice asked two questions."
        kept = session.messages[: len(session.messages) - 2]
        assert len(kept) == math.ceil(len(history) / 2)
        assert kept == history[2:]

        turn_request, _ = client.calls[1]
        assert turn_request[1].role == "system"
        assert "Alice asked two questions." in turn_request[1].content

    @pytest.mark.asyncio
    async def test_compression_failure_leaves_history(self, registry, sessions, memory) -> None:
        history = await self._seed(sessions, "cli:alice", 4)
        client = ScriptedClient([RuntimeError("summarizer down"), text_reply("still here")])
        agent = _agent(client, registry, sessions, memory, compression_threshold=4)

        reply = await agent.handle_message(_inbound("cli:alice", "next"))

        assert reply.text == "still here"
        session = sessions.get("cli:alice")
        assert session.summary is None
        assert session.messages[:4] == history

    @pytest.mark.asyncio
    async def test_empty_summary_is_ignored(self, registry, sessions, memory) -> None:
        await self._seed(sessions, "cli:alice", 4)
        client = ScriptedClient([text_reply("   "), text_reply("ok")])
        agent = _agent(client, registry, sessions, memory, compression_threshold=4)
        await agent.handle_message(_inbound("cli:alice", "next"))
        assert sessions.get("cli:alice").summary is None
        assert len(sessions.get("cli:alice").messages) == 6


class TestFailures:
    @pytest.mark.asyncio
    async def test_llm_failure_replies_error_and_keeps_user_turn(self, registry, sessions, memory) -> None:
        client = ScriptedClient([RuntimeError("provider down")])
        agent = _agent(client, registry, sessions, memory)

        reply = await agent.handle_message(_inbound("cli:alice", "hello?"))

        assert reply.text == "Error: provider down"
        assert reply.is_error
        messages = sessions.get("cli:alice").messages
        assert [(m.role, m.content) for m in messages] == [("user", "hello?")]
        assert agent.stats["turns_failed"] == 1

    @pytest.mark.asyncio
    async def test_persist_failure_replies_error(self, registry, sessions, memory) -> None:
        client = ScriptedClient([text_reply("never sent")])
        agent = _agent(client, registry, sessions, memory)

        with patch.object(SessionStore, "_write_atomic", side_effect=OSError("read-only filesystem")):
            reply = await agent.handle_message(_inbound("cli:alice", "hello"))

        assert reply.is_error
        assert reply.text.startswith("Error: ")
        assert "read-only filesystem" in reply.text
        assert client.calls == []


class TestHelpers:
    def test_render_transcript_uses_placeholder(self) -> None:
        messages = [
            Message.user("hi"),
            Message.assistant(None, [ToolCall(id="1", name="x")]),
            Message.tool_result("1", "result"),
        ]
        assert render_transcript(messages) == (
            f"user: hi\nassistant: {TOOL_CALL_PLACEHOLDER}\ntool: result\n"
        )

    def test_split_is_midpoint(self) -> None:
        messages = [Message.user(str(i)) for i in range(5)]
        assert compression_split(messages) == 2

    def test_split_never_orphans_tool_results(self) -> None:
        messages = [
            Message.user("q"),
            Message.assistant(None, [ToolCall(id="1", name="x")]),
            Message.tool_result("1", "r"),
            Message.assistant("a"),
        ]
        split = compression_split(messages)
        assert messages[split].role != "tool"
        assert split == 1

    def test_merge_summaries(self) -> None:
        assert merge_summaries(None, "new", 100) == "new"
        assert merge_summaries("old", "new", 100) == "old\n\nnew"
        assert merge_summaries("x" * 90, "new", 50) == "new"
