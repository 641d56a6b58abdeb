"""Scripted LLM client and response builders shared by the test modules."""

from __future__ import annotations

from typing import Any, Callable, Optional, Union

from koro.types import LLMResponse, Message, ToolCall

ScriptStep = Union[LLMResponse, Exception, Callable[[list[Message], Any], LLMResponse]]


class ScriptedClient:
    """
    A fake LLM client that returns pre-scripted responses in order.

    Each step is an ``LLMResponse``, an exception to raise, or a callable
    ``(messages, tools) -> LLMResponse``. When the script runs out, ``default``
    (if given) is returned forever. Every call is recorded as
    ``(messages, tools)`` with the message list copied.
    """

    provider = "scripted"

    def __init__(self, steps: Optional[list[ScriptStep]] = None, default: Optional[LLMResponse] = None):
        self._steps = list(steps or [])
        self._default = default
        self.calls: list[tuple[list[Message], Any]] = []
        self.closed = False

    async def chat(self, messages: list[Message], tools: Any = None) -> LLMResponse:
        self.calls.append((list(messages), tools))
        if self._steps:
            step = self._steps.pop(0)
        elif self._default is not None:
            step = self._default
        else:
            raise AssertionError("ScriptedClient ran out of responses")
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(messages, tools)
        return step

    async def close(self) -> None:
        self.closed = True


def text_reply(text: str) -> LLMResponse:
    return LLMResponse(text=text)


def tool_reply(name: str, arguments: str = "{}", call_id: str = "call_1", text: Optional[str] = None) -> LLMResponse:
    return LLMResponse(text=text, tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)])
