"""
OpenAI-compatible Chat Completions client.

Most hosted providers (OpenAI, OpenRouter, MiniMax, Groq, Together, DeepSeek,
Gemini's OpenAI endpoint) accept the same request shape, so one client with a
configurable ``base_url`` covers all of them. Koro's message model already
follows this format, so conversion is a direct mapping.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

import openai
import structlog

from koro.api.base import LLMClient
from koro.errors import LLMResponseError
from koro.types import ROLE_ASSISTANT, ROLE_TOOL, LLMResponse, Message, ToolCall

if TYPE_CHECKING:
    from koro.config import LLMConfig
    from koro.tools.registry import ToolDefinition

logger = structlog.get_logger(__name__)


def to_openai_messages(messages: list[Message]) -> list[dict[str, Any]]:
    converted: list[dict[str, Any]] = []
    for message in messages:
        if message.role == ROLE_ASSISTANT:
            entry: dict[str, Any] = {"role": "assistant", "content": message.content}
            if message.tool_calls:
                entry["tool_calls"] = [call.to_dict() for call in message.tool_calls]
            elif message.content is None:
                entry["content"] = ""
        elif message.role == ROLE_TOOL:
            entry = {
                "role": "tool",
                "tool_call_id": message.tool_call_id or "",
                "content": message.text,
            }
        else:
            entry = {"role": message.role, "content": message.text}
        converted.append(entry)
    return converted


def to_openai_tools(tools: list["ToolDefinition"]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema,
            },
        }
        for tool in tools
    ]


def from_openai_response(response: Any) -> LLMResponse:
    choices = getattr(response, "choices", None)
    if not choices:
        raise LLMResponseError("Chat completion returned no choices")
    message = choices[0].message
    calls = [
        ToolCall(
            id=call.id,
            name=call.function.name,
            arguments=call.function.arguments or "{}",
        )
        for call in (message.tool_calls or [])
    ]
    return LLMResponse(text=message.content, tool_calls=calls)


class OpenAICompatibleClient(LLMClient):
    """Any ``/chat/completions`` endpoint via the ``openai`` SDK."""

    provider = "openai_compatible"

    def __init__(self, config: "LLMConfig", base_url: str):
        super().__init__(config)
        self.provider = config.provider
        self._base_url = base_url
        self._client = openai.AsyncOpenAI(
            api_key=config.api_key,
            base_url=base_url,
            max_retries=0,
        )
        logger.info(
            "openai_client.initialized",
            provider=config.provider,
            model=self._model,
            base_url=base_url,
        )

    async def _send(
        self,
        messages: list[Message],
        tools: Optional[list["ToolDefinition"]],
    ) -> LLMResponse:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": to_openai_messages(messages),
        }
        if tools:
            kwargs["tools"] = to_openai_tools(tools)
        response = await self._client.chat.completions.create(**kwargs)
        return from_openai_response(response)

    async def close(self) -> None:
        await self._client.close()
