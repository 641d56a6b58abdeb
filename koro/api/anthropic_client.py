"""
Anthropic Messages API client.

Anthropic's wire format differs from Koro's role-based messages in three ways:
system text is a separate top-level field, tool calls are ``tool_use`` content
blocks on the assistant turn, and tool results are ``tool_result`` blocks on a
*user* turn. ``to_anthropic_messages`` does that translation; consecutive
results (and a user message that directly follows them) are merged into one
user turn so roles keep alternating.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Optional

import anthropic
import structlog

from koro.api.base import LLMClient
from koro.errors import LLMResponseError
from koro.types import ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_TOOL, LLMResponse, Message, ToolCall

if TYPE_CHECKING:
    from koro.config import LLMConfig
    from koro.tools.registry import ToolDefinition

logger = structlog.get_logger(__name__)

# Anthropic rejects empty text blocks; used for assistant turns that said nothing.
_EMPTY_TURN_TEXT = "(no content)"


def _decode_input(arguments: str) -> dict[str, Any]:
    try:
        value = json.loads(arguments) if arguments else {}
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


def _is_tool_result_turn(turn: dict[str, Any]) -> bool:
    return turn["role"] == "user" and all(b.get("type") == "tool_result" for b in turn["content"])


def to_anthropic_messages(messages: list[Message]) -> tuple[Optional[str], list[dict[str, Any]]]:
    """Split out the system text and convert the rest to Anthropic turns."""
    system_parts: list[str] = []
    turns: list[dict[str, Any]] = []

    for message in messages:
        if message.role == ROLE_SYSTEM:
            system_parts.append(message.text)
            continue

        if message.role == ROLE_ASSISTANT:
            blocks: list[dict[str, Any]] = []
            if message.content:
                blocks.append({"type": "text", "text": message.content})
            for call in message.tool_calls:
                blocks.append({
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.name,
                    "input": _decode_input(call.arguments),
                })
            if not blocks:
                blocks.append({"type": "text", "text": _EMPTY_TURN_TEXT})
            turns.append({"role": "assistant", "content": blocks})
            continue

        if message.role == ROLE_TOOL:
            block = {
                "type": "tool_result",
                "tool_use_id": message.tool_call_id or "",
                "content": message.text,
            }
            if turns and _is_tool_result_turn(turns[-1]):
                turns[-1]["content"].append(block)
            else:
                turns.append({"role": "user", "content": [block]})
            continue

        # user
        block = {"type": "text", "text": message.text}
        if turns and turns[-1]["role"] == "user":
            turns[-1]["content"].append(block)
        else:
            turns.append({"role": "user", "content": [block]})

    system = "\n\n".join(part for part in system_parts if part) or None
    return system, turns


def to_anthropic_tools(tools: list["ToolDefinition"]) -> list[dict[str, Any]]:
    return [tool.to_api_format() for tool in tools]


def from_anthropic_response(response: Any) -> LLMResponse:
    content = getattr(response, "content", None)
    if content is None:
        raise LLMResponseError("Anthropic response has no content")
    texts: list[str] = []
    calls: list[ToolCall] = []
    for block in content:
        if block.type == "text":
            texts.append(block.text)
        elif block.type == "tool_use":
            calls.append(ToolCall(
                id=block.id,
                name=block.name,
                arguments=json.dumps(block.input or {}),
            ))
    text = "\n".join(texts) if texts else None
    return LLMResponse(text=text, tool_calls=calls)


class AnthropicClient(LLMClient):
    """Claude via the official ``anthropic`` SDK."""

    provider = "anthropic"

    def __init__(self, config: "LLMConfig"):
        super().__init__(config)
        kwargs: dict[str, Any] = {"api_key": config.api_key, "max_retries": 0}
        if config.base_url:
            kwargs["base_url"] = config.base_url
        self._client = anthropic.AsyncAnthropic(**kwargs)
        logger.info("anthropic_client.initialized", model=self._model)

    async def _send(
        self,
        messages: list[Message],
        tools: Optional[list["ToolDefinition"]],
    ) -> LLMResponse:
        system, turns = to_anthropic_messages(messages)
        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": turns,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = to_anthropic_tools(tools)
        response = await self._client.messages.create(**kwargs)
        return from_anthropic_response(response)

    async def close(self) -> None:
        await self._client.close()
