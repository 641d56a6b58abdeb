"""
Core data types shared across Koro subsystems.

Conversation messages, tool calls and bus envelopes cross nearly every module
boundary, so they live here rather than in a specific subsystem to avoid
circular imports.  The ``to_dict`` / ``from_dict`` shapes are also the
on-disk session format.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_TOOL = "tool"

VALID_ROLES = frozenset({ROLE_SYSTEM, ROLE_USER, ROLE_ASSISTANT, ROLE_TOOL})


@dataclass
class ToolCall:
    """A model request to invoke one tool; ``arguments`` is a JSON string."""

    id: str
    name: str
    arguments: str = "{}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCall":
        """Accept both the nested ``function`` shape and a flat one."""
        function = data.get("function")
        if isinstance(function, dict):
            name = function.get("name", "")
            arguments = function.get("arguments", "{}")
        else:
            name = data.get("name", "")
            arguments = data.get("arguments", "{}")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        return cls(id=str(data.get("id", "")), name=str(name), arguments=arguments)


@dataclass
class Message:
    """One conversation turn.

    ``system`` and ``user`` carry text, ``assistant`` carries text and/or tool
    calls, and ``tool`` carries a result bound to ``tool_call_id``.
    """

    role: str
    content: Optional[str] = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.role not in VALID_ROLES:
            raise ValueError(f"Invalid message role: {self.role!r}")

    @classmethod
    def system(cls, text: str) -> "Message":
        return cls(role=ROLE_SYSTEM, content=text)

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role=ROLE_USER, content=text)

    @classmethod
    def assistant(
        cls,
        text: Optional[str] = None,
        tool_calls: Optional[list[ToolCall]] = None,
    ) -> "Message":
        return cls(role=ROLE_ASSISTANT, content=text, tool_calls=list(tool_calls or []))

    @classmethod
    def tool_result(cls, tool_call_id: str, text: str) -> "Message":
        return cls(role=ROLE_TOOL, content=text, tool_call_id=tool_call_id)

    @property
    def text(self) -> str:
        return self.content or ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role}
        if self.content is not None:
            data["content"] = self.content
        if self.tool_calls:
            data["tool_calls"] = [call.to_dict() for call in self.tool_calls]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        content = data.get("content")
        return cls(
            role=data.get("role", ""),
            content=content if content is None else str(content),
            tool_calls=[ToolCall.from_dict(c) for c in data.get("tool_calls") or []],
            tool_call_id=data.get("tool_call_id"),
        )


@dataclass
class LLMResponse:
    """Provider-neutral result of one chat completion."""

    text: Optional[str] = None
    tool_calls: list[ToolCall] = field(default_factory=list)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


def channel_of(session_key: str) -> str:
    """Return the channel prefix of a session key (text before the first ':')."""
    return session_key.split(":", 1)[0]


@dataclass
class InboundMessage:
    """A user utterance delivered by a channel adapter."""

    session_key: str
    user_display_name: str
    text: str

    @property
    def channel(self) -> str:
        return channel_of(self.session_key)


@dataclass
class OutboundMessage:
    """A reply routed back to the channel that owns ``session_key``."""

    session_key: str
    text: str
    is_error: bool = False

    @property
    def channel(self) -> str:
        return channel_of(self.session_key)
