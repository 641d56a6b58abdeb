"""
LLM Client — the provider-neutral interface every turn talks through.

``chat(messages, tools)`` takes Koro's own ``Message`` list and tool
definitions and returns an ``LLMResponse``. Subclasses only translate to and
from their provider's wire format in ``_send``; timeouts and the retry policy
live here so every provider behaves the same way under failure.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

import structlog

from koro.harness.retry import RetryConfig, with_retries
from koro.types import LLMResponse, Message

if TYPE_CHECKING:
    from koro.config import LLMConfig
    from koro.tools.registry import ToolDefinition

logger = structlog.get_logger(__name__)


class LLMClient(ABC):
    """Base class for provider clients; one instance is shared by all sessions."""

    provider: str = "unknown"

    def __init__(self, config: "LLMConfig"):
        self._model = config.model
        self._max_tokens = config.max_tokens
        self._request_timeout_seconds = config.request_timeout_seconds
        self._retry_config = RetryConfig(
            max_retries=config.retry_max_retries,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            exponential_base=config.retry_exponential_base,
            jitter_range=config.retry_jitter_range,
        )

    @property
    def model(self) -> str:
        return self._model

    async def chat(
        self,
        messages: list[Message],
        tools: Optional[list["ToolDefinition"]] = None,
    ) -> LLMResponse:
        """
        Send one completion request.

        ``tools=None`` (or empty) means the request carries no tool
        definitions at all. Transient failures are retried; the last error
        propagates once retries are exhausted.
        """
        start_time = time.monotonic()

        async def _create() -> LLMResponse:
            return await asyncio.wait_for(
                self._send(messages, tools or None),
                timeout=self._request_timeout_seconds,
            )

        response = await with_retries(_create, config=self._retry_config)

        logger.debug(
            "llm_client.chat_complete",
            provider=self.provider,
            model=self._model,
            message_count=len(messages),
            tool_calls=len(response.tool_calls),
            elapsed_seconds=round(time.monotonic() - start_time, 2),
        )
        return response

    @abstractmethod
    async def _send(
        self,
        messages: list[Message],
        tools: Optional[list["ToolDefinition"]],
    ) -> LLMResponse:
        """Perform exactly one provider request."""

    async def close(self) -> None:
        """Release HTTP resources held by the underlying SDK client."""
