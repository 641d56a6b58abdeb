"""
The Tool-Calling Loop — Koro's core runtime pattern.

    for iteration in range(max_iterations):
        response = llm.chat(messages, tools)
        if not response.tool_calls:
            return response.text
        messages.append(response)
        messages.extend(execute(call) for call in response.tool_calls)
    return LIMIT_MESSAGE

Everything else (persistence, compression, context assembly) happens around
the loop, in the agent. The loop itself never looks at tool names: it hands
every call to the registry and feeds whatever comes back to the model.

Guarantees:
  - at most ``max_iterations`` LLM requests per run
  - every tool call in the trace is followed by exactly one tool result with
    the same id, in the order the model emitted the calls
  - a failing tool becomes in-band text ("Tool error: ..."), never an abort
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Optional

import structlog

from koro.types import Message, ToolCall

if TYPE_CHECKING:
    from koro.api.base import LLMClient
    from koro.tools.registry import ToolRegistry

logger = structlog.get_logger(__name__)

LIMIT_MESSAGE = (
    "I've reached the maximum number of tool calls for this request. "
    "Please try again or rephrase."
)


class ToolCallingLoop:
    """
    Drives the request → execute → request cycle for one turn.

    One instance is shared by every session; ``run`` keeps all per-turn
    state in locals.
    """

    def __init__(
        self,
        client: "LLMClient",
        registry: "ToolRegistry",
        max_iterations: int = 10,
    ):
        self._client = client
        self._registry = registry
        self._max_iterations = max(1, max_iterations)

        logger.info("agentic_loop.initialized", max_iterations=self._max_iterations)

    async def run(
        self,
        messages: list[Message],
        *,
        max_iterations: Optional[int] = None,
    ) -> "LoopResult":
        """
        Run the loop to completion.

        Args:
            messages: The full context (system prompt, summary, history, new user turn).
            max_iterations: Per-run override of the LLM request bound.

        Returns:
            LoopResult with the reply text and the new messages produced this
            turn, in order. LLM errors propagate to the caller.
        """
        effective_max = max_iterations if max_iterations is not None else self._max_iterations
        start_time = time.monotonic()
        tools = self._registry.schemas() or None

        conversation = list(messages)
        new_messages: list[Message] = []
        all_tool_calls: list[ToolCall] = []
        final_text = ""
        truncated = False
        iteration = 0

        logger.info(
            "agentic_loop.starting",
            message_count=len(conversation),
            tool_count=len(tools) if tools else 0,
        )

        while iteration < effective_max:
            iteration += 1

            response = await self._client.chat(conversation, tools)

            if not response.has_tool_calls:
                final_text = response.text or ""
                reply = Message.assistant(final_text)
                conversation.append(reply)
                new_messages.append(reply)
                logger.info(
                    "agentic_loop.complete",
                    iterations=iteration,
                    tool_calls=len(all_tool_calls),
                    response_length=len(final_text),
                )
                break

            request = Message.assistant(response.text, response.tool_calls)
            conversation.append(request)
            new_messages.append(request)

            for call in response.tool_calls:
                all_tool_calls.append(call)
                try:
                    result = await self._registry.execute(call.name, call.arguments)
                    content = result.for_llm
                except Exception as e:
                    logger.warning(
                        "agentic_loop.tool_failed",
                        tool=call.name,
                        error_type=type(e).__name__,
                        error=str(e)[:200],
                    )
                    content = f"Tool error: {e}"

                tool_message = Message.tool_result(call.id, content)
                conversation.append(tool_message)
                new_messages.append(tool_message)
                logger.debug("agentic_loop.tool_executed", tool=call.name, iteration=iteration)

        else:
            truncated = True
            final_text = LIMIT_MESSAGE
            logger.warning(
                "agentic_loop.max_iterations",
                max=effective_max,
                tool_calls=len(all_tool_calls),
            )

        return LoopResult(
            text=final_text,
            new_messages=new_messages,
            tool_calls=all_tool_calls,
            iterations=iteration,
            elapsed_seconds=time.monotonic() - start_time,
            was_truncated=truncated,
        )


class LoopResult:
    """
    The complete result of one loop run.

    ``new_messages`` holds only what this run produced (assistant turns and
    tool results), ready to be appended to the session history. When the
    iteration bound is hit, ``text`` is the limit message and it is *not*
    part of ``new_messages``.
    """

    def __init__(
        self,
        text: str,
        new_messages: Optional[list[Message]] = None,
        tool_calls: Optional[list[ToolCall]] = None,
        iterations: int = 0,
        elapsed_seconds: float = 0.0,
        was_truncated: bool = False,
    ):
        self.text = text
        self.new_messages = new_messages or []
        self.tool_calls = tool_calls or []
        self.iterations = iterations
        self.elapsed_seconds = elapsed_seconds
        self.was_truncated = was_truncated

    @property
    def tool_names_used(self) -> list[str]:
        return sorted({call.name for call in self.tool_calls})
