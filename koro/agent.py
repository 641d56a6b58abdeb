"""
Agent — the façade that turns one inbound message into one reply.

A turn, under the session's exclusive lock:

    1. compress the history if it has reached the threshold (best effort)
    2. capture memory and build the context
    3. append the user turn and persist it, before anything slow can fail
    4. run the tool-calling loop
    5. append the loop's new messages and persist again

Any error escaping those steps becomes an ``"Error: <cause>"`` reply; the
user's message is already on disk by then (unless persisting it was the
failure).
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Optional

import structlog

from koro.harness.context import ContextBuilder, MemorySnapshot
from koro.harness.loop import ToolCallingLoop
from koro.types import InboundMessage, Message, OutboundMessage

if TYPE_CHECKING:
    from koro.api.base import LLMClient
    from koro.memory.session_store import Session, SessionStore
    from koro.memory.store import MemoryStore
    from koro.skills import SkillSummary
    from koro.tools.registry import ToolRegistry

logger = structlog.get_logger(__name__)

SUMMARY_INSTRUCTIONS = (
    "You summarize conversations between a user and their personal assistant. "
    "Write a concise summary (at most about 300 words) of the conversation below. "
    "Keep facts about the user, decisions made, and open tasks. "
    "Reply with the summary only."
)
TOOL_CALL_PLACEHOLDER = "[tool call]"
# Shown to the user when the model ends a turn with no text; history keeps "".
NO_RESPONSE_TEXT = "(no response)"


def render_transcript(messages: list[Message]) -> str:
    """``role: text`` lines; a message without text renders as a placeholder."""
    lines = []
    for message in messages:
        text = message.content if message.content else TOOL_CALL_PLACEHOLDER
        lines.append(f"{message.role}: {text}\n")
    return "".join(lines)


def compression_split(messages: list[Message]) -> int:
    """Midpoint split index, moved back so the newer half never starts with orphaned tool results."""
    split = len(messages) // 2
    while 0 < split < len(messages) and messages[split].role == "tool":
        split -= 1
    return split


def merge_summaries(prior: Optional[str], new: str, max_chars: int) -> str:
    """Append ``new`` to ``prior``; if that exceeds ``max_chars`` keep only ``new``."""
    if not prior:
        return new
    merged = f"{prior}\n\n{new}"
    return merged if len(merged) <= max_chars else new


class Agent:
    """
    Composes the session store, context builder, tool loop and LLM client.

    One instance serves every channel; concurrency safety comes from the
    per-key session lock, so turns for different keys run in parallel.
    """

    def __init__(
        self,
        client: "LLMClient",
        registry: "ToolRegistry",
        sessions: "SessionStore",
        memory: "MemoryStore",
        *,
        skills: "Optional[list[SkillSummary]]" = None,
        max_tool_iterations: int = 10,
        compression_threshold: int = 20,
        summary_max_chars: int = 2000,
        context_builder: Optional[ContextBuilder] = None,
        loop: Optional[ToolCallingLoop] = None,
    ):
        self._client = client
        self._registry = registry
        self._sessions = sessions
        self._memory = memory
        self._skills = list(skills or [])
        self._compression_threshold = max(2, compression_threshold)
        self._summary_max_chars = summary_max_chars
        self._context = context_builder or ContextBuilder()
        self._loop = loop or ToolCallingLoop(client, registry, max_iterations=max_tool_iterations)

        self._turns_handled = 0
        self._turns_failed = 0
        self._compressions = 0

        logger.info(
            "agent.initialized",
            tools=registry.count,
            skills=len(self._skills),
            compression_threshold=self._compression_threshold,
        )

    @property
    def sessions(self) -> "SessionStore":
        return self._sessions

    @property
    def tool_registry(self) -> "ToolRegistry":
        return self._registry

    async def handle_message(self, inbound: InboundMessage) -> OutboundMessage:
        """Process one inbound message; never raises for turn-level failures."""
        self._turns_handled += 1
        failed = False
        try:
            text = await self._run_turn(inbound)
        except Exception as e:
            failed = True
            self._turns_failed += 1
            logger.error(
                "agent.turn_failed",
                session_key=inbound.session_key,
                error_type=type(e).__name__,
                error=str(e),
                exc_info=True,
            )
            text = f"Error: {e}"
        return OutboundMessage(session_key=inbound.session_key, text=text, is_error=failed)

    async def _run_turn(self, inbound: InboundMessage) -> str:
        key = inbound.session_key
        async with self._sessions.acquire(key) as session:
            if len(session.messages) >= self._compression_threshold:
                await self._compress(session)

            snapshot = await asyncio.to_thread(MemorySnapshot.capture, self._memory)
            messages = self._context.build(snapshot, session, inbound.text, self._skills)

            session.messages.append(Message.user(inbound.text))
            await self._sessions.persist(key, session)

            logger.info(
                "agent.turn_started",
                session_key=key,
                user=inbound.user_display_name,
                history=len(session.messages),
            )
            result = await self._loop.run(messages)

            session.messages.extend(result.new_messages)
            await self._sessions.persist(key, session)

        logger.info(
            "agent.turn_complete",
            session_key=key,
            iterations=result.iterations,
            tool_calls=len(result.tool_calls),
            truncated=result.was_truncated,
            tools_used=result.tool_names_used,
        )
        return result.text or NO_RESPONSE_TEXT

    async def _compress(self, session: "Session") -> bool:
        """Fold the older half of the history into the rolling summary.

        Returns True on success. Failures are logged and leave the session
        untouched.
        """
        split = compression_split(session.messages)
        if split <= 0:
            return False
        older, newer = session.messages[:split], session.messages[split:]

        request = [
            Message.system(SUMMARY_INSTRUCTIONS),
            Message.user(render_transcript(older)),
        ]
        try:
            response = await self._client.chat(request, None)
        except Exception as e:
            logger.warning(
                "agent.compression_failed",
                session_key=session.key,
                error_type=type(e).__name__,
                error=str(e)[:200],
            )
            return False

        summary = (response.text or "").strip()
        if not summary:
            logger.warning("agent.compression_empty_summary", session_key=session.key)
            return False

        session.summary = merge_summaries(session.summary, summary, self._summary_max_chars)
        session.messages = list(newer)
        self._compressions += 1
        logger.info(
            "agent.compressed",
            session_key=session.key,
            folded=len(older),
            kept=len(newer),
            summary_length=len(session.summary),
        )
        return True

    @property
    def stats(self) -> dict[str, int]:
        return {
            "turns_handled": self._turns_handled,
            "turns_failed": self._turns_failed,
            "compressions": self._compressions,
            "sessions": self._sessions.count,
        }
