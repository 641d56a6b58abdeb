"""
Context Builder — assembles the exact message list sent to the model.

Order is fixed:

    1. one system message: identity, user profile and current state
       (divider-separated), then this month's and this week's summaries when
       they exist, then the tool hint and the skill index
    2. "Previous conversation summary" (system), when the session has one
    3. the session history, unchanged and in order
    4. the new user message

Building is pure: the session is read, never modified. Memory files are
captured into a ``MemorySnapshot`` first, so everything disk-related happens
before the builder runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Optional

from koro.memory.store import current_month_id, current_week_id
from koro.types import Message

if TYPE_CHECKING:
    from koro.memory.session_store import Session
    from koro.memory.store import MemoryStore
    from koro.skills import SkillSummary

SECTION_DIVIDER = "\n\n---\n\n"
TOOL_HINT = (
    "You have access to tools. Use them when needed to answer questions, "
    "search memory, execute commands, or read files.\n"
)
SUMMARY_PREFIX = "Previous conversation summary:\n"


@dataclass(frozen=True)
class MemorySnapshot:
    """Core memory and current periodic summaries, read once per turn."""

    identity: str = ""
    user: str = ""
    state: str = ""
    monthly_summary: Optional[str] = None
    weekly_summary: Optional[str] = None

    @classmethod
    def capture(cls, memory: "MemoryStore", today: Optional[date] = None) -> "MemorySnapshot":
        return cls(
            identity=memory.read_core_or_empty("identity.md"),
            user=memory.read_core_or_empty("user.md"),
            state=memory.read_core_or_empty("state.md"),
            monthly_summary=memory.read_periodic_summary("monthly", current_month_id(today)),
            weekly_summary=memory.read_periodic_summary("weekly", current_week_id(today)),
        )


class ContextBuilder:
    """Stateless; one instance is shared by all turns."""

    def build_system_prompt(
        self,
        snapshot: MemorySnapshot,
        skills: "list[SkillSummary]",
    ) -> str:
        prompt = SECTION_DIVIDER.join([snapshot.identity, snapshot.user, snapshot.state])

        if snapshot.monthly_summary:
            prompt += SECTION_DIVIDER + "# This Month\n\n" + snapshot.monthly_summary.strip()
        if snapshot.weekly_summary:
            prompt += SECTION_DIVIDER + "# This Week\n\n" + snapshot.weekly_summary.strip()

        prompt += SECTION_DIVIDER + TOOL_HINT

        if skills:
            prompt += "\n# Available Skills\n\n"
            for skill in skills:
                prompt += (
                    f"- **{skill.name}**: {skill.description} "
                    f"(use `read_file` to load: {skill.path})\n"
                )
        return prompt

    def build(
        self,
        snapshot: MemorySnapshot,
        session: "Session",
        user_text: str,
        skills: "Optional[list[SkillSummary]]" = None,
    ) -> list[Message]:
        messages = [Message.system(self.build_system_prompt(snapshot, skills or []))]
        if session.summary:
            messages.append(Message.system(SUMMARY_PREFIX + session.summary))
        messages.extend(session.messages)
        messages.append(Message.user(user_text))
        return messages
