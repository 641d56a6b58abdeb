"""
Skills — Markdown instruction packs the model can load on demand.

Only a one-line summary of each skill goes into the system prompt; the model
reads the full ``SKILL.md`` with the ``read_file`` tool when it needs it.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class SkillSummary:
    """Prompt-index entry for one skill.

    ``path`` is relative to the memory base directory, which is exactly what
    ``read_file`` expects.
    """

    name: str
    description: str
    path: Path


from koro.skills.loader import load_skill_summaries  # noqa: E402

__all__ = ["SkillSummary", "load_skill_summaries"]
