"""
Skill Loader — discovers skill directories under ``<base_dir>/skills``.

Layout:

    skills/
      weekly-review/
        SKILL.md      # "# Weekly review" heading, then a one-line description

The description is the first line that is neither empty nor a Markdown
heading. Directories without a ``SKILL.md`` are ignored.
"""

from __future__ import annotations

from pathlib import Path

import structlog

from koro.skills import SkillSummary

logger = structlog.get_logger(__name__)

SKILL_FILENAME = "SKILL.md"


def _first_description_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip() and not line.startswith("#"):
            return line.strip()
    return ""


def load_skill_summaries(base_dir: Path) -> list[SkillSummary]:
    """Return one summary per skill, sorted by name. Unreadable skills are skipped."""
    skills_dir = Path(base_dir) / "skills"
    if not skills_dir.is_dir():
        return []

    skills: list[SkillSummary] = []
    for entry in skills_dir.iterdir():
        skill_file = entry / SKILL_FILENAME
        if not entry.is_dir() or not skill_file.is_file():
            continue
        try:
            content = skill_file.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("skill_loader.read_error", path=str(skill_file), error=str(e))
            continue
        skills.append(SkillSummary(
            name=entry.name,
            description=_first_description_line(content),
            path=Path("skills") / entry.name / SKILL_FILENAME,
        ))

    skills.sort(key=lambda s: s.name)
    logger.debug("skill_loader.discovered", count=len(skills))
    return skills
