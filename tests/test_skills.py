"""Tests for koro.skills — skill discovery for the system prompt."""

from __future__ import annotations

from pathlib import Path

from koro.skills import SkillSummary, load_skill_summaries


def _skill(base_dir: Path, name: str, content: str) -> Path:
    folder = base_dir / "skills" / name
    folder.mkdir(parents=True)
    path = folder / "SKILL.md"
    path.write_text(content, encoding="utf-8")
    return path


def test_no_skills_dir(tmp_path: Path) -> None:
    assert load_skill_summaries(tmp_path) == []


def test_summaries_sorted_with_relative_paths(tmp_path: Path) -> None:
    _skill(tmp_path, "weekly-review", "# Weekly review\n\nSummarize the week every Sunday.\nMore detail.\n")
    _skill(tmp_path, "budget", "# Budget\nTrack spending.\n")

    skills = load_skill_summaries(tmp_path)

    assert skills == [
        SkillSummary("budget", "Track spending.", Path("skills/budget/SKILL.md")),
        SkillSummary("weekly-review", "Summarize the week every Sunday.", Path("skills/weekly-review/SKILL.md")),
    ]


def test_heading_only_skill_has_empty_description(tmp_path: Path) -> None:
    _skill(tmp_path, "bare", "# Bare\n## Still a heading\n")
    assert load_skill_summaries(tmp_path)[0].description == ""


def test_directories_without_skill_file_are_ignored(tmp_path: Path) -> None:
    (tmp_path / "skills" / "draft").mkdir(parents=True)
    (tmp_path / "skills" / "notes.md").write_text("loose file", encoding="utf-8")
    _skill(tmp_path, "real", "Do real things.\n")
    assert [s.name for s in load_skill_summaries(tmp_path)] == ["real"]
