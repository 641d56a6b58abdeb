"""
Memory Store — Koro's flat-file long-term memory.

Everything Koro remembers outside a conversation lives as plain Markdown
under the base directory:

    core/identity.md, core/user.md, core/state.md   — always in the prompt
    logs/daily/YYYY-MM-DD.md                         — append-only notes
    logs/weekly/YYYY-Wnn.md, logs/monthly/YYYY-MM.md — periodic summaries

Files are human-editable on purpose. Retrieval is keyword substring search
over the daily logs; there is no index to rebuild.

Every identifier that becomes part of a path (core file name, date, week or
month id) is validated against a strict pattern first, so tool arguments can
never steer a read or write outside the tree.
"""

from __future__ import annotations

import os
import re
import threading
from datetime import date as date_cls
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog

from koro.errors import MemoryStoreError

logger = structlog.get_logger(__name__)

CORE_FILES = ("identity.md", "user.md", "state.md")
WRITABLE_CORE_FILES = ("user.md", "state.md")

SUMMARY_KINDS = ("weekly", "monthly")

DEFAULT_CORE_CONTENT = {
    "identity.md": "# Identity\n\nI am {name}, a personal AI agent. I remember everything.\n",
    "user.md": "# User\n\n(Not yet configured)\n",
    "state.md": "# State\n\n(No state yet)\n",
}

LAYOUT_DIRS = ("core", "logs/daily", "logs/weekly", "logs/monthly", "sessions", "skills")

_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_WEEK_RE = re.compile(r"^(\d{4})-W(\d{2})$")
_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


def validate_date(value: str) -> str:
    """Accept ``YYYY-MM-DD`` with month 1-12 and day 1-31."""
    match = _DATE_RE.match(value or "")
    if not match:
        raise MemoryStoreError(f"Invalid date format (expected YYYY-MM-DD): {value}")
    month, day = int(match.group(2)), int(match.group(3))
    if not 1 <= month <= 12 or not 1 <= day <= 31:
        raise MemoryStoreError(f"Invalid date: {value}")
    return value


def validate_week_id(value: str) -> str:
    """Accept ``YYYY-Wnn`` with week 1-53."""
    match = _WEEK_RE.match(value or "")
    if not match:
        raise MemoryStoreError(f"Invalid week id (expected YYYY-Wnn): {value}")
    if not 1 <= int(match.group(2)) <= 53:
        raise MemoryStoreError(f"Invalid week number: {value}")
    return value


def validate_month_id(value: str) -> str:
    """Accept ``YYYY-MM`` with month 1-12."""
    match = _MONTH_RE.match(value or "")
    if not match:
        raise MemoryStoreError(f"Invalid month id (expected YYYY-MM): {value}")
    if not 1 <= int(match.group(2)) <= 12:
        raise MemoryStoreError(f"Invalid month: {value}")
    return value


def current_week_id(today: Optional[date_cls] = None) -> str:
    iso = (today or date_cls.today()).isocalendar()
    return f"{iso[0]:04d}-W{iso[1]:02d}"


def current_month_id(today: Optional[date_cls] = None) -> str:
    return (today or date_cls.today()).strftime("%Y-%m")


class MemoryStore:
    """
    Read/write access to the flat-file memory tree.

    Reads are lock-free; writes take an internal lock so concurrent tool calls
    from different sessions never interleave a read-modify-write.
    """

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)
        self._write_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def initialize(self, agent_name: str = "koro") -> list[Path]:
        """Create the directory layout and seed missing core files.

        Returns the paths that were created. Existing files are never touched.
        """
        created: list[Path] = []
        for sub in LAYOUT_DIRS:
            path = self.base_dir / sub
            if not path.is_dir():
                path.mkdir(parents=True, exist_ok=True)
                created.append(path)
        for name, template in DEFAULT_CORE_CONTENT.items():
            path = self.base_dir / "core" / name
            if not path.exists():
                path.write_text(template.format(name=agent_name), encoding="utf-8")
                created.append(path)
        logger.info("memory_store.initialized", base_dir=str(self.base_dir), created=len(created))
        return created

    # ------------------------------------------------------------------
    # Core files
    # ------------------------------------------------------------------

    def read_core(self, filename: str) -> str:
        if filename not in CORE_FILES:
            raise MemoryStoreError(f"Invalid core memory file: {filename}")
        path = self.base_dir / "core" / filename
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise MemoryStoreError(f"Failed to read core memory {filename}: {e}") from e

    def read_core_or_empty(self, filename: str) -> str:
        try:
            return self.read_core(filename)
        except MemoryStoreError:
            return ""

    def write_core(self, filename: str, content: str) -> None:
        if filename not in WRITABLE_CORE_FILES:
            raise MemoryStoreError(f"Cannot write to core memory file: {filename}")
        path = self.base_dir / "core" / filename
        with self._write_lock:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content, encoding="utf-8")
            except OSError as e:
                raise MemoryStoreError(f"Failed to write core memory {filename}: {e}") from e
        logger.info("memory_store.core_written", file=filename, length=len(content))

    # ------------------------------------------------------------------
    # Daily logs
    # ------------------------------------------------------------------

    def _daily_path(self, day: str) -> Path:
        return self.base_dir / "logs" / "daily" / f"{validate_date(day)}.md"

    def append_log(self, entry: str, *, today: Optional[str] = None) -> None:
        """Append ``- entry`` to today's log, starting a new file with a date header."""
        day = today or datetime.now().strftime("%Y-%m-%d")
        path = self._daily_path(day)
        line = "- " + " ".join(entry.splitlines()).strip() + "\n"
        with self._write_lock:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                fd = os.open(path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
                with os.fdopen(fd, "a", encoding="utf-8") as f:
                    if f.tell() == 0:
                        f.write(f"# {day}\n\n")
                    f.write(line)
            except OSError as e:
                raise MemoryStoreError(f"Failed to write log {day}: {e}") from e
        logger.debug("memory_store.log_appended", date=day)

    def read_daily_log(self, day: str) -> Optional[str]:
        path = self._daily_path(day)
        if not path.is_file():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise MemoryStoreError(f"Failed to read log {day}: {e}") from e

    def search_logs(self, query: str) -> list[str]:
        """Case-insensitive substring search; ``[date] line`` hits in date order."""
        logs_dir = self.base_dir / "logs" / "daily"
        if not logs_dir.is_dir():
            return []
        needle = query.lower()
        results: list[str] = []
        for path in sorted(logs_dir.glob("*.md")):
            try:
                content = path.read_text(encoding="utf-8")
            except OSError as e:
                logger.warning("memory_store.log_unreadable", path=str(path), error=str(e))
                continue
            for line in content.splitlines():
                if needle in line.lower():
                    results.append(f"[{path.stem}] {line}")
        logger.debug("memory_store.search", hits=len(results))
        return results

    # ------------------------------------------------------------------
    # Periodic summaries
    # ------------------------------------------------------------------

    def _summary_path(self, kind: str, period_id: str) -> Path:
        if kind == "weekly":
            validate_week_id(period_id)
        elif kind == "monthly":
            validate_month_id(period_id)
        else:
            raise MemoryStoreError(f"Invalid summary period: {kind} (expected weekly or monthly)")
        return self.base_dir / "logs" / kind / f"{period_id}.md"

    def read_periodic_summary(self, kind: str, period_id: str) -> Optional[str]:
        path = self._summary_path(kind, period_id)
        if not path.is_file():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise MemoryStoreError(f"Failed to read {kind} summary {period_id}: {e}") from e

    def write_periodic_summary(self, kind: str, period_id: str, content: str) -> None:
        path = self._summary_path(kind, period_id)
        with self._write_lock:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content, encoding="utf-8")
            except OSError as e:
                raise MemoryStoreError(f"Failed to write {kind} summary {period_id}: {e}") from e
        logger.info("memory_store.summary_written", kind=kind, period_id=period_id)
