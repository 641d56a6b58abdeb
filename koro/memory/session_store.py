"""
Session Store — persistent, per-key conversation state.

Each conversation key (``"<channel>:<user>"`` by convention) owns one
``Session``: its message history, an optional carried-over summary, and the
time it last changed. Sessions are kept in memory for the life of the process
and mirrored to ``<base_dir>/sessions/<sha256(key)>.json``.

Concurrency contract:
  - ``acquire(key)`` grants exclusive mutation rights for one key; distinct
    keys never wait on each other.
  - The key → lock map is guarded by a short ``threading.Lock`` that is only
    held for get-or-insert, never across an ``await``.
  - ``persist`` writes through a temp file + ``os.replace`` so a crash leaves
    either the old or the new record on disk, never a torn one.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import os
import tempfile
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Optional

import structlog

from koro.errors import SessionPersistError
from koro.types import Message

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    """The mutable conversation record for one key."""

    key: str
    messages: list[Message] = field(default_factory=list)
    summary: Optional[str] = None
    updated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "key": self.key,
            "messages": [m.to_dict() for m in self.messages],
            "updated_at": self.updated_at.isoformat(),
        }
        if self.summary is not None:
            data["summary"] = self.summary
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        key = data.get("key")
        if not isinstance(key, str) or not key:
            raise ValueError("session record has no key")
        raw_updated = data.get("updated_at")
        updated_at = datetime.fromisoformat(raw_updated) if raw_updated else _utcnow()
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        summary = data.get("summary")
        return cls(
            key=key,
            messages=[Message.from_dict(m) for m in data.get("messages") or []],
            summary=summary if isinstance(summary, str) else None,
            updated_at=updated_at,
        )

    def snapshot(self) -> "Session":
        """A shallow copy safe to read without holding the session lock."""
        return Session(
            key=self.key,
            messages=list(self.messages),
            summary=self.summary,
            updated_at=self.updated_at,
        )


def session_filename(key: str) -> str:
    """Filesystem-safe, collision-free filename for a session key."""
    return hashlib.sha256(key.encode("utf-8")).hexdigest() + ".json"


class SessionStore:
    """
    In-memory session map backed by one JSON file per key.

    Call ``load_all()`` once at startup; afterwards every visible mutation
    made under ``acquire`` should be followed by ``persist``.
    """

    def __init__(self, sessions_dir: Path) -> None:
        self.sessions_dir = Path(sessions_dir)
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        self._best_effort_chmod(self.sessions_dir, 0o700)
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._map_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def load_all(self) -> int:
        """Load every readable record; the newest ``updated_at`` wins per key."""
        loaded = 0
        for path in sorted(self.sessions_dir.glob("*.json")):
            try:
                session = Session.from_dict(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, ValueError, TypeError, AttributeError) as e:
                logger.warning("session_store.load_skipped", file=str(path), error=str(e))
                continue
            with self._map_lock:
                existing = self._sessions.get(session.key)
                if existing is not None and existing.updated_at >= session.updated_at:
                    logger.debug("session_store.duplicate_dropped", file=str(path))
                    continue
                self._sessions[session.key] = session
                self._locks.setdefault(session.key, asyncio.Lock())
            loaded += 1
        logger.info("session_store.loaded", sessions=len(self._sessions), files=loaded)
        return len(self._sessions)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def _entry(self, key: str) -> tuple[Session, asyncio.Lock]:
        with self._map_lock:
            session = self._sessions.get(key)
            if session is None:
                session = Session(key=key)
                self._sessions[key] = session
                logger.debug("session_store.created", key=key)
            lock = self._locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[key] = lock
            return session, lock

    @asynccontextmanager
    async def acquire(self, key: str) -> AsyncIterator[Session]:
        """Hold exclusive mutation rights on ``key``'s session for the block."""
        session, lock = self._entry(key)
        async with lock:
            yield session

    async def persist(self, key: str, session: Session) -> None:
        """Stamp and atomically write the session record.

        Raises SessionPersistError; the in-memory session keeps the update.
        """
        session.updated_at = _utcnow()
        payload = json.dumps(session.to_dict(), ensure_ascii=False, indent=2)
        path = self.path_for(key)
        try:
            await asyncio.to_thread(self._write_atomic, path, payload)
        except OSError as e:
            logger.error("session_store.write_failed", key=key, path=str(path), error=str(e))
            raise SessionPersistError(f"Failed to persist session {key!r}: {e}") from e
        logger.debug(
            "session_store.persisted",
            key=key,
            message_count=len(session.messages),
        )

    def get(self, key: str) -> Optional[Session]:
        """Read-only snapshot of a session, or None when the key is unknown."""
        with self._map_lock:
            session = self._sessions.get(key)
        return session.snapshot() if session is not None else None

    def keys(self) -> list[str]:
        with self._map_lock:
            return sorted(self._sessions)

    def path_for(self, key: str) -> Path:
        return self.sessions_dir / session_filename(key)

    @property
    def count(self) -> int:
        return len(self._sessions)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _write_atomic(self, path: Path, payload: str) -> None:
        fd, tmp_path = tempfile.mkstemp(
            dir=path.parent, suffix=".tmp", prefix=".session_"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        self._best_effort_chmod(path, 0o600)

    @staticmethod
    def _best_effort_chmod(path: Path, mode: int) -> None:
        """Attempt to harden permissions without failing on unsupported filesystems."""
        try:
            path.chmod(mode)
        except OSError:
            logger.debug("session_store.chmod_skipped", path=str(path), mode=oct(mode))
