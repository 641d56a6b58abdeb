"""Memory — flat-file long-term memory and persistent conversation sessions."""
from koro.memory.session_store import Session, SessionStore
from koro.memory.store import MemoryStore

__all__ = ["MemoryStore", "Session", "SessionStore"]
