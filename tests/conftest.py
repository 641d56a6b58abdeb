"""
Shared fixtures for the Koro test suite.

Provides an initialized memory tree in a temporary directory and a registry
with the built-in tools, so individual test modules can focus on behavior
rather than setup. The scripted LLM client lives in ``helpers.py``.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from koro.memory import MemoryStore, SessionStore
from koro.tools import ToolContext, ToolRegistry
from koro.tools.builtin import register_builtin_tools

# ---------------------------------------------------------------------------
# Memory and tool fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def base_dir(tmp_path: Path) -> Path:
    path = tmp_path / "koro"
    path.mkdir()
    return path


@pytest.fixture()
def memory(base_dir: Path) -> MemoryStore:
    store = MemoryStore(base_dir)
    store.initialize("koro")
    return store


@pytest.fixture()
def sessions(base_dir: Path) -> SessionStore:
    return SessionStore(base_dir / "sessions")


@pytest.fixture()
def registry(memory: MemoryStore, base_dir: Path) -> ToolRegistry:
    reg = ToolRegistry(ToolContext(memory=memory, base_dir=base_dir))
    register_builtin_tools(reg)
    return reg
