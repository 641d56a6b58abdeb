"""
Built-in Tools — Koro's native capabilities.

These ship with Koro: memory reads and writes, log search, daily notes,
periodic summaries, sandboxed file reads and (opt-in) shell access. Tool
descriptions are prompts; they tell the model when a tool is worth calling.
"""

from __future__ import annotations

from koro.tools.builtin import handlers
from koro.tools.registry import ToolDefinition, ToolRegistry


def register_builtin_tools(registry: ToolRegistry, *, shell_enabled: bool = False) -> None:
    """Register all built-in tools with the registry."""

    # ---- Memory Tools ----

    registry.register(
        ToolDefinition(
            name="search_logs",
            description=(
                "Search past conversation logs and daily notes for a keyword. "
                "Matching is case-insensitive; each hit is returned as "
                "'[YYYY-MM-DD] line'."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Keyword or phrase to look for."},
                },
                "required": ["query"],
            },
            handler=handlers.handle_search_logs,
        )
    )

    registry.register(
        ToolDefinition(
            name="read_core_memory",
            description="Read a core memory file (identity.md, user.md, or state.md).",
            input_schema={
                "type": "object",
                "properties": {
                    "file": {"type": "string", "enum": ["identity.md", "user.md", "state.md"]},
                },
                "required": ["file"],
            },
            handler=handlers.handle_read_core_memory,
        )
    )

    registry.register(
        ToolDefinition(
            name="update_core_memory",
            description=(
                "Replace the content of user.md or state.md. Use user.md for lasting "
                "facts about the user and state.md for what is going on right now. "
                "identity.md is read-only."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "file": {"type": "string", "enum": ["user.md", "state.md"]},
                    "content": {"type": "string", "description": "Full new file content."},
                },
                "required": ["file", "content"],
            },
            handler=handlers.handle_update_core_memory,
        )
    )

    registry.register(
        ToolDefinition(
            name="read_daily_log",
            description="Read a daily log by date (YYYY-MM-DD).",
            input_schema={
                "type": "object",
                "properties": {
                    "date": {"type": "string", "description": "Date as YYYY-MM-DD."},
                },
                "required": ["date"],
            },
            handler=handlers.handle_read_daily_log,
        )
    )

    registry.register(
        ToolDefinition(
            name="write_summary",
            description=(
                "Write a weekly or monthly summary. period='weekly' id='2026-W08', "
                "or period='monthly' id='2026-02'."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "period": {"type": "string", "enum": ["weekly", "monthly"]},
                    "id": {"type": "string", "description": "e.g. '2026-W08' or '2026-02'"},
                    "content": {"type": "string"},
                },
                "required": ["period", "id", "content"],
            },
            handler=handlers.handle_write_summary,
        )
    )

    registry.register(
        ToolDefinition(
            name="append_note",
            description="Append a note to today's daily log.",
            input_schema={
                "type": "object",
                "properties": {
                    "text": {"type": "string", "description": "The note, one line."},
                },
                "required": ["text"],
            },
            handler=handlers.handle_append_note,
        )
    )

    # ---- Filesystem / System Tools ----

    registry.register(
        ToolDefinition(
            name="read_file",
            description=(
                "Read file contents within the memory directory. Paths are relative "
                "to that directory; skills are loaded this way."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "path": {
                        "type": "string",
                        "description": "File path relative to the memory directory.",
                    },
                },
                "required": ["path"],
            },
            handler=handlers.handle_read_file,
        )
    )

    if shell_enabled:
        registry.register(
            ToolDefinition(
                name="shell",
                description="Execute a shell command and return the output.",
                input_schema={
                    "type": "object",
                    "properties": {
                        "command": {"type": "string", "description": "Shell command to execute."},
                    },
                    "required": ["command"],
                },
                handler=handlers.handle_shell,
            )
        )
