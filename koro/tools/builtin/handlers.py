"""
Handlers for the built-in tools.

Every handler receives the shared ``ToolContext`` first and the validated
arguments as keywords. Memory handlers are synchronous (the executor moves
them onto a worker thread); the shell handler is a coroutine.

Expected, user-facing failures (missing file, path outside the sandbox, bad
exit status) are returned as text so the model can react. Invalid input to the
memory store raises and is reported by the caller as a tool error.
"""

from __future__ import annotations

import asyncio

import structlog

from koro.tools.filesystem_context import validate_path
from koro.tools.registry import ToolContext

logger = structlog.get_logger(__name__)

_MAX_READ_CHARS = 100_000


def handle_search_logs(ctx: ToolContext, query: str) -> str:
    results = ctx.memory.search_logs(query)
    if not results:
        return "No results found."
    return "\n".join(results)


def handle_read_core_memory(ctx: ToolContext, file: str) -> str:
    return ctx.memory.read_core(file)


def handle_update_core_memory(ctx: ToolContext, file: str, content: str) -> str:
    ctx.memory.write_core(file, content)
    return f"Updated {file}"


def handle_read_daily_log(ctx: ToolContext, date: str) -> str:
    log = ctx.memory.read_daily_log(date)
    return log if log is not None else f"No log for {date}"


def handle_write_summary(ctx: ToolContext, period: str, id: str, content: str) -> str:  # noqa: A002
    if not id or not content:
        return "Error: id and content required"
    ctx.memory.write_periodic_summary(period, id, content)
    return f"Written {period} summary: {id}"


def handle_append_note(ctx: ToolContext, text: str) -> str:
    ctx.memory.append_log(text)
    return "Note appended."


def handle_read_file(ctx: ToolContext, path: str) -> str:
    resolved, err = validate_path(path, ctx.base_dir, require_exists=True)
    if err:
        return err
    if not resolved.is_file():
        return f"Error: not a regular file: {path}"
    try:
        text = resolved.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        return f"Error reading {path}: {exc}"
    if len(text) > _MAX_READ_CHARS:
        text = text[:_MAX_READ_CHARS] + "\n... [truncated at 100 000 chars]"
    return text


async def handle_shell(ctx: ToolContext, command: str) -> str:
    """Run ``command`` through ``sh -c`` with the memory directory as cwd."""
    logger.info("builtin_tools.shell", command=command[:200])
    proc = await asyncio.create_subprocess_exec(
        "sh",
        "-c",
        command,
        cwd=str(ctx.base_dir),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        # Timeout or shutdown: don't leave the child running.
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise
    if proc.returncode == 0:
        return stdout.decode("utf-8", errors="replace")
    return f"Error (exit {proc.returncode}): {stderr.decode('utf-8', errors='replace')}"
