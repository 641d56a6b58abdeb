"""CLI application — Click-based command hierarchy for Koro.

``koro`` with no subcommand runs the agent (CLI channel plus HTTP gateway).
"""

from __future__ import annotations

import asyncio
import functools
from pathlib import Path
from typing import Any, Optional

import click
from rich.console import Console
from rich.markdown import Markdown

from koro.config import KoroConfig
from koro.config_file import CONFIG_FILENAME, generate_template
from koro.errors import ConfigError, KoroError
from koro.memory import MemoryStore


def async_cmd(func):
    """Decorator to run an async Click command via asyncio.run()."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return asyncio.run(func(*args, **kwargs))

    return wrapper


def _load_config(ctx: click.Context) -> KoroConfig:
    try:
        return KoroConfig(ctx.obj.get("config_path"), require_file=ctx.obj.get("config_path") is not None)
    except (ConfigError, ValueError) as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e


@click.group(invoke_without_command=True)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to koro.toml (default: search cwd, ~/.config/koro, ~/.koro)",
)
@click.option("--verbose", "-v", is_flag=True, help="Log at INFO level")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], verbose: bool) -> None:
    """Koro - a personal assistant agent with persistent memory."""
    from koro.main import configure_logging

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose
    configure_logging("INFO" if verbose else None)

    if ctx.invoked_subcommand is None:
        ctx.invoke(run_cmd)


@cli.command("run")
@click.option("--no-cli", is_flag=True, help="Do not read messages from stdin")
@click.option("--no-gateway", is_flag=True, help="Do not start the HTTP gateway")
@click.pass_context
@async_cmd
async def run_cmd(ctx: click.Context, no_cli: bool = False, no_gateway: bool = False) -> None:
    """Run the agent until Ctrl+C (or end of input)."""
    from koro.main import run

    config = _load_config(ctx)
    kwargs: dict[str, Any] = {}
    if no_cli:
        kwargs["enable_cli"] = False
    if no_gateway:
        kwargs["enable_gateway"] = False
    try:
        await run(config, **kwargs)
    except KoroError as e:
        raise click.ClickException(str(e)) from e


@cli.command("init")
@click.option(
    "--base-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Memory directory to create (default: configured base_dir)",
)
@click.pass_context
def init_cmd(ctx: click.Context, base_dir: Optional[Path]) -> None:
    """Create the memory layout, seed core files and write a koro.toml template."""
    config = _load_config(ctx)
    target = (base_dir or config.memory.base_dir).expanduser().resolve()
    store = MemoryStore(target)
    try:
        created = store.initialize(config.agent.name)
    except OSError as e:
        raise click.ClickException(f"Cannot initialize {target}: {e}") from e

    config_file = target / CONFIG_FILENAME
    if not config_file.exists():
        config_file.write_text(generate_template(config.agent.name), encoding="utf-8")
        created.append(config_file)

    for path in created:
        click.echo(f"Created {path}")
    click.echo(f"Koro memory ready at {target}")


@cli.command("status")
@click.pass_context
def status_cmd(ctx: click.Context) -> None:
    """Print the agent's current state (core/state.md)."""
    config = _load_config(ctx)
    store = MemoryStore(config.memory.base_dir)
    try:
        state = store.read_core("state.md")
    except KoroError as e:
        raise click.ClickException(f"{e} (run 'koro init' first)") from e
    Console().print(Markdown(state))


@cli.command("mcp-stdio")
@click.pass_context
@async_cmd
async def mcp_stdio_cmd(ctx: click.Context) -> None:
    """Serve the tool-access JSON-RPC protocol on stdin/stdout."""
    from koro.main import build_tool_registry
    from koro.rpc import ToolAccessRouter, serve_stdio

    config = _load_config(ctx)
    memory = MemoryStore(config.memory.base_dir)
    await asyncio.to_thread(memory.initialize, config.agent.name)
    router = ToolAccessRouter(build_tool_registry(config, memory), server_name=config.agent.name)
    await serve_stdio(router)


def _register_subcommands() -> None:
    from koro.cli.config_cmd import config_group

    cli.add_command(config_group)


_register_subcommands()
