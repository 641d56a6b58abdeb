"""Configuration commands — show, get and set values in koro.toml."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click

from koro.config import SECTIONS
from koro.config_file import (
    CONFIG_FILENAME,
    find_config,
    get_value,
    load_config,
    parse_value,
    set_value,
    write_config,
)


def _config_path(ctx: click.Context) -> Optional[Path]:
    explicit = (ctx.obj or {}).get("config_path")
    return explicit if explicit is not None else find_config()


def _read(path: Optional[Path]) -> dict:
    if path is None or not path.is_file():
        return {}
    try:
        return load_config(path)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Cannot read {path}: {e}") from e


@click.group("config", invoke_without_command=True)
@click.pass_context
def config_group(ctx: click.Context) -> None:
    """Inspect or edit koro.toml. Environment variables still win over it."""
    if ctx.invoked_subcommand is None:
        path = _config_path(ctx)
        data = _read(path)
        click.echo(f"TOML file: {path or '(none)'}")
        if not data:
            click.echo("  (no values set)")
        for section, values in sorted(data.items()):
            if not isinstance(values, dict):
                continue
            for name, value in sorted(values.items()):
                shown = "[redacted]" if name in ("api_key", "auth_token") and value else repr(value)
                click.echo(f"  {section}.{name} = {shown}")


@config_group.command("get")
@click.argument("key")
@click.pass_context
def config_get(ctx: click.Context, key: str) -> None:
    """Print one value by dotted key, e.g. ``gateway.port``."""
    path = _config_path(ctx)
    if path is None:
        raise click.ClickException(f"No {CONFIG_FILENAME} found")
    try:
        click.echo(repr(get_value(_read(path), key)))
    except (KeyError, ValueError) as e:
        raise click.ClickException(f"Key not found: {key}") from e


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set one value by dotted key; the file is created if needed."""
    section, _, name = key.partition(".")
    section_cls = SECTIONS.get(section)
    if section_cls is None:
        raise click.ClickException(f"Unknown section {section!r}; expected one of {', '.join(sorted(SECTIONS))}")
    if name not in section_cls.model_fields:
        raise click.ClickException(f"Unknown setting {key!r}")

    path = _config_path(ctx) or Path.cwd() / CONFIG_FILENAME
    data = _read(path)
    parsed = parse_value(value)
    set_value(data, key, parsed)
    try:
        write_config(path, data)
    except OSError as e:
        raise click.ClickException(f"Cannot write {path}: {e}") from e
    click.echo(f"Set {key} = {parsed!r} in {path}")
