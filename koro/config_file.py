"""TOML configuration file utilities.

Reading uses the stdlib ``tomllib``; writing uses ``tomli-w`` and always goes
through a temporary file plus ``os.replace`` so a crash never leaves a
half-written ``koro.toml`` behind.
"""

from __future__ import annotations

import os
import tempfile
import tomllib
from pathlib import Path
from typing import Any

import tomli_w

CONFIG_FILENAME = "koro.toml"


def config_candidates(base_dir: Path | None = None) -> list[Path]:
    """Locations searched for koro.toml, highest priority first."""
    return [
        Path.cwd() / CONFIG_FILENAME,
        Path.home() / ".config" / "koro" / CONFIG_FILENAME,
        (base_dir or Path.home() / ".koro") / CONFIG_FILENAME,
    ]


def find_config(base_dir: Path | None = None) -> Path | None:
    """Return the first existing koro.toml: cwd, ~/.config/koro, then the base dir."""
    for candidate in config_candidates(base_dir):
        if candidate.is_file():
            return candidate
    return None


def load_config(path: Path) -> dict:
    with open(path, "rb") as f:
        return tomllib.load(f)


def write_config(path: Path, data: dict) -> None:
    """Serialize ``data`` to ``path`` atomically, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".koro_config_", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            tomli_w.dump(data, f)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _split_key(dotted_key: str) -> tuple[str, str]:
    section, _, name = dotted_key.strip().partition(".")
    if not section or not name or "." in name:
        raise ValueError(f"Expected <section>.<name>, got {dotted_key!r}")
    return section, name


def get_value(data: dict, dotted_key: str) -> Any:
    """Look up ``section.name``; raises KeyError when absent."""
    section, name = _split_key(dotted_key)
    table = data.get(section)
    if not isinstance(table, dict) or name not in table:
        raise KeyError(dotted_key)
    return table[name]


def set_value(data: dict, dotted_key: str, value: Any) -> dict:
    section, name = _split_key(dotted_key)
    table = data.get(section)
    if not isinstance(table, dict):
        table = data[section] = {}
    table[name] = value
    return data


def parse_value(raw: str) -> Any:
    """Interpret a command-line value as a TOML literal, falling back to a string.

    ``true`` → bool, ``8080`` → int, ``1.5`` → float, ``"x"`` → str; anything
    that is not valid TOML (``localhost``) is kept verbatim.
    """
    try:
        return tomllib.loads(f"value = {raw}")["value"]
    except tomllib.TOMLDecodeError:
        return raw


def generate_template(agent_name: str = "koro") -> str:
    """Generate an annotated koro.toml template.

    Environment variables (``KORO_*``) override every value set here.
    """
    return f'''\
# Koro Configuration
# Environment variables (KORO_*) override these values.

[agent]
name = "{agent_name}"
# max_tool_iterations = 10
# compression_threshold = 20
# summary_max_chars = 2000

[llm]
provider = "openrouter"
model = "google/gemini-2.5-flash"
api_key = "YOUR_API_KEY"
max_tokens = 8192
# base_url = "https://openrouter.ai/api/v1"
# retry_max_retries = 2
# retry_base_delay = 1.0

[memory]
# base_dir = "~/.koro"

[tools]
# shell_enabled = false
# tool_timeout = 30.0

[gateway]
# enabled = true
# host = "127.0.0.1"
# port = 3000
# auth_token = ""
# mcp_enabled = false

[channels]
# cli_enabled = true
# default_user = "default"
'''
