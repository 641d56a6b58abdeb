"""
Filesystem Context — path scoping for the file tools.

File tools may only touch paths inside the memory base directory. Relative
paths are resolved against that directory; absolute paths are accepted only
if they land inside it. Symlinks are resolved before the check, so a link
inside the tree that points outside it is rejected.
"""

from __future__ import annotations

import os
from pathlib import Path


def validate_path(
    requested: str,
    base_dir: Path,
    *,
    require_exists: bool = False,
) -> tuple[Path, str | None]:
    """Validate a requested path against the sandbox root.

    Returns ``(resolved_path, None)`` on success or ``(Path(), error_msg)``
    on failure.
    """
    if not requested or not requested.strip():
        return Path(), "Error: empty path."

    try:
        root = Path(os.path.realpath(base_dir))
    except (OSError, ValueError) as exc:
        return Path(), f"Error: cannot resolve base dir: {exc}"

    candidate = Path(requested).expanduser()
    if not candidate.is_absolute():
        candidate = root / candidate

    try:
        resolved = Path(os.path.realpath(candidate))
    except (OSError, ValueError) as exc:
        return Path(), f"Error: cannot resolve path: {exc}"

    if resolved != root and root not in resolved.parents:
        return Path(), f"Error: path outside memory directory: {requested}"

    if require_exists and not resolved.exists():
        return Path(), f"Error: file not found: {requested}"

    return resolved, None
