"""Filesystem helpers."""

import os
from pathlib import Path


def ensure_dir(path: Path) -> Path:
    """Create *path* (and parents) if missing; return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Root of ralph's per-user state, ``~/.ralph`` unless RALPH_HOME is set."""
    override = os.environ.get("RALPH_HOME")
    return Path(override).expanduser() if override else Path.home() / ".ralph"
