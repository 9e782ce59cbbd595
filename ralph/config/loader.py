"""Loading and saving ``config.json``.

The user file (``~/.ralph/config.json`` or ``$RALPH_CONFIG``) is read
first; a project-local ``.ralph/config.json`` is merged over it key by key.
"""

import json
import os
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from ralph.config.schema import Config
from ralph.utils.helpers import ensure_dir, get_data_dir

LOCAL_CONFIG = Path(".ralph") / "config.json"


def get_config_path() -> Path:
    override = os.environ.get("RALPH_CONFIG")
    if override:
        return Path(override).expanduser()
    return get_data_dir() / "config.json"


def _read_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable config {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config {path}: top level must be an object")
        return {}
    return data


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Path | None = None, project_dir: Path | None = None) -> Config:
    """Load and validate configuration.

    Missing or unreadable files fall back to defaults.  Values that are
    present but invalid raise :class:`pydantic.ValidationError`.
    """
    data = _read_json(config_path or get_config_path())
    local = (project_dir or Path.cwd()) / LOCAL_CONFIG
    data = _deep_merge(data, _read_json(local))
    return Config.model_validate(data)


def save_config(config: Config, config_path: Path | None = None) -> Path:
    path = config_path or get_config_path()
    ensure_dir(path.parent)
    path.write_text(json.dumps(config.model_dump(), indent=2) + "\n")
    return path


def config_error_lines(error: ValidationError) -> list[str]:
    """``work.max_iterations: Input should be greater than 0`` style messages."""
    lines = []
    for item in error.errors():
        where = ".".join(str(part) for part in item["loc"]) or "config"
        lines.append(f"{where}: {item['msg']}")
    return lines
