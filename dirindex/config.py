"""Persistent JSON defaults for index options.

Stores the CLI's default ``IndexOptions`` values. All access is defensive:
malformed or missing config falls back to built-in defaults. Library entry
points never read this file on their own.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from platformdirs import user_config_dir

from .file_tree_model.build import DEFAULT_FAN_OUT_THRESHOLD, IndexOptions

logger = logging.getLogger(__name__)

APP_NAME = "dirindex"
CONFIG_FILENAME = "config.json"
CONFIG_PATH = Path(user_config_dir(APP_NAME, appauthor=False)) / CONFIG_FILENAME


def load_config() -> dict[str, object]:
    """Load the persisted JSON config object.

    Returns an empty dict when the file is missing, unreadable, malformed, or
    does not decode to a top-level JSON object.
    """
    try:
        data = json.loads(CONFIG_PATH.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as exc:
        logger.warning("ignoring unreadable config %s: %s", CONFIG_PATH, exc)
        return {}
    return data if isinstance(data, dict) else {}


def save_config(data: dict[str, object]) -> None:
    """Persist config data as pretty-printed JSON.

    Write failures are logged and otherwise ignored.
    """
    try:
        CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
        CONFIG_PATH.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    except OSError as exc:
        logger.warning("could not write config %s: %s", CONFIG_PATH, exc)


def _load_bool(data: dict[str, object], key: str, default: bool) -> bool:
    value = data.get(key)
    return value if isinstance(value, bool) else default


def _load_positive_int(data: dict[str, object], key: str) -> int | None:
    """Read a positive integer; booleans and other types are treated as unset."""
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        return None
    return value


def load_index_options() -> IndexOptions:
    """Build ``IndexOptions`` from persisted defaults, dropping invalid values."""
    data = load_config()
    fan_out_threshold = data.get("fan_out_threshold")
    if isinstance(fan_out_threshold, bool) or not isinstance(fan_out_threshold, int) or fan_out_threshold < 0:
        fan_out_threshold = DEFAULT_FAN_OUT_THRESHOLD
    return IndexOptions(
        respect_gitignore=_load_bool(data, "respect_gitignore", True),
        follow_symlinks=_load_bool(data, "follow_symlinks", False),
        max_parallelism=_load_positive_int(data, "max_parallelism"),
        fan_out_threshold=fan_out_threshold,
    )


def save_index_options(options: IndexOptions) -> None:
    """Persist ``options`` as the new defaults, keeping unrelated keys."""
    config = load_config()
    config["respect_gitignore"] = bool(options.respect_gitignore)
    config["follow_symlinks"] = bool(options.follow_symlinks)
    if options.max_parallelism is None:
        config.pop("max_parallelism", None)
    else:
        config["max_parallelism"] = int(options.max_parallelism)
    config["fan_out_threshold"] = int(options.fan_out_threshold)
    save_config(config)


__all__ = [
    "APP_NAME",
    "CONFIG_PATH",
    "load_config",
    "save_config",
    "load_index_options",
    "save_index_options",
]
