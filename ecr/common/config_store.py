# ecr/common/config_store.py
"""JSON configuration file loading.

Usage:
    from ecr.common.config_store import load_config

    config = load_config("ecr.json")  # ECRConfig
    config.worker.startup_timeout
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

from ecr.common.typed_config import ECRConfig
from ecr.core.errors import ConfigError

CONFIG_ENV_VAR = "ECR_CONFIG"


def _get_logger() -> logging.Logger:
    """Get module logger (lazy to avoid side effect at import time)."""
    return logging.getLogger(__name__)


def load_config_file(filename: str) -> dict[str, Any]:
    """Read a JSON config file into a dict of sections.

    A corrupt file or a non-object top level is logged and treated as empty.
    Sections that are not objects are dropped.
    """
    try:
        with open(filename, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        _get_logger().warning("Corrupt config file %s: %s", filename, e)
        return {}
    if not isinstance(data, dict):
        _get_logger().warning("Config file %s is not a JSON object (got %s)", filename, type(data).__name__)
        return {}
    for key, value in list(data.items()):
        if not isinstance(value, dict):
            _get_logger().warning("Config section %s is not a dict (got %s), removing", key, type(value).__name__)
            del data[key]
    return data


def resolve_config_path(path: str | None = None) -> str | None:
    """Explicit path, else the ECR_CONFIG environment variable, else None."""
    if path:
        return path
    env_path = os.environ.get(CONFIG_ENV_VAR, "").strip()
    return env_path or None


def load_config(path: str | None = None) -> ECRConfig:
    """Load typed configuration. No path configured -> all defaults.

    Raises:
        ConfigError: A configured path does not exist or cannot be read.
    """
    resolved = resolve_config_path(path)
    if resolved is None:
        return ECRConfig()
    if not os.path.isfile(resolved):
        raise ConfigError(f"Config file not found: {resolved}", context={"path": resolved})
    try:
        data = load_config_file(resolved)
    except OSError as e:
        raise ConfigError(f"Config file unreadable: {resolved}: {e}", context={"path": resolved}) from e
    return ECRConfig.from_dict(data)
