"""3-layer configuration system for grcscope.

Loads and merges configuration from:
1. Default settings (built-in)
2. Workspace config (.grcscope/config.yaml)
3. CLI parameters (override)
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

STORE_BACKEND_ENV = "GRCSCOPE_STORE_BACKEND"

DEFAULT_CONFIG: dict = {
    "catalog": {
        "path": "",
    },
    "store": {
        "backend": "files",
        "files": {"root": ""},
        "supabase": {
            "url": "",
            "api_key_env": "SUPABASE_KEY",
            "timeout_seconds": 10,
            "schema": "public",
        },
    },
    "scoring": {
        "top_gaps": 5,
    },
    "assessment": {
        "max_critical_gaps": 10,
    },
    "analytics": {
        "trend_days": 90,
        "delta_days": [7, 30, 90],
    },
    "logging": {
        "level": "WARNING",
    },
}


def deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dicts. Arrays are replaced, not merged."""
    result = {}
    for key in base:
        result[key] = base[key]
    for key, value in override.items():
        base_value = result.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            result[key] = deep_merge(base_value, value)
        else:
            result[key] = value
    return result


def load_workspace_config(workspace: Path) -> dict:
    """Load workspace configuration from .grcscope/config.yaml."""
    config_path = workspace / ".grcscope" / "config.yaml"
    if not config_path.exists():
        return {}
    try:
        content = config_path.read_text(encoding="utf-8-sig")  # utf-8-sig strips BOM
        loaded = yaml.safe_load(content) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignoring unreadable config %s: %s", config_path, e)
        return {}
    if not isinstance(loaded, dict):
        logger.warning("Ignoring config %s: top level is not a mapping", config_path)
        return {}
    return loaded


def get_effective_config(
    workspace: Optional[Path] = None,
    cli_overrides: Optional[dict] = None,
) -> dict:
    """Get the fully resolved configuration."""
    config = copy.deepcopy(DEFAULT_CONFIG)

    if workspace is not None:
        workspace_config = load_workspace_config(workspace)
        if workspace_config:
            config = deep_merge(config, workspace_config)

    backend = os.environ.get(STORE_BACKEND_ENV)
    if backend:
        config = deep_merge(config, {"store": {"backend": backend}})

    if cli_overrides:
        config = deep_merge(config, cli_overrides)

    config["_workspace"] = str(workspace) if workspace is not None else ""

    return config
