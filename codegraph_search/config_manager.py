"""Configuration manager for CodeGraph Search using TOML files.

Settings live in ``~/.codegraph-search/config.toml``, one table per
concern::

    [search]
    backend = "lancedb"
    rrf_k = 60

    [graph]
    dependency_depth = 3

    [impact]
    high_total = 20
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import toml

from . import config

logger = logging.getLogger(__name__)

SECTIONS = ("search", "graph", "impact")


def _config_file(path: Optional[Path] = None) -> Path:
    return path or config.CONFIG_FILE


def load_full_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the entire TOML config (all sections).

    Returns an empty dict when the file is missing or unreadable.
    """
    config_file = _config_file(path)
    if not config_file.exists():
        return {}
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config file %s: %s", config_file, exc)
        return {}


def load_section(section: str, path: Optional[Path] = None) -> Dict[str, Any]:
    """Return one ``[section]`` table, or an empty dict."""
    value = load_full_config(path).get(section, {})
    if not isinstance(value, dict):
        logger.warning("Config section [%s] is not a table; ignoring it", section)
        return {}
    return value


def _save_full_config(payload: Dict[str, Any], path: Optional[Path] = None) -> bool:
    """Write entire config dict to TOML file, preserving all sections."""
    config_file = _config_file(path)
    config_file.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(config_file, "w", encoding="utf-8") as f:
            toml.dump(payload, f)
    except OSError as exc:
        logger.warning("Could not write config file %s: %s", config_file, exc)
        return False
    return True


def save_section(section: str, values: Dict[str, Any], path: Optional[Path] = None) -> bool:
    """Merge *values* into ``[section]`` and persist.

    Other sections in the file are left untouched.

    Returns:
        True if saved successfully.
    """
    if section not in SECTIONS:
        raise ValueError(f"Unknown config section '{section}'. Available: {', '.join(SECTIONS)}")
    payload = load_full_config(path)
    merged = dict(payload.get(section, {}))
    merged.update(values)
    payload[section] = merged
    return _save_full_config(payload, path)


def clear_section(section: str, path: Optional[Path] = None) -> bool:
    """Remove ``[section]`` from the config, resetting it to defaults."""
    payload = load_full_config(path)
    payload.pop(section, None)
    return _save_full_config(payload, path)
