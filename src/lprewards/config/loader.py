"""Configuration loader from YAML."""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .schema import Config

CONFIG_ENV_VAR = "LPREWARDS_CONFIG"


def _apply_overrides(data: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Apply dot-notation overrides (e.g. ``game.start_block``) to raw config data."""
    for path, value in overrides.items():
        parts = path.split('.')
        node = data
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = value
    return data


def load_config(yaml_path: str = None, overrides: Optional[Dict[str, Any]] = None) -> Config:
    """
    Load configuration from YAML file.

    Resolution order: explicit ``yaml_path``, then the ``LPREWARDS_CONFIG``
    environment variable, then the packaged defaults.yaml.

    Args:
        yaml_path: Path to YAML file
        overrides: Dot-notation overrides applied before validation

    Returns:
        Config object
    """
    if yaml_path is None:
        yaml_path = os.environ.get(CONFIG_ENV_VAR) or Path(__file__).parent / "defaults.yaml"

    with open(yaml_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    if overrides:
        data = _apply_overrides(data, overrides)

    return Config.from_dict(data)


def config_from_dict(data: Dict[str, Any]) -> Config:
    """Create config from dictionary."""
    return Config.from_dict(data)
