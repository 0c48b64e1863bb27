"""Configuration models and loaders."""

from .loader import config_from_dict, load_config
from .schema import Config

__all__ = ["Config", "config_from_dict", "load_config"]
