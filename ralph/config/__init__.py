"""Configuration module for ralph."""

from ralph.config.loader import get_config_path, load_config, save_config
from ralph.config.schema import Config

__all__ = ["Config", "get_config_path", "load_config", "save_config"]
