"""Configuration module for buddian."""

from buddian.config.loader import get_config_path, load_config, save_config
from buddian.config.schema import Config, LoggingConfig, PluginsConfig

__all__ = ["Config", "LoggingConfig", "PluginsConfig", "load_config", "save_config", "get_config_path"]
