"""Configuration loading for outlinekit."""

from outlinekit.config.loader import DEFAULT_CONFIG_PATH, load_config

__all__ = ["DEFAULT_CONFIG_PATH", "load_config"]
