"""Configuration loader with YAML and environment variable support.

This module reads ~/.config/outlinekit/config.yaml and allows environment
variable overrides using the OUTLINEKIT_* prefix.

Environment variables:
- OUTLINEKIT_GATEWAY_ENDPOINT: Override block store endpoint
- OUTLINEKIT_GATEWAY_API_KEY: Override block store API key
- OUTLINEKIT_GATEWAY_TIMEOUT: Override request timeout (seconds)
- OUTLINEKIT_EDITOR_DEBOUNCE_SECONDS: Override idle commit delay
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from outlinekit.models.config import Config


DEFAULT_CONFIG_PATH = Path.home() / ".config" / "outlinekit" / "config.yaml"


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to config file. If None, uses ~/.config/outlinekit/config.yaml

    Returns:
        Validated Config object

    Raises:
        FileNotFoundError: If there is neither a config file nor an endpoint override
        pydantic.ValidationError: If the resulting configuration is invalid
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if config_path.exists():
        with config_path.open() as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    data = _apply_env_overrides(data)

    if not data["gateway"]:
        raise FileNotFoundError(
            f"Configuration file not found at {config_path} and no OUTLINEKIT_* environment variables set.\n\n"
            f"Please create the file with the following format:\n\n"
            f"gateway:\n"
            f"  endpoint: http://localhost:8080/api\n"
            f"  api_key: YOUR_API_KEY_HERE\n\n"
            f"editor:\n"
            f"  debounce_seconds: 0.3\n"
        )

    return Config(**data)


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to configuration data.

    Environment variables use the format: OUTLINEKIT_SECTION_KEY
    For example: OUTLINEKIT_GATEWAY_ENDPOINT sets data['gateway']['endpoint']

    Args:
        data: Base configuration dictionary from YAML

    Returns:
        Configuration dictionary with environment overrides applied
    """
    # Ensure nested structure exists
    for section in ("gateway", "editor"):
        if not data.get(section):
            data[section] = {}

    if env_endpoint := os.getenv("OUTLINEKIT_GATEWAY_ENDPOINT"):
        data["gateway"]["endpoint"] = env_endpoint

    if env_api_key := os.getenv("OUTLINEKIT_GATEWAY_API_KEY"):
        data["gateway"]["api_key"] = env_api_key

    if env_timeout := os.getenv("OUTLINEKIT_GATEWAY_TIMEOUT"):
        try:
            data["gateway"]["timeout"] = float(env_timeout)
        except ValueError:
            pass  # Invalid value, ignore

    if env_debounce := os.getenv("OUTLINEKIT_EDITOR_DEBOUNCE_SECONDS"):
        try:
            data["editor"]["debounce_seconds"] = float(env_debounce)
        except ValueError:
            pass  # Invalid value, ignore

    return data
