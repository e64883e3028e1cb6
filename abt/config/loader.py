import yaml
from pathlib import Path
from typing import Optional

from abt.domain.exceptions import ConfigError
from .models import AppConfig


def load_config(config_path: Optional[Path]) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model.

    A missing path (None) yields the built-in defaults.
    """
    if config_path is None:
        return AppConfig()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping: {config_path}")

    # Allow a flat file with the general keys at the root
    if "general" not in data:
        data = {"general": data}

    return AppConfig(**data)
