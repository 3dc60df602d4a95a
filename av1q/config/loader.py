import yaml
from pathlib import Path
from typing import Optional
from pydantic import ValidationError
from av1q.domain.errors import ConfigurationError
from .models import AppConfig


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Loads YAML config and parses it into the AppConfig Pydantic model.

    Without a path the built-in defaults are returned.
    """
    if config_path is None:
        return AppConfig()
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    try:
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config root must be a mapping: {config_path}")

    try:
        return AppConfig(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config {config_path}:\n{e}") from e
