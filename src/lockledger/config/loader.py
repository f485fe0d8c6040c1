"""Configuration loader from YAML."""

from pathlib import Path
from typing import Optional

import yaml

from .schema import Config

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def load_config(yaml_path: Optional[str] = None) -> Config:
    """
    Load configuration from YAML file.

    Args:
        yaml_path: Path to YAML file (defaults to the bundled defaults.yaml)

    Returns:
        Validated Config; keys missing from the file take schema defaults
    """
    with open(yaml_path or DEFAULTS_PATH, 'r') as f:
        data = yaml.safe_load(f) or {}

    return Config.from_dict(data)
