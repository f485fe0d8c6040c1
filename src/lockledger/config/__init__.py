"""Configuration schema and YAML loading."""

from .loader import DEFAULTS_PATH, load_config
from .schema import BucketConfig, Config, ProtocolParams, Roles, Simulation

__all__ = [
    "BucketConfig",
    "Config",
    "ProtocolParams",
    "Roles",
    "Simulation",
    "DEFAULTS_PATH",
    "load_config",
]
