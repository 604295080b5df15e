"""
Engine shell and deployment configuration
"""

from .config import DeploymentConfig, EngineConfig, config_from_mapping, load_config
from .engine import PerpsEngine

__all__ = [
    "DeploymentConfig",
    "EngineConfig",
    "config_from_mapping",
    "load_config",
    "PerpsEngine",
]
