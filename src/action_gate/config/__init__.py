"""Configuration loading and validation."""

from action_gate.config.models import (
    AppConfig,
    PlatformConfig,
    ProviderConfig,
    RefreshConfig,
)
from action_gate.config.loader import build_config, load_config

__all__ = [
    "AppConfig",
    "PlatformConfig",
    "ProviderConfig",
    "RefreshConfig",
    "build_config",
    "load_config",
]
