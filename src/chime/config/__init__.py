"""
config/ — Chime settings and the proactive configuration snapshot.

Usage:
    from chime.config import load_settings, ProactiveConfig

    settings = load_settings("config/config.yaml")
    snapshot = settings.proactive
"""

from chime.config.settings import (
    FixedModeConfig,
    FixedTimePoint,
    GenerationConfig,
    InactivityModeConfig,
    LoggingConfig,
    ProactiveConfig,
    RandomModeConfig,
    Settings,
    StorageConfig,
    get_settings,
    load_settings,
)

__all__ = [
    "FixedModeConfig",
    "FixedTimePoint",
    "GenerationConfig",
    "InactivityModeConfig",
    "LoggingConfig",
    "ProactiveConfig",
    "RandomModeConfig",
    "Settings",
    "StorageConfig",
    "get_settings",
    "load_settings",
]
