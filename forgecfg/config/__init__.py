"""Configuration loading: INI source, typed groups, generated secrets, services."""

from forgecfg.config.errors import ConfigError
from forgecfg.config.loader import get_settings, load_core, load_settings, reset_settings_cache
from forgecfg.config.schemas import Settings
from forgecfg.config.services import load_services
from forgecfg.config.source import ConfigSource

__all__ = [
    "ConfigError",
    "ConfigSource",
    "Settings",
    "get_settings",
    "load_core",
    "load_services",
    "load_settings",
    "reset_settings_cache",
]
