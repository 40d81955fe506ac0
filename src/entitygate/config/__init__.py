"""Application configuration helpers."""

from __future__ import annotations

from .env import require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .logging import configure_logging, resolve_log_level
from .registry import ConfigurationRegistry, load_registry, load_settings_file
from .settings import GateSettings, get_settings_from_environment

__all__ = [
    "ConfigurationError",
    "ConfigurationRegistry",
    "GateSettings",
    "MissingConfigurationError",
    "configure_logging",
    "get_settings_from_environment",
    "load_registry",
    "load_settings_file",
    "require_env_vars",
    "resolve_log_level",
]
