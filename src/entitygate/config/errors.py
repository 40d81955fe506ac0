"""Configuration error definitions."""

from __future__ import annotations

from entitygate.domain.errors import ErrorKind, GateError


class ConfigurationError(GateError):
    """Raised when configuration values are invalid."""

    default_kind = ErrorKind.CONFIGURATION


class MissingConfigurationError(ConfigurationError):
    """Raised when required configuration values are absent or blank."""
