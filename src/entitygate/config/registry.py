"""Registry of named connection settings.

Readers always see an immutable snapshot; :meth:`ConfigurationRegistry.reload`
builds a new snapshot and swaps it in under the lock.
"""

from __future__ import annotations

import logging
import os
import threading
import tomllib
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError, MissingConfigurationError
from .settings import (
    DEFAULT_ATTEMPT_DELAY_MS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_TIMEOUT_SECONDS,
    GateSettings,
    get_settings_from_environment,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

log = logging.getLogger(__name__)

CONFIG_PATH_ENV_VAR = "ENTITYGATE_CONFIG"


class ConnectionPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    database_uri: str = Field(min_length=1)
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    attempt_delay_ms: int = DEFAULT_ATTEMPT_DELAY_MS
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    lazy_loading: bool = True
    auto_check_original_values: bool = True
    notifications_enabled: bool = False


class ConfigFilePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    connections: dict[str, ConnectionPayload] = Field(default_factory=dict)


def _freeze(settings: Iterable[GateSettings]) -> Mapping[str, GateSettings]:
    entries: dict[str, GateSettings] = {}
    for item in settings:
        key = item.connection_name.casefold()
        if key in entries:
            raise ConfigurationError(f"Duplicate connection name: {item.connection_name}")
        entries[key] = item
    return MappingProxyType(entries)


class ConfigurationRegistry:
    """Thread-safe lookup of :class:`GateSettings` by connection name."""

    def __init__(self, settings: Iterable[GateSettings] = ()) -> None:
        self._lock = threading.Lock()
        self._snapshot = _freeze(settings)

    def reload(self, settings: Iterable[GateSettings]) -> None:
        snapshot = _freeze(settings)
        with self._lock:
            self._snapshot = snapshot
        log.info("Configuration reloaded: %s", ", ".join(self.names()) or "<empty>")

    def snapshot(self) -> Mapping[str, GateSettings]:
        with self._lock:
            return self._snapshot

    def names(self) -> tuple[str, ...]:
        return tuple(item.connection_name for item in self.snapshot().values())

    def get(self, connection_name: str) -> GateSettings:
        settings = self.snapshot().get(connection_name.casefold())
        if settings is None:
            raise MissingConfigurationError(
                f"Unable to find connection configuration: {connection_name}"
            )
        return settings

    def first(self) -> GateSettings:
        for settings in self.snapshot().values():
            return settings
        raise MissingConfigurationError("No connection configuration has been loaded")

    @classmethod
    def from_file(cls, path: Path | str) -> ConfigurationRegistry:
        return cls(load_settings_file(path))

    @classmethod
    def from_environment(cls) -> ConfigurationRegistry:
        return cls((get_settings_from_environment(),))


def load_settings_file(path: Path | str) -> list[GateSettings]:
    """Parse a TOML file of ``[connections.<name>]`` tables."""

    config_path = Path(path).expanduser()
    try:
        with config_path.open("rb") as handle:
            document = tomllib.load(handle)
    except FileNotFoundError as exc:
        raise MissingConfigurationError(f"Configuration file not found: {config_path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Invalid configuration file {config_path}: {exc}") from exc

    try:
        payload = ConfigFilePayload.model_validate(document)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration file {config_path}: {exc}") from exc

    return [
        GateSettings(connection_name=name, **connection.model_dump())
        for name, connection in payload.connections.items()
    ]


def load_registry() -> ConfigurationRegistry:
    """Load settings from ``ENTITYGATE_CONFIG`` when set, else from the environment."""

    config_path = os.getenv(CONFIG_PATH_ENV_VAR)
    if config_path:
        return ConfigurationRegistry.from_file(config_path)
    return ConfigurationRegistry.from_environment()
