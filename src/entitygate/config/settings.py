"""Connection settings consumed by the gate."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Final

from .env import optional_env_bool, optional_env_int, require_env_vars
from .errors import ConfigurationError

DEFAULT_CONNECTION_NAME: Final[str] = "default"
DEFAULT_MAX_ATTEMPTS: Final[int] = 5
DEFAULT_ATTEMPT_DELAY_MS: Final[int] = 1000
DEFAULT_TIMEOUT_SECONDS: Final[int] = 30
MIN_TIMEOUT_SECONDS: Final[int] = 3


@dataclass(frozen=True, slots=True)
class GateSettings:
    """Immutable settings for one named connection."""

    connection_name: str
    database_uri: str
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    attempt_delay_ms: int = DEFAULT_ATTEMPT_DELAY_MS
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    lazy_loading: bool = True
    auto_check_original_values: bool = True
    notifications_enabled: bool = False

    def __post_init__(self) -> None:
        if not self.connection_name.strip():
            raise ConfigurationError("Connection name must not be blank")
        if not self.database_uri.strip():
            raise ConfigurationError(
                f"Connection {self.connection_name!r} has no database URI"
            )
        if self.max_attempts <= 0:
            raise ConfigurationError(
                f"max_attempts must be greater than 0 (got {self.max_attempts})"
            )
        if self.attempt_delay_ms <= 0:
            raise ConfigurationError(
                f"attempt_delay_ms must be greater than 0 (got {self.attempt_delay_ms})"
            )
        if self.timeout_seconds <= MIN_TIMEOUT_SECONDS:
            raise ConfigurationError(
                f"timeout_seconds must be greater than {MIN_TIMEOUT_SECONDS} "
                f"(got {self.timeout_seconds})"
            )

    @property
    def attempt_delay_seconds(self) -> float:
        return self.attempt_delay_ms / 1000

    def with_changes(self, **changes: object) -> GateSettings:
        """Return a copy with ``changes`` applied (validated again)."""

        return replace(self, **changes)  # type: ignore[arg-type]


def get_settings_from_environment(
    connection_name: str = DEFAULT_CONNECTION_NAME,
) -> GateSettings:
    """Build settings from ``ENTITYGATE_*`` environment variables."""

    values = require_env_vars(("ENTITYGATE_DATABASE_URI",))
    overrides: dict[str, object] = {}
    for field_name, loader in (
        ("max_attempts", optional_env_int),
        ("attempt_delay_ms", optional_env_int),
        ("timeout_seconds", optional_env_int),
        ("lazy_loading", optional_env_bool),
        ("auto_check_original_values", optional_env_bool),
        ("notifications_enabled", optional_env_bool),
    ):
        value = loader(f"ENTITYGATE_{field_name.upper()}")
        if value is not None:
            overrides[field_name] = value
    return GateSettings(
        connection_name=connection_name,
        database_uri=values["ENTITYGATE_DATABASE_URI"],
        **overrides,  # type: ignore[arg-type]
    )
