from __future__ import annotations

import pytest

from entitygate.config import (
    ConfigurationError,
    GateSettings,
    MissingConfigurationError,
    get_settings_from_environment,
    require_env_vars,
)


def test_defaults() -> None:
    settings = GateSettings("main", "sqlite://")

    assert settings.max_attempts == 5
    assert settings.attempt_delay_ms == 1000
    assert settings.attempt_delay_seconds == 1.0
    assert settings.timeout_seconds == 30
    assert settings.lazy_loading is True
    assert settings.auto_check_original_values is True
    assert settings.notifications_enabled is False


@pytest.mark.parametrize(
    "changes",
    [
        {"connection_name": " "},
        {"database_uri": ""},
        {"max_attempts": 0},
        {"attempt_delay_ms": 0},
        {"timeout_seconds": 3},
    ],
)
def test_invalid_values_are_rejected(changes: dict[str, object]) -> None:
    with pytest.raises(ConfigurationError):
        GateSettings("main", "sqlite://").with_changes(**changes)


def test_with_changes_returns_new_settings() -> None:
    settings = GateSettings("main", "sqlite://")

    changed = settings.with_changes(max_attempts=2)

    assert changed.max_attempts == 2
    assert settings.max_attempts == 5
    assert changed != settings


def test_require_env_vars_reports_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENTITYGATE_PRESENT", "yes")
    monkeypatch.setenv("ENTITYGATE_BLANK", "  ")

    with pytest.raises(MissingConfigurationError, match="ENTITYGATE_BLANK, ENTITYGATE_MISSING"):
        require_env_vars(("ENTITYGATE_PRESENT", "ENTITYGATE_BLANK", "ENTITYGATE_MISSING"))


def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENTITYGATE_DATABASE_URI", "sqlite:///gate.db")
    monkeypatch.setenv("ENTITYGATE_MAX_ATTEMPTS", "2")
    monkeypatch.setenv("ENTITYGATE_LAZY_LOADING", "off")
    monkeypatch.setenv("ENTITYGATE_NOTIFICATIONS_ENABLED", "True")

    settings = get_settings_from_environment("env")

    assert settings.connection_name == "env"
    assert settings.database_uri == "sqlite:///gate.db"
    assert settings.max_attempts == 2
    assert settings.lazy_loading is False
    assert settings.notifications_enabled is True
    assert settings.timeout_seconds == 30


def test_settings_from_environment_requires_uri() -> None:
    with pytest.raises(MissingConfigurationError):
        get_settings_from_environment()


@pytest.mark.parametrize(
    ("name", "value"),
    [("ENTITYGATE_MAX_ATTEMPTS", "many"), ("ENTITYGATE_LAZY_LOADING", "maybe")],
)
def test_settings_from_environment_rejects_bad_values(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str
) -> None:
    monkeypatch.setenv("ENTITYGATE_DATABASE_URI", "sqlite://")
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigurationError, match=name):
        get_settings_from_environment()
