from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from entitygate.adapters.sqlalchemy import SqlAlchemyMappingEngine
from entitygate.config import GateSettings
from tests.helpers.fakes import FakeMappingEngine
from tests.helpers.models import create_all_tables, start_mappers

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def clear_gate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "ENTITYGATE_CONFIG",
        "ENTITYGATE_DATABASE_URI",
        "ENTITYGATE_MAX_ATTEMPTS",
        "ENTITYGATE_ATTEMPT_DELAY_MS",
        "ENTITYGATE_TIMEOUT_SECONDS",
        "ENTITYGATE_LAZY_LOADING",
        "ENTITYGATE_AUTO_CHECK_ORIGINAL_VALUES",
        "ENTITYGATE_NOTIFICATIONS_ENABLED",
        "ENTITYGATE_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def database_uri(tmp_path: Path) -> str:
    return f"sqlite+pysqlite:///{tmp_path / 'gate.db'}"


@pytest.fixture
def settings(database_uri: str) -> GateSettings:
    return GateSettings(
        connection_name="test",
        database_uri=database_uri,
        max_attempts=3,
        attempt_delay_ms=5,
        timeout_seconds=5,
    )


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_engine() -> FakeMappingEngine:
    engine = FakeMappingEngine()
    engine.add_row("Widget", id=1, label="first")
    engine.add_row("Widget", id=2, label="second")
    return engine


@pytest.fixture
def mapping_engine(settings: GateSettings) -> Iterator[SqlAlchemyMappingEngine]:
    engine = SqlAlchemyMappingEngine(start_mappers())
    create_all_tables(engine.engine_for(settings))
    try:
        yield engine
    finally:
        engine.dispose()
