"""Shortcuts for one-off reads through a throwaway gate."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from entitygate.domain.errors import GateError
from entitygate.domain.gate import EntityGate

if TYPE_CHECKING:
    from entitygate.config import ConfigurationRegistry, GateSettings
    from entitygate.domain.ports import MappingEngine


def load_entity(
    engine: MappingEngine,
    shape: type | str,
    identifier: object,
    *,
    settings: GateSettings | None = None,
    registry: ConfigurationRegistry | None = None,
    connection_name: str | None = None,
) -> Any:
    """Load one entity of ``shape`` by identifier; raise when it does not exist."""

    with EntityGate(
        engine,
        settings,
        registry=registry,
        connection_name=connection_name,
        shape=shape,
    ) as gate:
        if not gate.load(identifier):
            raise GateError(f"Unable to load {gate.table_name()} with identifier {identifier!r}")
        return gate.entity


def load_all(
    engine: MappingEngine,
    shape: type | str,
    *,
    settings: GateSettings | None = None,
    registry: ConfigurationRegistry | None = None,
    connection_name: str | None = None,
) -> list[Any]:
    with EntityGate(
        engine,
        settings,
        registry=registry,
        connection_name=connection_name,
        shape=shape,
    ) as gate:
        return gate.list()


def reload(
    engine: MappingEngine,
    entity: object,
    *,
    settings: GateSettings | None = None,
    registry: ConfigurationRegistry | None = None,
    connection_name: str | None = None,
) -> Any:
    """Read ``entity`` again from the store and return the fresh instance."""

    shape = engine.shapes.for_entity(entity)
    return load_entity(
        engine,
        shape.entity_type,
        shape.identifier_of(entity),
        settings=settings,
        registry=registry,
        connection_name=connection_name,
    )
