"""Ports describing the mapping engine the gate drives."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterable

    from entitygate.config import GateSettings
    from entitygate.domain.model import EntityState, ShapeDescriptor, ShapeRegistry
    from entitygate.domain.ports.copying import DetachedCopyProvider
    from entitygate.domain.token import SessionToken


@runtime_checkable
class EntityEntry(Protocol):
    """Session-side view of one entity."""

    @property
    def entity(self) -> object: ...

    @property
    def state(self) -> EntityState: ...

    def set_state(self, state: EntityState) -> None: ...

    def reload(self) -> None: ...

    def original_values(self) -> dict[str, object]: ...

    def current_values(self) -> dict[str, object]: ...

    def modified_fields(self) -> tuple[str, ...]: ...


@runtime_checkable
class MappingSession(Protocol):
    """Unit of work bound to one connection."""

    @property
    def lazy_loading_enabled(self) -> bool: ...

    @property
    def tracking_enabled(self) -> bool: ...

    def find(self, shape: ShapeDescriptor, identifier: object) -> object | None: ...

    def query(self, shape: ShapeDescriptor) -> Iterable[object]: ...

    def entry(self, entity: object) -> EntityEntry: ...

    def has_pending_changes(self) -> bool: ...

    def commit(self) -> int:
        """Write pending changes and return the number of entities written.

        Raises :class:`~entitygate.domain.errors.ConcurrencyConflictError` when a
        concurrent modification is detected.
        """
        ...

    def all_entries(self) -> Iterable[EntityEntry]: ...

    def set_lazy_loading_enabled(self, enabled: bool) -> None: ...  # noqa: FBT001

    def set_no_tracking(self) -> None: ...

    def close(self) -> None: ...


@runtime_checkable
class MappingEngine(Protocol):
    """Factory of mapping sessions plus the metadata they share."""

    @property
    def shapes(self) -> ShapeRegistry: ...

    @property
    def copier(self) -> DetachedCopyProvider: ...

    def open_session(self, settings: GateSettings, *, token: SessionToken) -> MappingSession: ...

    def is_malformed_query(self, error: BaseException) -> bool: ...
