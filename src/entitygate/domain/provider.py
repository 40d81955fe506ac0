"""Session-owning half of the gate: one live mapping session plus its tracking set."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from entitygate.domain.errors import CanceledError, GateError, ProviderError
from entitygate.domain.model import EntityState
from entitygate.domain.reconciliation import Reconciler
from entitygate.domain.tracking import TrackingSet

if TYPE_CHECKING:
    from collections.abc import Iterable

    from entitygate.config import GateSettings
    from entitygate.domain.model import ShapeDescriptor
    from entitygate.domain.ports import (
        DetachedCopyProvider,
        EntityEntry,
        MappingEngine,
        MappingSession,
    )
    from entitygate.domain.token import SessionToken

log = logging.getLogger(__name__)


class GateProvider:
    def __init__(
        self,
        engine: MappingEngine,
        token: SessionToken,
        *,
        copier: DetachedCopyProvider | None = None,
        tracking: TrackingSet | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._engine = engine
        self._token = token
        self._copier = copier or engine.copier
        self._log = logger or log
        self.tracking = tracking if tracking is not None else TrackingSet()
        self._lazy_loading: bool | None = None
        self._shape: ShapeDescriptor | None = None
        self._session: MappingSession | None = None
        self._settings: GateSettings | None = None
        self._reconciler: Reconciler | None = None
        self._added_copies: list[tuple[object, object]] = []
        self._disposed = False

    # Session lifecycle -----------------------------------------------------------

    def initialize(self, settings: GateSettings) -> None:
        if self._disposed:
            raise CanceledError("The gate provider has been disposed")

        if self._session is None or settings != self._settings:
            self._open_session(settings)

        if not self._token.tracked:
            self.clean_tracking()

    @property
    def session(self) -> MappingSession:
        if self._session is None:
            raise ProviderError("No mapping session is open")
        return self._session

    @property
    def reconciler(self) -> Reconciler:
        if self._reconciler is None:
            raise ProviderError("No mapping session is open")
        return self._reconciler

    def dispose(self) -> None:
        if self._disposed:
            return
        self.clean_tracking()
        if self._session is not None:
            self._session.close()
            self._session = None
        self._reconciler = None
        self._shape = None
        self._disposed = True

    def _open_session(self, settings: GateSettings) -> None:
        if self._session is not None:
            self._session.close()
        self._log.info("Opening a new session for connection %s", settings.connection_name)
        self._session = self._engine.open_session(settings, token=self._token)
        self._settings = settings
        self._reconciler = Reconciler(
            self._session, self._engine.shapes, self._copier, logger=self._log
        )
        if self._lazy_loading is None:
            self._lazy_loading = settings.lazy_loading
        self.set_lazy_loading(self._lazy_loading)
        self._apply_tracking_if_needed()

    def set_lazy_loading(self, enabled: bool) -> None:  # noqa: FBT001
        self._lazy_loading = enabled
        self._log.info("Lazy loading enabled: %s", enabled)
        self.session.set_lazy_loading_enabled(enabled)

    # Shape -----------------------------------------------------------------------

    @property
    def shape(self) -> ShapeDescriptor:
        if self._shape is None:
            raise ProviderError("The entity type is undefined")
        return self._shape

    def has_shape(self) -> bool:
        return self._shape is not None

    def set_shape(self, entity_type: type) -> None:
        if self._shape is not None and self._shape.entity_type is entity_type:
            return
        try:
            shape = self._engine.shapes.for_type(entity_type)
        except GateError as exc:
            raise ProviderError(f"Invalid entity type: {entity_type.__name__}") from exc
        if shape is not self._shape:
            self._shape = shape
            self._log.info("Current entity type: %s", shape.name)

    def shape_of(self, entity: object) -> ShapeDescriptor:
        return self._engine.shapes.for_entity(entity)

    # Entities --------------------------------------------------------------------

    def entity_state(self, entity: object) -> EntityState:
        return self.reconciler.state_of(entity)

    def manage(self, entity: object) -> object:
        return self.reconciler.manage(entity)

    def mark(self, entity: object, target: EntityState) -> object:
        return self.reconciler.apply(entity, target)

    def managed_or_detached(
        self,
        entity: object,
        *,
        current_shape: bool = True,
        update_values: bool = True,
    ) -> object:
        """Return the instance of ``entity`` the session should work on.

        With ``current_shape`` a copy is converted to the current shape; otherwise
        the entity keeps its own shape.
        """

        shape = self._shape if current_shape else None
        return self.reconciler.managed_or_detached(entity, shape, update_values=update_values)

    def has_entity(self, entity: object) -> bool:
        return self.reconciler.has_entity(entity)

    def find(self, identifier: object) -> object | None:
        return self.session.find(self.shape, identifier)

    def list(self) -> Iterable[object]:
        return self.session.query(self.shape)

    def has_changes(self) -> bool:
        return self.session.has_pending_changes()

    def save_changes(self, primary: object) -> int:
        self.capture_change_set(primary)
        if not self.tracking.has_entries():
            raise ProviderError("Unable to save: no tracked entity")
        self._log.info("Saving changes")
        rows = self.session.commit()
        self._refresh_added_copies()
        return rows

    def refresh(self, entity: object) -> None:
        if entity is None:
            raise ProviderError("Invalid entity to refresh")
        self.session.entry(entity).reload()

    def original_values(
        self, entity: object, *, all_fields: bool = False
    ) -> tuple[tuple[str, object], ...]:
        entry = self.session.entry(entity)
        values = entry.original_values()
        if all_fields:
            return tuple(values.items())
        modified = set(entry.modified_fields())
        return tuple((name, value) for name, value in values.items() if name in modified)

    def primary_key_names(self, entity: object) -> tuple[str, ...]:
        shape = self._shape if self._shape is not None else self.shape_of(entity)
        return shape.key_fields

    # Tracking --------------------------------------------------------------------

    def clean_tracking(self) -> None:
        self.tracking.clear()
        self._added_copies.clear()

    def no_tracking(self) -> None:
        self.clean_tracking()
        self._token.tracked = False
        if self._session is not None:
            self._session.set_no_tracking()

    def main_entity(self) -> object:
        return self.tracking.main_entity().entity

    def changed_entries(self) -> list[tuple[ShapeDescriptor, object, EntityState]]:
        return [
            (self.shape_of(record.entity), record.entity, record.state)
            for record in self.tracking.changed_entries()
        ]

    def capture_change_set(self, primary: object) -> None:
        """Rebuild the tracking set from the live session as detached copies."""

        session = self.session
        lazy_loading = session.lazy_loading_enabled
        session.set_lazy_loading_enabled(False)
        try:
            self.tracking.clear()
            self._added_copies.clear()
            if self._token.tracked and session.tracking_enabled:
                for entry in session.all_entries():
                    is_primary = entry.entity is primary
                    if entry.state is not EntityState.UNCHANGED or is_primary:
                        self._track(entry, is_primary=is_primary)
            else:
                self._track(session.entry(primary), is_primary=True)
        except Exception as exc:
            raise ProviderError("Failed to track entities") from exc
        finally:
            session.set_lazy_loading_enabled(lazy_loading)

    def _track(self, entry: EntityEntry, *, is_primary: bool) -> None:
        state = entry.state
        values = entry.original_values() if state is EntityState.DELETED else entry.current_values()
        shape = self.shape_of(entry.entity)
        copy = self._copier.detach(entry.entity, shape, values)
        self.tracking.mark(copy, state, is_primary=is_primary)
        if state is EntityState.ADDED:
            self._added_copies.append((copy, entry.entity))

    def _refresh_added_copies(self) -> None:
        """Give the copies of inserted entities the keys the store generated."""

        for copy, live in self._added_copies:
            shape = self.shape_of(live)
            shape.apply_values(copy, shape.key_values_of(live))

    def _apply_tracking_if_needed(self) -> None:
        if not (self.tracking.has_entries() and self._token.tracked):
            return

        self._log.info("Applying entity tracking to the new session")
        try:
            self._token.tracked = False
            self.tracking.collapse_empty_collections(
                lambda entity: self._copier.collapse_empty_collections(
                    entity, self.shape_of(entity)
                )
            )
            for record in self.tracking:
                self.reconciler.apply(record.entity, record.state)
        finally:
            self._token.tracked = True
