"""Decide and apply the persistence state of an entity against a live session."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from entitygate.domain.errors import GateError, ProviderError
from entitygate.domain.model import EntityState

if TYPE_CHECKING:
    from entitygate.domain.model import ShapeDescriptor, ShapeRegistry
    from entitygate.domain.ports import DetachedCopyProvider, EntityEntry, MappingSession

log = logging.getLogger(__name__)


def target_state(current: EntityState, *, valid_identifier: bool) -> EntityState:
    """Return the state an entity currently in ``current`` must be committed in.

    An entity without a valid identifier has never been persisted, whatever it
    was classified as before. An entity the session does not know is assumed to
    need an update.
    """

    if not valid_identifier:
        return EntityState.ADDED
    if current is EntityState.DETACHED:
        return EntityState.MODIFIED
    return current


class Reconciler:
    """Apply persistence intent for entities through one mapping session."""

    def __init__(
        self,
        session: MappingSession,
        shapes: ShapeRegistry,
        copier: DetachedCopyProvider,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self.session = session
        self.shapes = shapes
        self.copier = copier
        self._log = logger or log

    def state_of(self, entity: object) -> EntityState:
        return self._entry(entity).state

    def manage(self, entity: object) -> object:
        """Align the session state of ``entity`` with what it should be."""

        shape = self.shapes.for_entity(entity)
        current = self.state_of(entity)
        target = target_state(current, valid_identifier=shape.has_valid_identifier(entity))
        return self.apply(entity, target, current)

    def apply(
        self,
        entity: object,
        target: EntityState,
        current: EntityState | None = None,
    ) -> object:
        """Move ``entity`` to ``target`` and return the instance the session now holds."""

        self._log.info("Changing entity %r to state %s", entity, target)
        if target is EntityState.DETACHED:
            raise ProviderError(f"Unexpected target entity state: {target}", entity=entity)

        if current is None and target is not EntityState.ADDED:
            current = self.state_of(entity)

        if current is EntityState.DETACHED:
            tracked = self.tracked_instance(
                entity, update_values=target is not EntityState.DELETED
            )
            entity = tracked if tracked is not None else entity

        self._entry(entity).set_state(target)
        return entity

    def managed_or_detached(
        self,
        entity: object,
        shape: ShapeDescriptor | None = None,
        *,
        update_values: bool = True,
    ) -> object:
        """Return an instance of ``entity`` the session can place.

        An entity the session already holds is returned as is. For a detached
        entity the session's own instance with the same identity is preferred
        (its values are overwritten unless ``update_values`` is false); otherwise
        a plain copy of ``shape`` (default: the entity's own shape) is produced.
        """

        if self.state_of(entity) is not EntityState.DETACHED:
            return entity
        own_shape = self.shapes.for_entity(entity)
        found = self._find_same(entity, own_shape)
        if found is not None:
            if update_values and found is not entity:
                self.copier.copy_values(entity, found, own_shape)
            return found
        return self.copier.to_shape(entity, shape or own_shape)

    def has_entity(self, entity: object) -> bool:
        """Return whether the store knows a row with the identity of ``entity``."""

        return self._find_same(entity, self.shapes.for_entity(entity)) is not None

    def _find_same(self, entity: object, shape: ShapeDescriptor) -> object | None:
        if not shape.has_valid_identifier(entity):
            return None
        identifier = shape.identifier_of(entity)
        found = self.session.find(shape, identifier)
        if found is None or shape.identifier_of(found) != identifier:
            return None
        return found

    def tracked_instance(self, entity: object, *, update_values: bool) -> object | None:
        """Return the session's own instance sharing the identity of ``entity``."""

        shape = self.shapes.for_entity(entity)
        if not shape.has_valid_identifier(entity):
            return None
        identifier = shape.identifier_of(entity)
        for entry in self.session.all_entries():
            candidate = entry.entity
            if type(candidate) is not type(entity):
                continue
            if shape.identifier_of(candidate) != identifier:
                continue
            if update_values and candidate is not entity:
                self.copier.copy_values(entity, candidate, shape)
            return candidate
        return None

    def _entry(self, entity: object) -> EntityEntry:
        if entity is None:
            raise GateError("Invalid entity")
        return self.session.entry(entity)
