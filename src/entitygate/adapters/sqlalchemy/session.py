"""Mapping session over a SQLAlchemy ORM ``Session``."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlalchemy import event, inspect, select
from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import make_transient, make_transient_to_detached, raiseload
from sqlalchemy.orm.attributes import flag_modified, set_committed_value
from sqlalchemy.orm.exc import StaleDataError

from entitygate.domain.errors import ConcurrencyConflictError, ProviderError
from entitygate.domain.model import EntityState

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection
    from sqlalchemy.orm import InstanceState, Session, SessionTransaction

    from entitygate.domain.model import ShapeDescriptor, ShapeRegistry
    from entitygate.domain.token import SessionToken

log = logging.getLogger(__name__)


class SqlAlchemyEntityEntry:
    """Session-side view of one mapped instance."""

    def __init__(self, owner: SqlAlchemyMappingSession, entity: object) -> None:
        self._owner = owner
        self._entity = entity

    @property
    def entity(self) -> object:
        return self._entity

    @property
    def state(self) -> EntityState:
        return self._owner.state_of(self._entity)

    def set_state(self, state: EntityState) -> None:
        self._owner.transition(self._entity, state)

    def reload(self) -> None:
        try:
            self._owner.native.refresh(self._entity)
        except sa_exc.InvalidRequestError as exc:
            raise ProviderError("Unable to reload entity", entity=self._entity) from exc

    def original_values(self) -> dict[str, object]:
        instance = _instance_state(self._entity)
        values: dict[str, object] = {}
        for name in self._shape.fields:
            history = instance.attrs[name].history
            if history.deleted:
                values[name] = history.deleted[0]
            elif history.unchanged:
                values[name] = history.unchanged[0]
            elif history.added:
                values[name] = history.added[0]
        return values

    def current_values(self) -> dict[str, object]:
        loaded = _instance_state(self._entity).dict
        return {name: loaded[name] for name in self._shape.fields if name in loaded}

    def modified_fields(self) -> tuple[str, ...]:
        instance = _instance_state(self._entity)
        return tuple(
            name for name in self._shape.fields if instance.attrs[name].history.has_changes()
        )

    @property
    def _shape(self) -> ShapeDescriptor:
        return self._owner.shapes.for_entity(self._entity)


@dataclass(slots=True)
class _PendingIntent:
    """What a commit was about to write, so a failed commit can be re-applied."""

    added: list[tuple[object, dict[str, object]]] = field(default_factory=list)
    modified: list[tuple[object, dict[str, object]]] = field(default_factory=list)
    deleted: list[object] = field(default_factory=list)

    def size(self) -> int:
        return len(self.added) + len(self.modified) + len(self.deleted)


class SqlAlchemyMappingSession:
    """Unit of work bound to one connection, seen through entity states."""

    def __init__(self, session: Session, shapes: ShapeRegistry, *, token: SessionToken) -> None:
        self.native = session
        self.shapes = shapes
        self._token = token
        self._lazy_loading = True
        self._tracking = True
        event.listen(session, "after_begin", self._on_begin)

    @property
    def lazy_loading_enabled(self) -> bool:
        return self._lazy_loading

    @property
    def tracking_enabled(self) -> bool:
        return self._tracking

    def set_lazy_loading_enabled(self, enabled: bool) -> None:  # noqa: FBT001
        self._lazy_loading = enabled

    def set_no_tracking(self) -> None:
        self._tracking = False

    # Reads -----------------------------------------------------------------------

    def find(self, shape: ShapeDescriptor, identifier: object) -> object | None:
        return self.native.get(shape.entity_type, identifier, options=self._load_options())

    def query(self, shape: ShapeDescriptor) -> list[Any]:
        statement = select(shape.entity_type).options(*self._load_options())
        return list(self.native.scalars(statement).all())

    def _load_options(self) -> list[Any]:
        return [] if self._lazy_loading else [raiseload("*")]

    # Entries ---------------------------------------------------------------------

    def entry(self, entity: object) -> SqlAlchemyEntityEntry:
        _instance_state(entity)
        return SqlAlchemyEntityEntry(self, entity)

    def all_entries(self) -> list[SqlAlchemyEntityEntry]:
        entities = [*self.native.identity_map.values(), *self.native.new]
        return [SqlAlchemyEntityEntry(self, entity) for entity in entities]

    def state_of(self, entity: object) -> EntityState:
        instance = _instance_state(entity)
        session = self.native
        if instance.session is not session:
            return EntityState.DETACHED
        if instance.pending:
            return EntityState.ADDED
        if instance.deleted or entity in session.deleted:
            return EntityState.DELETED
        if session.is_modified(entity):
            return EntityState.MODIFIED
        return EntityState.UNCHANGED

    def transition(self, entity: object, target: EntityState) -> None:
        try:
            if target is EntityState.ADDED:
                self._to_added(entity)
            elif target is EntityState.MODIFIED:
                self._to_modified(entity)
            elif target is EntityState.UNCHANGED:
                self._to_unchanged(entity)
            elif target is EntityState.DELETED:
                self._to_deleted(entity)
            else:
                raise ProviderError(f"Unexpected target entity state: {target}", entity=entity)
        except sa_exc.InvalidRequestError as exc:
            raise ProviderError(
                f"Unable to change entity state to {target}", entity=entity
            ) from exc

    def _to_added(self, entity: object) -> None:
        instance = _instance_state(entity)
        if instance.session is self.native:
            if instance.pending:
                return
            self.native.expunge(entity)
        if instance.has_identity:
            make_transient(entity)
        self.native.add(entity)

    def _to_modified(self, entity: object) -> None:
        self._attach(entity)
        if self.native.is_modified(entity):
            return
        shape = self.shapes.for_entity(entity)
        loaded = _instance_state(entity).dict
        forced = [name for name in shape.fields if name in loaded and name not in shape.key_fields]
        for name in forced:
            flag_modified(entity, name)
        if not forced:
            log.debug("No loaded column to force as modified on %r", entity)

    def _to_unchanged(self, entity: object) -> None:
        self._attach(entity)
        loaded = _instance_state(entity).dict
        for name in SqlAlchemyEntityEntry(self, entity).modified_fields():
            if name in loaded:
                set_committed_value(entity, name, loaded[name])

    def _to_deleted(self, entity: object) -> None:
        instance = _instance_state(entity)
        if instance.session is self.native and instance.pending:
            self.native.expunge(entity)
            return
        self._attach(entity, keep_deleted=True)
        if entity not in self.native.deleted:
            self.native.delete(entity)

    def _attach(self, entity: object, *, keep_deleted: bool = False) -> None:
        """Make ``entity`` a persistent instance of this session."""

        instance = _instance_state(entity)
        session = self.native
        if instance.session is session:
            if instance.pending or (entity in session.deleted and not keep_deleted):
                session.expunge(entity)
            else:
                return
        if instance.transient:
            if not self.shapes.for_entity(entity).has_valid_identifier(entity):
                raise ProviderError("Unable to attach an entity without a valid key", entity=entity)
            make_transient_to_detached(entity)
        session.add(entity)

    # Writes ----------------------------------------------------------------------

    def has_pending_changes(self) -> bool:
        session = self.native
        if session.new or session.deleted:
            return True
        return any(session.is_modified(entity) for entity in session.dirty)

    def commit(self) -> int:
        """Flush and commit; on failure roll back and re-apply the pending intent."""

        intent = self._capture_intent()
        try:
            self.native.flush()
            self.native.commit()
        except StaleDataError as exc:
            self._restore_intent(intent)
            raise ConcurrencyConflictError(
                "Concurrent modification detected while saving"
            ) from exc
        except Exception:
            self._restore_intent(intent)
            raise
        return intent.size()

    def _capture_intent(self) -> _PendingIntent:
        session = self.native
        intent = _PendingIntent()
        for entity in session.new:
            intent.added.append((entity, self.shapes.for_entity(entity).key_values_of(entity)))
        for entity in session.dirty:
            if entity in session.deleted or not session.is_modified(entity):
                continue
            entry = SqlAlchemyEntityEntry(self, entity)
            loaded = _instance_state(entity).dict
            intent.modified.append(
                (entity, {name: loaded[name] for name in entry.modified_fields() if name in loaded})
            )
        intent.deleted.extend(session.deleted)
        return intent

    def _restore_intent(self, intent: _PendingIntent) -> None:
        session = self.native
        session.rollback()
        for entity, keys in intent.added:
            if _instance_state(entity).has_identity:
                make_transient(entity)
            for name, value in keys.items():
                setattr(entity, name, value)
            session.add(entity)
        for entity, values in intent.modified:
            for name, value in values.items():
                setattr(entity, name, value)
            if not values:
                self._to_modified(entity)
        for entity in intent.deleted:
            if _instance_state(entity).session is session:
                session.delete(entity)

    # Lifecycle -------------------------------------------------------------------

    def close(self) -> None:
        if event.contains(self.native, "after_begin", self._on_begin):
            event.remove(self.native, "after_begin", self._on_begin)
        self.native.close()

    def _on_begin(
        self, session: Session, transaction: SessionTransaction, connection: Connection
    ) -> None:
        _ = session, transaction
        if not event.contains(connection, "before_cursor_execute", self._capture_statement):
            event.listen(connection, "before_cursor_execute", self._capture_statement)

    def _capture_statement(
        self,
        conn: Connection,
        cursor: object,
        statement: str,
        parameters: object,
        context: object,
        executemany: bool,  # noqa: FBT001
    ) -> None:
        _ = conn, cursor, parameters, context, executemany
        self._token.last_statement = statement


def _instance_state(entity: object) -> InstanceState[Any]:
    if entity is None:
        raise ProviderError("Invalid entity")
    instance = inspect(entity, raiseerr=False)
    if instance is None:
        raise ProviderError(f"Unmapped entity type: {type(entity).__name__}", entity=entity)
    return instance
