"""The entity gate: retrying persistence operations around one current entity.

A gate owns at most one :class:`~entitygate.domain.provider.GateProvider` (and
through it one live mapping session). Every public operation follows the same
cycle: reset the session token, make sure a provider is ready, run the
operation through the retry loop, then release the per-operation caches.

A gate can be suspended into a :class:`PortableState` and rebuilt elsewhere
with :meth:`EntityGate.resume`; the change intent recorded before suspension
is replayed into the new session.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeAlias, TypeVar

import tenacity

from entitygate.config.errors import ConfigurationError
from entitygate.domain.errors import CanceledError, ConcurrencyConflictError, GateError
from entitygate.domain.model import EntityState, is_valid_identifier
from entitygate.domain.ports import ChangeNotification
from entitygate.domain.provider import GateProvider
from entitygate.domain.token import SessionToken
from entitygate.domain.tracking import TrackingSet

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from entitygate.config import ConfigurationRegistry, GateSettings
    from entitygate.domain.model import ShapeDescriptor
    from entitygate.domain.ports import (
        DetachedCopyProvider,
        MappingEngine,
        MappingSession,
        NotificationSubscriber,
    )

log = logging.getLogger(__name__)

FieldValues: TypeAlias = tuple[tuple[str, object], ...]
T = TypeVar("T")


@dataclass(slots=True)
class PortableState:
    """Connection-independent state of a suspended gate."""

    shape_name: str
    connection_name: str
    tracking: TrackingSet
    token: SessionToken
    original_values: FieldValues | None = None
    primary_keys: dict[str, object] = field(default_factory=dict)


class EntityGate:
    """Manage one entity (and the entities attached to it) through a mapping engine."""

    def __init__(  # noqa: PLR0913
        self,
        engine: MappingEngine,
        settings: GateSettings | None = None,
        *,
        registry: ConfigurationRegistry | None = None,
        connection_name: str | None = None,
        shape: type | str | None = None,
        entity: object | None = None,
        copier: DetachedCopyProvider | None = None,
        subscriber: NotificationSubscriber | None = None,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._engine = engine
        self._registry = registry
        self._settings = self._resolve_settings(settings, connection_name)
        self._fixed_shape = engine.shapes.get(shape).entity_type if isinstance(shape, str) else shape
        self._copier = copier or engine.copier
        self._subscriber = subscriber
        self._log = logger or log
        self._sleep = sleep

        self.token = SessionToken()
        self._tracking = TrackingSet()
        self._provider: GateProvider | None = None
        self._entity: Any = None
        self._original_values: FieldValues | None = None
        self._primary_keys: dict[str, object] | None = None
        self._disposed = False

        if entity is not None:
            self.set_entity(entity)

    # Configuration ---------------------------------------------------------------

    @property
    def settings(self) -> GateSettings:
        return self._settings

    @settings.setter
    def settings(self, value: GateSettings) -> None:
        if value == self._settings:
            return
        self._settings = value
        provider = self._provider
        if provider is None or self._disposed:
            return
        if self._entity is not None and self.token.tracked:
            self._append_entity(provider, self._entity)
            provider.capture_change_set(self._entity)
        provider.initialize(value)
        if provider.tracking.has_entries():
            self._entity = provider.main_entity()
            provider.clean_tracking()

    @property
    def connection_name(self) -> str:
        return self._settings.connection_name

    def change_connection(self, connection_name: str) -> None:
        if self._registry is None:
            raise ConfigurationError(
                f"Unable to change connection to {connection_name}: no configuration registry"
            )
        self.settings = self._registry.get(connection_name)

    def _resolve_settings(
        self, settings: GateSettings | None, connection_name: str | None
    ) -> GateSettings:
        if settings is not None:
            return settings
        if self._registry is None:
            raise ConfigurationError("No settings and no configuration registry supplied")
        if connection_name:
            return self._registry.get(connection_name)
        return self._registry.first()

    # Entity ----------------------------------------------------------------------

    @property
    def entity(self) -> Any:
        """Return the current entity, creating a new one when there is none."""

        if self._entity is None:
            provider = self._execution_start()
            self._make_entity(provider)
        return self._entity

    @entity.setter
    def entity(self, value: object) -> None:
        self.set_entity(value)

    def set_entity(self, entity: object) -> None:
        """Adopt ``entity`` as the current entity.

        A gate bound to a shape only accepts instances of that shape.
        """

        if entity is None or (
            self._fixed_shape is not None and not isinstance(entity, self._fixed_shape)
        ):
            raise GateError(
                f"Unable to handle entity type: {type(entity).__name__}", entity=entity
            )
        provider = self._execution_start()
        self._append_entity(provider, entity)

    def has_entity(self) -> bool:
        return self._entity is not None

    def is_new_entity(self) -> bool:
        if self._entity is None:
            return True
        return not self._shape_of(self._entity).has_valid_identifier(self._entity)

    def new_entity(self) -> Any:
        self.token.save_allowed = True
        provider = self._execution_start()
        try:
            self._make_entity(provider)
        except Exception:
            self._log.exception("Failed to execute command NewEntity on %s", self.table_name())
            raise
        finally:
            self._execution_end()
        return self._entity

    # Operations ------------------------------------------------------------------

    def load(self, identifier: object = None) -> bool:
        """Load the entity with ``identifier`` (or the current entity's own).

        Returns ``False`` when no row matches; that is not an error.
        """

        self.token.save_allowed = False
        provider = self._execution_start()
        try:
            identifier = self._identifier_for_load(identifier)
            self._log.info("Loading %s (%r)", self.table_name(), identifier)
            found = self._execute("Load", lambda: provider.find(identifier))
            if found is None:
                self._log.warning(
                    "No %s found for identifier %r", provider.shape.name, identifier
                )
                return False
            self._append_entity(provider, found)
            return True
        except Exception:
            self._log.error("Failed to execute command Load on %s", self.table_name())
            raise
        finally:
            self._execution_end()

    def list(self) -> list[Any]:
        """Return every entity of the current shape. Meant for small tables."""

        self.token.save_allowed = False
        provider = self._execution_start()
        try:
            self._log.info("Listing %s", self.table_name())
            return self._execute("List", lambda: list(provider.list()))
        except Exception:
            self._log.error("Failed to execute command List on %s", self.table_name())
            raise
        finally:
            self._execution_end()

    def save(self) -> bool:
        """Write the pending changes of the current entity and its attached entities."""

        self.token.save_allowed = True
        provider = self._execution_start()
        try:
            self._log_save(provider)
            self._execute(
                "Save",
                lambda: self._save_attempt(provider),
                on_failure=lambda exc: self._on_save_failure(provider, exc),
            )
            self._notify(provider)
        except Exception:
            self._log.error("Failed to execute command Save on %s", self.table_name())
            raise
        finally:
            self._execution_end()
        return self.token.row_count > 0

    def delete(self) -> bool:
        self.delete_entity(self._entity)
        return self.save()

    def delete_entity(self, entity: object) -> Any:
        """Mark ``entity`` for deletion without saving; return the instance marked."""

        if entity is None:
            raise GateError("Invalid entity")
        provider = self._execution_start()
        if self._fixed_shape is None and not provider.has_shape():
            self.set_entity(entity)
            entity = self._entity
        return self._mark_as(provider, entity, EntityState.DELETED)

    def apply(self, entity: object) -> Any:
        """Record ``entity`` as added or modified depending on its key.

        When the gate has no shape yet the entity becomes the current entity.
        """

        if entity is None:
            raise GateError("Invalid entity")
        provider = self._execution_start()
        if self._fixed_shape is None and not provider.has_shape():
            self.set_entity(entity)
            return self._entity
        target = (
            EntityState.MODIFIED
            if self._shape_of(entity).has_valid_identifier(entity)
            else EntityState.ADDED
        )
        return self._mark_as(provider, entity, target)

    # Accessors -------------------------------------------------------------------

    def original_values(self, *, all_fields: bool = False) -> FieldValues:
        """Return the stored values of the current entity; empty for a new entity."""

        if self._original_values is not None:
            return self._original_values
        if self._provider is None or self._entity is None:
            return ()
        values: FieldValues = (
            ()
            if self.is_new_entity()
            else self._provider.original_values(self._entity, all_fields=all_fields)
        )
        if self.token.save_original_values:
            self._original_values = values
        return values

    def field_value(self, field_name: str) -> object:
        if self._entity is None:
            return None
        shape = self._shape_of(self._entity)
        if field_name not in shape.fields and field_name not in shape.collection_fields:
            return None
        return getattr(self._entity, field_name, None)

    def table_name(self) -> str:
        if self._provider is not None and self._provider.has_shape():
            return self._provider.shape.name
        if self._entity is not None:
            return type(self._entity).__name__
        if self._fixed_shape is not None:
            return self._fixed_shape.__name__
        return "<unknown>"

    def friendly_name(self) -> str:
        if self._entity is None:
            return f"Virtual entity of {self.table_name()}"
        return self._shape_of(self._entity).friendly_name(self._entity)

    def primary_keys(self) -> dict[str, object]:
        if self._primary_keys is None and self._entity is not None:
            self._primary_keys = self._shape_of(self._entity).key_values_of(self._entity)
        return dict(self._primary_keys or {})

    def primary_key(self) -> tuple[str, object] | None:
        if self._entity is None:
            return None
        for item in self.primary_keys().items():
            return item
        self._log.warning("No key found for %r (%s)", self._entity, type(self._entity).__name__)
        return None

    def session(self) -> MappingSession:
        """Hand out the live session; the gate stops tracking it."""

        provider = self._execution_start()
        provider.set_lazy_loading(False)
        self.no_tracking()
        return provider.session

    def no_tracking(self) -> None:
        self.token.tracked = False
        if self._provider is not None:
            self._provider.no_tracking()
        self._original_values = None

    # Lifecycle -------------------------------------------------------------------

    def dispose(self) -> None:
        if self._disposed:
            return
        if self._provider is not None:
            self._provider.dispose()
            self._provider = None
        self._original_values = None
        self._primary_keys = None
        self._disposed = True

    def __enter__(self) -> EntityGate:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.dispose()

    def suspend(self) -> PortableState:
        """Capture the change intent so the gate can be rebuilt on another session."""

        provider = self._check_provider()
        if self._entity is not None and not provider.has_entity(self._entity):
            self._append_entity(provider, self._entity)
        if self._entity is not None:
            provider.capture_change_set(self._entity)
            self._check_auto_save_original_values()

        tracking = TrackingSet()
        for record in provider.tracking:
            tracking.mark(record.entity, record.state, is_primary=record.is_primary)
        return PortableState(
            shape_name=provider.shape.name,
            connection_name=self.connection_name,
            tracking=tracking,
            token=self.token.copy(),
            original_values=self._original_values,
            primary_keys=self.primary_keys(),
        )

    @classmethod
    def resume(
        cls,
        state: PortableState,
        engine: MappingEngine,
        *,
        settings: GateSettings | None = None,
        registry: ConfigurationRegistry | None = None,
        copier: DetachedCopyProvider | None = None,
        subscriber: NotificationSubscriber | None = None,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> EntityGate:
        """Rebuild a gate from ``state``, replaying its tracked intent into a new session."""

        gate = cls(
            engine,
            settings,
            registry=registry,
            connection_name=state.connection_name,
            copier=copier,
            subscriber=subscriber,
            logger=logger,
            sleep=sleep,
        )
        gate.token = state.token.copy()
        gate._original_values = state.original_values
        gate._primary_keys = dict(state.primary_keys)
        for record in state.tracking:
            gate._tracking.mark(record.entity, record.state, is_primary=record.is_primary)

        shape = engine.shapes.get(state.shape_name)
        main = gate._tracking.main_entity().entity if gate._tracking.has_entries() else None
        provider = gate._check_provider()
        provider.set_shape(shape.entity_type)
        if main is not None:
            gate._entity = provider.manage(main)
            gate._primary_keys = shape.key_values_of(gate._entity)
        provider.clean_tracking()
        return gate

    # Internals -------------------------------------------------------------------

    def _check_provider(self) -> GateProvider:
        if self._disposed:
            raise CanceledError("The gate has been disposed")

        provider = self._provider
        if provider is not None:
            provider.initialize(self._settings)
            return provider

        provider = GateProvider(
            self._engine,
            self.token,
            copier=self._copier,
            tracking=self._tracking,
            logger=self._log,
        )
        if self._fixed_shape is not None:
            provider.set_shape(self._fixed_shape)
        elif self._entity is not None:
            provider.set_shape(type(self._entity))
        provider.initialize(self._settings)
        self._provider = provider

        saved = self._entity
        self._entity = None
        if saved is not None:
            self._append_entity(provider, saved)
        return provider

    def _execution_start(self) -> GateProvider:
        self.token.reset()
        return self._check_provider()

    def _execution_end(self) -> None:
        if self._provider is not None:
            self._provider.clean_tracking()
        self._original_values = None

    def _execute(
        self,
        name: str,
        attempt: Callable[[], T],
        *,
        on_failure: Callable[[Exception], None] | None = None,
    ) -> T:
        """Run ``attempt`` until it succeeds, the budget runs out or the query is malformed."""

        settings = self._settings
        retryer = tenacity.Retrying(
            retry=tenacity.retry_if_exception(self._is_retryable),
            wait=tenacity.wait_fixed(settings.attempt_delay_seconds),
            stop=tenacity.stop_after_attempt(settings.max_attempts),
            sleep=self._sleep,
            before=self._count_attempt,
            before_sleep=lambda retry_state: self._before_retry(name, retry_state, on_failure),
            reraise=True,
        )
        try:
            return retryer(attempt)
        except ConcurrencyConflictError as exc:
            raise self._canceled(name, exc) from exc
        except GateError:
            raise
        except Exception as exc:
            raise self._canceled(name, exc) from exc

    def _is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, ConcurrencyConflictError):
            return True
        if isinstance(exc, GateError) or not isinstance(exc, Exception):
            return False
        return not self._engine.is_malformed_query(exc)

    def _count_attempt(self, retry_state: tenacity.RetryCallState) -> None:
        self.token.attempt_count = retry_state.attempt_number

    def _before_retry(
        self,
        name: str,
        retry_state: tenacity.RetryCallState,
        on_failure: Callable[[Exception], None] | None,
    ) -> None:
        settings = self._settings
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        self._log.warning(
            "Command %s failed on attempt %d of %d: %s",
            name,
            retry_state.attempt_number,
            settings.max_attempts,
            exc,
        )
        if on_failure is not None and isinstance(exc, Exception):
            on_failure(exc)
        self._log.warning(
            "New attempt %d of %d for %s (timeout %ss)",
            retry_state.attempt_number + 1,
            settings.max_attempts,
            name,
            settings.timeout_seconds,
        )
        self._log.warning("Last statement: %s", self.token.last_statement)

    def _canceled(self, name: str, exc: Exception) -> CanceledError:
        self._log.warning("Statement of failed command %s: %s", name, self.token.last_statement)
        self._log.error("Command %s failed: %s", name, exc)
        return CanceledError(
            f"Unable to execute command {name} after {self.token.attempt_count} attempt(s)",
            entity=self._entity,
        )

    def _save_attempt(self, provider: GateProvider) -> None:
        self._append_entity(provider, self._entity)
        if not provider.has_changes():
            self._log.info("Nothing to save for %s", self.friendly_name())
            return

        old_state = provider.entity_state(self._entity)
        rows = provider.save_changes(self._entity)
        if old_state is EntityState.ADDED:
            self._primary_keys = self._shape_of(self._entity).key_values_of(self._entity)
        elif old_state is EntityState.DELETED and rows < 1:
            rows = 1
        self.token.row_count = rows

    def _on_save_failure(self, provider: GateProvider, exc: Exception) -> None:
        if isinstance(exc, ConcurrencyConflictError):
            self._log.warning("Concurrency conflict on %s, reloading it", self.friendly_name())
            provider.refresh(self._entity)

    def _notify(self, provider: GateProvider) -> None:
        if not (
            self._settings.notifications_enabled
            and self.token.save_allowed
            and self.token.row_count > 0
            and self._subscriber is not None
        ):
            return
        for shape, entity, state in provider.changed_entries():
            try:
                self._subscriber.publish(ChangeNotification(shape.name, entity, state))
            except Exception:
                self._log.exception("Failed to publish change of %s (%s)", shape.name, state)

    def _mark_as(self, provider: GateProvider, entity: object, target: EntityState) -> Any:
        try:
            entity = provider.managed_or_detached(
                entity,
                current_shape=False,
                update_values=target is not EntityState.DELETED,
            )
            return provider.mark(entity, target)
        except Exception as exc:
            raise GateError(
                f"Failed to execute command Mark as {target}", entity=entity
            ) from exc

    def _make_entity(self, provider: GateProvider) -> None:
        self._affect_entity(provider, provider.shape.new_instance())

    def _append_entity(self, provider: GateProvider, entity: object) -> None:
        if entity is None:
            raise GateError("Invalid entity")
        if entity is not self._entity:
            self._affect_entity(provider, entity)
        self._entity = provider.manage(self._entity)

    def _affect_entity(self, provider: GateProvider, entity: object) -> None:
        provider.set_shape(type(entity))
        previous = self._entity
        self._entity = provider.managed_or_detached(entity)
        self._primary_keys = provider.shape.key_values_of(self._entity)
        if previous is not None:
            self._original_values = None

    def _identifier_for_load(self, identifier: object) -> object:
        if identifier is None:
            if self._entity is None:
                raise GateError(f"No identifier to load {self.table_name()}")
            identifier = self._shape_of(self._entity).identifier_of(self._entity)
        if not is_valid_identifier(identifier):
            raise GateError(f"Invalid identifier for {self.table_name()}: {identifier!r}")
        return identifier

    def _check_auto_save_original_values(self) -> None:
        if not self.token.tracked:
            return
        if self._settings.auto_check_original_values:
            previous = self.token.save_original_values
            archival = self._shape_of(self._entity).capabilities.archival
            self.token.save_original_values = archival
            if previous and not archival:
                self._original_values = None
        if self.token.save_original_values and self._original_values is None:
            self._original_values = self.original_values()

    def _shape_of(self, entity: object) -> ShapeDescriptor:
        return self._engine.shapes.for_entity(entity)

    def _log_save(self, provider: GateProvider) -> None:
        if self._entity is None:
            return
        state = provider.entity_state(self._entity)
        if state is EntityState.DELETED:
            self._log.info("Deleting %s (%s)", self.table_name(), self.friendly_name())
        else:
            self._log.info(
                "Saving %s (%s) in state %s", self.table_name(), self.friendly_name(), state
            )
