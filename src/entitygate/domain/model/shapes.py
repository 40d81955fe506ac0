"""Shape descriptors: the explicit structural description of an entity type.

A shape is registered once; its key fields, plain fields, collections and
optional capabilities are resolved at registration so the gate never has to
inspect instances at runtime.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, get_origin, runtime_checkable

from entitygate.domain.errors import ReflectionError
from entitygate.domain.model.state import is_valid_identifier

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator, Mapping

log = logging.getLogger(__name__)

NEW_KEY_VALUE = "NewKey"


@runtime_checkable
class Nameable(Protocol):
    """Entity exposing a human readable name."""

    name: str | None


@runtime_checkable
class Archival(Protocol):
    """Entity whose original values must be kept for history purposes."""

    def history_link_type(self, sub_type_name: str) -> type | None: ...


@runtime_checkable
class SingleValued(Protocol):
    """Entity whose content is summarised by a single value."""

    single_value: str | None


@runtime_checkable
class RecognizableCode(Protocol):
    """Entity carrying a recognizable code name."""

    code_name: str | None


@dataclass(frozen=True, slots=True)
class Capabilities:
    nameable: bool = False
    archival: bool = False
    single_value: bool = False
    recognizable_code: bool = False

    @classmethod
    def detect(cls, entity_type: type) -> Capabilities:
        return cls(
            nameable=_declares(entity_type, "name"),
            archival=callable(getattr(entity_type, "history_link_type", None)),
            single_value=_declares(entity_type, "single_value"),
            recognizable_code=_declares(entity_type, "code_name"),
        )


def _declares(entity_type: type, attribute: str) -> bool:
    for klass in entity_type.__mro__:
        if attribute in vars(klass):
            return True
        if attribute in getattr(klass, "__annotations__", {}):
            return True
    return False


@dataclass(frozen=True, slots=True)
class ShapeDescriptor:
    """Structural description of one entity type."""

    name: str
    entity_type: type
    key_fields: tuple[str, ...]
    fields: tuple[str, ...]
    collection_fields: tuple[str, ...] = ()
    reference_fields: tuple[str, ...] = ()
    capabilities: Capabilities = field(default_factory=Capabilities)
    factory: Callable[[], Any] | None = None

    def __post_init__(self) -> None:
        if not self.key_fields:
            raise ReflectionError(f"Shape {self.name} declares no key field")
        missing = [key for key in self.key_fields if key not in self.fields]
        if missing:
            raise ReflectionError(
                f"Shape {self.name} key fields are not declared fields: {', '.join(missing)}"
            )

    def new_instance(self) -> Any:
        constructor = self.factory or self.entity_type
        try:
            return constructor()
        except Exception as exc:
            raise ReflectionError(f"Unable to instantiate shape {self.name}") from exc

    def identifier_of(self, entity: object) -> object:
        if len(self.key_fields) == 1:
            return getattr(entity, self.key_fields[0], None)
        return tuple(getattr(entity, key, None) for key in self.key_fields)

    def key_values_of(self, entity: object) -> dict[str, object]:
        return {key: getattr(entity, key, None) for key in self.key_fields}

    def has_valid_identifier(self, entity: object) -> bool:
        return is_valid_identifier(self.identifier_of(entity))

    def values_of(self, entity: object) -> dict[str, object]:
        return {name: getattr(entity, name, None) for name in self.fields}

    def apply_values(self, entity: object, values: Mapping[str, object]) -> None:
        for name, value in values.items():
            if name in self.fields:
                setattr(entity, name, value)

    def friendly_name(self, entity: object) -> str:
        if self.capabilities.nameable:
            name = getattr(entity, "name", None)
            if name:
                return str(name)
        if self.has_valid_identifier(entity):
            return ", ".join(f"{key}={value}" for key, value in self.key_values_of(entity).items())
        return ", ".join(f"{key}={NEW_KEY_VALUE}" for key in self.key_fields)

    def is_instance(self, entity: object) -> bool:
        return isinstance(entity, self.entity_type)


def describe_dataclass(
    entity_type: type,
    *,
    key_fields: Iterable[str] = ("id",),
    name: str | None = None,
    factory: Callable[[], Any] | None = None,
) -> ShapeDescriptor:
    """Build a descriptor for a plain dataclass shape."""

    if not dataclasses.is_dataclass(entity_type):
        raise ReflectionError(f"{entity_type.__name__} is not a dataclass")
    fields: list[str] = []
    collections: list[str] = []
    for item in dataclasses.fields(entity_type):
        if _is_collection_annotation(item.type):
            collections.append(item.name)
        else:
            fields.append(item.name)
    return ShapeDescriptor(
        name=name or entity_type.__name__,
        entity_type=entity_type,
        key_fields=tuple(key_fields),
        fields=tuple(fields),
        collection_fields=tuple(collections),
        capabilities=Capabilities.detect(entity_type),
        factory=factory,
    )


_COLLECTION_TYPES = (list, set, frozenset)
_COLLECTION_NAMES = frozenset({"list", "set", "frozenset", "List", "Set"})


def _is_collection_annotation(annotation: object) -> bool:
    if isinstance(annotation, str):
        head = annotation.split("[", 1)[0].split("|", 1)[0].strip()
        return head in _COLLECTION_NAMES
    return annotation in _COLLECTION_TYPES or get_origin(annotation) in _COLLECTION_TYPES


class ShapeRegistry:
    """Explicit mapping from shape names and types to descriptors."""

    def __init__(self, descriptors: Iterable[ShapeDescriptor] = ()) -> None:
        self._by_name: dict[str, ShapeDescriptor] = {}
        self._by_type: dict[type, ShapeDescriptor] = {}
        for descriptor in descriptors:
            self.register(descriptor)

    def register(self, descriptor: ShapeDescriptor) -> ShapeDescriptor:
        existing = self._by_name.get(descriptor.name)
        if existing is not None and existing.entity_type is not descriptor.entity_type:
            raise ReflectionError(
                f"Shape name {descriptor.name} is already bound to "
                f"{existing.entity_type.__name__}"
            )
        self._by_name[descriptor.name] = descriptor
        self._by_type[descriptor.entity_type] = descriptor
        log.debug("Registered shape %s (%s)", descriptor.name, descriptor.capabilities)
        return descriptor

    def get(self, name: str) -> ShapeDescriptor:
        try:
            return self._by_name[name]
        except KeyError:
            raise ReflectionError(f"Unknown shape: {name}") from None

    def for_type(self, entity_type: type) -> ShapeDescriptor:
        for klass in entity_type.__mro__:
            descriptor = self._by_type.get(klass)
            if descriptor is not None:
                return descriptor
        raise ReflectionError(f"Unable to handle entity type: {entity_type.__name__}")

    def for_entity(self, entity: object) -> ShapeDescriptor:
        if entity is None:
            raise ReflectionError("Unable to handle a missing entity")
        return self.for_type(type(entity))

    def knows(self, entity_type: type) -> bool:
        return any(klass in self._by_type for klass in entity_type.__mro__)

    def names(self) -> tuple[str, ...]:
        return tuple(self._by_name)

    def __iter__(self) -> Iterator[ShapeDescriptor]:
        return iter(self._by_name.values())

    def __len__(self) -> int:
        return len(self._by_name)
