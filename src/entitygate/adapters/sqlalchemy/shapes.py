"""Shape descriptors derived from SQLAlchemy mappers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from entitygate.domain.errors import ReflectionError
from entitygate.domain.model import Capabilities, ShapeDescriptor

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.orm import Mapper


def describe_mapper(mapper: Mapper[Any], *, name: str | None = None) -> ShapeDescriptor:
    """Describe the mapped class of ``mapper``: key columns, columns and relationships."""

    entity_type = mapper.class_
    key_fields = tuple(
        mapper.get_property_by_column(column).key for column in mapper.primary_key
    )
    if not key_fields:
        raise ReflectionError(f"Mapped class {entity_type.__name__} has no primary key")
    return ShapeDescriptor(
        name=name or entity_type.__name__,
        entity_type=entity_type,
        key_fields=key_fields,
        fields=tuple(prop.key for prop in mapper.column_attrs),
        collection_fields=tuple(rel.key for rel in mapper.relationships if rel.uselist),
        reference_fields=tuple(rel.key for rel in mapper.relationships if not rel.uselist),
        capabilities=Capabilities.detect(entity_type),
        factory=_factory(mapper),
    )


def _factory(mapper: Mapper[Any]) -> Callable[[], Any]:
    # Mapped classes with a required-argument constructor are built without
    # running ``__init__``.
    def build() -> Any:
        try:
            return mapper.class_()
        except TypeError:
            return mapper.class_manager.new_instance()

    return build
