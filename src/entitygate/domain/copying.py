"""Detached copies built from shape descriptors."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

    from entitygate.domain.model import ShapeDescriptor


class ShapeCopyProvider:
    """Copy entities field by field using their shape descriptor."""

    def detach(
        self,
        entity: object,
        shape: ShapeDescriptor,
        values: Mapping[str, object] | None = None,
    ) -> object:
        copy = shape.new_instance()
        shape.apply_values(copy, values if values is not None else self.values_of(entity, shape))
        return copy

    def to_shape(self, entity: object, shape: ShapeDescriptor) -> object:
        if type(entity) is shape.entity_type:
            return entity
        return self.detach(entity, shape)

    def copy_values(self, source: object, target: object, shape: ShapeDescriptor) -> None:
        shape.apply_values(target, self.values_of(source, shape))

    def values_of(self, entity: object, shape: ShapeDescriptor) -> dict[str, object]:
        return shape.values_of(entity)

    def collapse_empty_collections(self, entity: object, shape: ShapeDescriptor) -> None:
        for name in shape.collection_fields:
            value = getattr(entity, name, None)
            if value is not None and len(value) == 0:
                setattr(entity, name, None)
