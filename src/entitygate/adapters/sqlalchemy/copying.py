"""Detached copies of mapped instances."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import inspect

from entitygate.domain.copying import ShapeCopyProvider

if TYPE_CHECKING:
    from entitygate.domain.model import ShapeDescriptor


class SqlAlchemyDetachedCopyProvider(ShapeCopyProvider):
    """Copy the loaded column values of mapped instances.

    Related objects are not copied: a copy reachable from another copy would be
    cascaded into the session as a new row. Related entities that carry change
    intent are tracked as entries of their own.
    """

    def values_of(self, entity: object, shape: ShapeDescriptor) -> dict[str, object]:
        state = inspect(entity, raiseerr=False)
        if state is None:
            return super().values_of(entity, shape)
        loaded = state.dict
        return {name: loaded[name] for name in shape.fields if name in loaded}

    def copy_values(self, source: object, target: object, shape: ShapeDescriptor) -> None:
        values = self.values_of(source, shape)
        for key in shape.key_fields:
            values.pop(key, None)
        shape.apply_values(target, values)

    def collapse_empty_collections(self, entity: object, shape: ShapeDescriptor) -> None:
        state = inspect(entity, raiseerr=False)
        if state is None:
            super().collapse_empty_collections(entity, shape)
            return
        if state.session_id is not None:
            return
        for name in shape.collection_fields:
            value = state.dict.get(name)
            if value is not None and len(value) == 0:
                del state.dict[name]
