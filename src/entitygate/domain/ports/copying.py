"""Port for producing connection-independent copies of entities."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping

    from entitygate.domain.model import ShapeDescriptor


@runtime_checkable
class DetachedCopyProvider(Protocol):
    def detach(
        self,
        entity: object,
        shape: ShapeDescriptor,
        values: Mapping[str, object] | None = None,
    ) -> object:
        """Return a new plain instance of ``shape`` carrying ``values`` (or the entity's)."""
        ...

    def to_shape(self, entity: object, shape: ShapeDescriptor) -> object:
        """Return ``entity`` when it already is a plain ``shape`` instance, else a copy."""
        ...

    def copy_values(self, source: object, target: object, shape: ShapeDescriptor) -> None: ...

    def collapse_empty_collections(self, entity: object, shape: ShapeDescriptor) -> None: ...
