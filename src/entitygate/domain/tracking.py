"""Portable record of persistence intent.

The tracking set holds plain entity instances and their intended state. It is
independent of any live session so it can cross a suspend/resume boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from entitygate.domain.errors import GateError
from entitygate.domain.model import TRACKABLE_STATES, EntityState

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator


@dataclass(slots=True)
class TrackedEntity:
    """One entity and the state it must be restored to.

    ``entity`` and ``is_primary`` are fixed for the life of the record; only
    ``state`` is overwritten when the same entity is marked again.
    """

    entity: object
    state: EntityState
    is_primary: bool = False


class TrackingSet:
    """Ordered records, at most one per entity identity."""

    def __init__(self) -> None:
        self._entries: list[TrackedEntity] = []

    def mark(self, entity: object, state: EntityState, *, is_primary: bool = False) -> TrackedEntity:
        if state not in TRACKABLE_STATES:
            raise GateError(
                f"Invalid entity state for tracking: {state} ({entity!r})",
                entity=entity,
            )
        existing = self.find(entity)
        if existing is not None:
            existing.state = state
            return existing
        record = TrackedEntity(entity=entity, state=state, is_primary=is_primary)
        self._entries.append(record)
        return record

    def find(self, entity: object) -> TrackedEntity | None:
        for record in self._entries:
            if record.entity is entity:
                return record
        return None

    def main_entity(self) -> TrackedEntity:
        primaries = [record for record in self._entries if record.is_primary]
        if len(primaries) != 1:
            raise GateError(
                f"Expected exactly one primary tracked entity, found {len(primaries)}"
            )
        return primaries[0]

    def changed_entries(self) -> list[TrackedEntity]:
        return [
            record
            for record in self._entries
            if record.state not in {EntityState.UNCHANGED, EntityState.DETACHED}
        ]

    def collapse_empty_collections(self, collapse: Callable[[object], None]) -> None:
        # Provisional: keeps an emptied collection from being mistaken for a
        # loaded-and-cleared one after the round trip. Revisit with real cases.
        for record in self._entries:
            collapse(record.entity)

    def clear(self) -> None:
        self._entries = []

    def has_entries(self) -> bool:
        return bool(self._entries)

    def entries(self) -> tuple[TrackedEntity, ...]:
        return tuple(self._entries)

    def __iter__(self) -> Iterator[TrackedEntity]:
        return iter(tuple(self._entries))

    def __len__(self) -> int:
        return len(self._entries)
