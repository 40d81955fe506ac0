"""Persistence states and identifier validity."""

from __future__ import annotations

from enum import StrEnum
from numbers import Real


class EntityState(StrEnum):
    """Persistence intent of an entity within a session.

    ``DETACHED`` only describes an entity the session does not know; it is never
    a state that can be committed or tracked.
    """

    DETACHED = "detached"
    UNCHANGED = "unchanged"
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


TRACKABLE_STATES = frozenset(
    {EntityState.UNCHANGED, EntityState.ADDED, EntityState.MODIFIED, EntityState.DELETED}
)


def is_valid_identifier(identifier: object) -> bool:
    """Return whether ``identifier`` designates a persisted row.

    ``None`` is invalid and numeric values must be strictly positive. Composite
    identifiers (tuples) are valid only when every component is.
    """

    if identifier is None:
        return False
    if isinstance(identifier, tuple):
        return bool(identifier) and all(is_valid_identifier(part) for part in identifier)
    if isinstance(identifier, bool):
        return identifier
    if isinstance(identifier, Real):
        return identifier > 0
    return True
