"""Persistence-agnostic model of entity shapes and persistence states."""

from __future__ import annotations

from .shapes import (
    NEW_KEY_VALUE,
    Archival,
    Capabilities,
    Nameable,
    RecognizableCode,
    ShapeDescriptor,
    ShapeRegistry,
    SingleValued,
    describe_dataclass,
)
from .state import TRACKABLE_STATES, EntityState, is_valid_identifier

__all__ = [
    "NEW_KEY_VALUE",
    "TRACKABLE_STATES",
    "Archival",
    "Capabilities",
    "EntityState",
    "Nameable",
    "RecognizableCode",
    "ShapeDescriptor",
    "ShapeRegistry",
    "SingleValued",
    "describe_dataclass",
    "is_valid_identifier",
]
