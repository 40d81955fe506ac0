"""SQLAlchemy binding of the entity gate ports."""

from __future__ import annotations

from .copying import SqlAlchemyDetachedCopyProvider
from .engine import SqlAlchemyMappingEngine
from .errors import is_malformed_query
from .session import SqlAlchemyEntityEntry, SqlAlchemyMappingSession
from .shapes import describe_mapper

__all__ = [
    "SqlAlchemyDetachedCopyProvider",
    "SqlAlchemyEntityEntry",
    "SqlAlchemyMappingEngine",
    "SqlAlchemyMappingSession",
    "describe_mapper",
    "is_malformed_query",
]
