"""Error taxonomy for the persistence gate.

Every error raised by the gate carries an :class:`ErrorKind` tag and, when
known, the entity the failing operation was working on. Subclasses exist so
callers can keep using ``except`` clauses; the tag is what diagnostics and
the CLI report.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    GENERAL = "general"
    CONFIGURATION = "configuration"
    REFLECTION = "reflection"
    PROVIDER = "provider"
    CANCELED = "canceled"


class GateError(RuntimeError):
    """Base error raised by the gate."""

    default_kind: ErrorKind = ErrorKind.GENERAL

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        entity: object | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.entity = entity

    def __str__(self) -> str:
        if self.entity is None:
            return self.message
        return f"{self.message} [entity={self.entity!r}]"


class ReflectionError(GateError):
    """Raised when a shape cannot be described, instantiated or introspected."""

    default_kind = ErrorKind.REFLECTION


class ProviderError(GateError):
    """Raised when the mapping session is inconsistent with the request."""

    default_kind = ErrorKind.PROVIDER


class CanceledError(GateError):
    """Raised when an operation is aborted (attempts exhausted, malformed query, disposed)."""

    default_kind = ErrorKind.CANCELED


class ConcurrencyConflictError(GateError):
    """Raised by a mapping session when a commit hits a concurrent modification."""

    default_kind = ErrorKind.PROVIDER
