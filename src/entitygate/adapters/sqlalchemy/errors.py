"""Classification of SQLAlchemy errors that no retry can fix."""

from __future__ import annotations

from typing import Final

from sqlalchemy import exc as sa_exc

# SQLSTATE classes: data exception, integrity constraint violation,
# syntax error or access rule violation.
MALFORMED_SQLSTATE_CLASSES: Final = frozenset({"22", "23", "42"})

# SQL Server error numbers for syntax errors, invalid objects or columns,
# conversion failures, constraint conflicts and truncation.
MALFORMED_SQLSERVER_ERRORS: Final = frozenset(
    {102, 107, 170, 207, 208, 242, 547, 2705, 2812, 3621, 8152}
)

_MALFORMED_TYPES: Final = (
    sa_exc.ProgrammingError,
    sa_exc.DataError,
    sa_exc.IntegrityError,
    sa_exc.CompileError,
    sa_exc.NoSuchColumnError,
)

_MALFORMED_MESSAGES: Final = (
    "no such table",
    "no such column",
    "has no column named",
    "syntax error",
)


def is_malformed_query(error: BaseException) -> bool:
    """Return whether ``error`` comes from the statement itself rather than the environment."""

    if isinstance(error, _MALFORMED_TYPES):
        return True
    if not isinstance(error, sa_exc.DBAPIError):
        return False

    original = error.orig
    sqlstate = _sqlstate(original)
    if sqlstate is not None and sqlstate[:2] in MALFORMED_SQLSTATE_CLASSES:
        return True
    if _error_number(original) in MALFORMED_SQLSERVER_ERRORS:
        return True
    message = str(original).lower()
    return any(fragment in message for fragment in _MALFORMED_MESSAGES)


def _sqlstate(original: BaseException | None) -> str | None:
    for attribute in ("sqlstate", "pgcode"):
        value = getattr(original, attribute, None)
        if isinstance(value, str) and len(value) == 5:  # noqa: PLR2004
            return value
    args = getattr(original, "args", ())
    if args and isinstance(args[0], str) and len(args[0]) == 5:  # noqa: PLR2004
        return args[0]
    return None


def _error_number(original: BaseException | None) -> int | None:
    number = getattr(original, "number", None)
    if isinstance(number, int):
        return number
    args = getattr(original, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    return None
