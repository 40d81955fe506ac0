from __future__ import annotations

import sqlite3

import pytest
from sqlalchemy import exc as sa_exc

from entitygate.adapters.sqlalchemy import is_malformed_query


class DriverError(Exception):
    def __init__(
        self, message: str, *, sqlstate: str | None = None, number: int | None = None
    ) -> None:
        super().__init__(message)
        self.sqlstate = sqlstate
        self.number = number


def _operational(original: BaseException) -> sa_exc.OperationalError:
    return sa_exc.OperationalError("SELECT 1", {}, original)


@pytest.mark.parametrize(
    "error",
    [
        sa_exc.IntegrityError("INSERT", {}, sqlite3.IntegrityError("NOT NULL constraint failed")),
        sa_exc.ProgrammingError("SELECT", {}, sqlite3.ProgrammingError("bad parameter")),
        sa_exc.CompileError("cannot compile"),
        _operational(sqlite3.OperationalError("no such table: invoice")),
        _operational(sqlite3.OperationalError("table customer has no column named age")),
        _operational(DriverError("invalid object name", sqlstate="42S02")),
        _operational(DriverError("invalid object name", number=208)),
        _operational(DriverError("string data, right truncation", sqlstate="22001")),
    ],
)
def test_malformed_queries_are_detected(error: BaseException) -> None:
    assert is_malformed_query(error)


@pytest.mark.parametrize(
    "error",
    [
        RuntimeError("connection reset"),
        _operational(sqlite3.OperationalError("database is locked")),
        _operational(DriverError("serialization failure", sqlstate="40001")),
        _operational(DriverError("deadlock victim", number=1205)),
        sa_exc.TimeoutError("QueuePool limit reached"),
    ],
)
def test_transient_failures_are_retryable(error: BaseException) -> None:
    assert not is_malformed_query(error)
