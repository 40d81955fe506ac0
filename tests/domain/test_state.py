from __future__ import annotations

import uuid

import pytest

from entitygate.domain.model import TRACKABLE_STATES, EntityState, is_valid_identifier


@pytest.mark.parametrize(
    ("identifier", "expected"),
    [
        (None, False),
        (0, False),
        (-3, False),
        (0.0, False),
        (1, True),
        (42.5, True),
        ("code", True),
        (uuid.UUID(int=0), True),
        ((1, 2), True),
        ((1, None), False),
        ((), False),
    ],
)
def test_is_valid_identifier(identifier: object, *, expected: bool) -> None:
    assert is_valid_identifier(identifier) is expected


def test_detached_is_not_trackable() -> None:
    assert EntityState.DETACHED not in TRACKABLE_STATES
    assert TRACKABLE_STATES == {
        EntityState.UNCHANGED,
        EntityState.ADDED,
        EntityState.MODIFIED,
        EntityState.DELETED,
    }
