from __future__ import annotations

import logging

import pytest

from entitygate.config import GateSettings
from entitygate.domain.errors import CanceledError, ConcurrencyConflictError, GateError
from entitygate.domain.gate import EntityGate
from entitygate.domain.model import EntityState
from entitygate.domain.token import UNKNOWN_ROW_COUNT
from tests.helpers.fakes import (
    FakeMalformedQueryError,
    FakeMappingEngine,
    RecordingSubscriber,
    TransientError,
    Widget,
)


def _gate(
    engine: FakeMappingEngine,
    settings: GateSettings,
    sleeps: list[float],
    **kwargs: object,
) -> EntityGate:
    return EntityGate(engine, settings, shape=Widget, sleep=sleeps.append, **kwargs)  # type: ignore[arg-type]


def test_save_retries_transient_failures_until_success(
    fake_engine: FakeMappingEngine, settings: GateSettings, sleeps: list[float]
) -> None:
    gate = _gate(fake_engine, settings, sleeps)
    assert gate.load(1)
    gate.entity.label = "renamed"
    fake_engine.commit_failures = [TransientError("busy"), TransientError("busy")]

    assert gate.save()

    assert gate.token.attempt_count == 3
    assert sleeps == [settings.attempt_delay_seconds, settings.attempt_delay_seconds]
    assert fake_engine.rows[("Widget", 1)]["label"] == "renamed"


def test_save_gives_up_when_attempts_are_exhausted(
    fake_engine: FakeMappingEngine, settings: GateSettings, sleeps: list[float]
) -> None:
    gate = _gate(fake_engine, settings.with_changes(max_attempts=2), sleeps)
    gate.load(1)
    gate.entity.label = "renamed"
    fake_engine.commit_failures = [TransientError(f"busy {n}") for n in range(5)]

    with pytest.raises(CanceledError) as excinfo:
        gate.save()

    assert isinstance(excinfo.value.__cause__, TransientError)
    assert gate.token.attempt_count == 2
    assert fake_engine.commit_attempts == 2
    assert len(sleeps) == 1


def test_malformed_query_is_not_retried(
    fake_engine: FakeMappingEngine, settings: GateSettings, sleeps: list[float]
) -> None:
    gate = _gate(fake_engine, settings, sleeps)
    gate.load(1)
    gate.entity.label = "renamed"
    fake_engine.commit_failures = [FakeMalformedQueryError("no such column")]

    with pytest.raises(CanceledError) as excinfo:
        gate.save()

    assert isinstance(excinfo.value.__cause__, FakeMalformedQueryError)
    assert gate.token.attempt_count == 1
    assert sleeps == []


def test_load_retries_transient_failures(
    fake_engine: FakeMappingEngine, settings: GateSettings, sleeps: list[float]
) -> None:
    gate = _gate(fake_engine, settings, sleeps)
    fake_engine.find_failures = [TransientError("timeout")]

    assert gate.load(2)

    assert gate.entity.label == "second"
    assert gate.token.attempt_count == 2
    assert len(sleeps) == 1


def test_save_without_changes_does_not_commit(
    fake_engine: FakeMappingEngine, settings: GateSettings, sleeps: list[float]
) -> None:
    gate = _gate(fake_engine, settings, sleeps)
    gate.load(1)

    assert not gate.save()

    assert fake_engine.commit_attempts == 0
    assert gate.token.row_count == UNKNOWN_ROW_COUNT


def test_delete_reporting_zero_rows_counts_as_one(
    fake_engine: FakeMappingEngine, settings: GateSettings, sleeps: list[float]
) -> None:
    gate = _gate(fake_engine, settings, sleeps)
    gate.load(1)
    fake_engine.reported_rows = 0

    assert gate.delete()

    assert gate.token.row_count == 1
    assert ("Widget", 1) not in fake_engine.rows


def test_added_entity_gets_generated_key_after_save(
    fake_engine: FakeMappingEngine, settings: GateSettings, sleeps: list[float]
) -> None:
    gate = _gate(fake_engine, settings, sleeps)
    widget = gate.new_entity()
    widget.label = "fresh"
    assert gate.primary_keys() == {"id": None}
    assert gate.is_new_entity()

    assert gate.save()

    assert widget.id == 3
    assert gate.primary_keys() == {"id": 3}
    assert gate.primary_key() == ("id", 3)
    assert not gate.is_new_entity()
    assert fake_engine.rows[("Widget", 3)] == {"id": 3, "label": "fresh"}


def test_concurrency_conflict_reloads_entity_before_retry(
    fake_engine: FakeMappingEngine, settings: GateSettings, sleeps: list[float]
) -> None:
    gate = _gate(fake_engine, settings, sleeps)
    gate.load(1)
    gate.entity.label = "mine"
    fake_engine.commit_failures = [ConcurrencyConflictError("row changed")]

    saved = gate.save()

    assert fake_engine.reloads == 1
    assert gate.entity.label == "first"
    assert gate.token.attempt_count == 2
    assert not saved


def test_gate_errors_are_raised_without_retry(
    fake_engine: FakeMappingEngine, settings: GateSettings, sleeps: list[float]
) -> None:
    gate = _gate(fake_engine, settings, sleeps)

    with pytest.raises(GateError):
        gate.load()

    with pytest.raises(GateError):
        gate.save()
    assert sleeps == []


def test_load_of_missing_entity_returns_false(
    fake_engine: FakeMappingEngine,
    settings: GateSettings,
    sleeps: list[float],
    caplog: pytest.LogCaptureFixture,
) -> None:
    gate = _gate(fake_engine, settings, sleeps)

    with caplog.at_level(logging.WARNING):
        assert not gate.load(404)

    assert "No Widget found" in caplog.text
    assert not gate.has_entity()


def test_load_without_identifier_reloads_current_entity(
    fake_engine: FakeMappingEngine, settings: GateSettings, sleeps: list[float]
) -> None:
    gate = _gate(fake_engine, settings, sleeps)
    gate.load(2)
    fake_engine.rows[("Widget", 2)]["label"] = "changed in store"

    assert gate.load()
    assert gate.entity.id == 2


def test_list_returns_every_entity(
    fake_engine: FakeMappingEngine, settings: GateSettings, sleeps: list[float]
) -> None:
    gate = _gate(fake_engine, settings, sleeps)

    labels = sorted(widget.label for widget in gate.list())

    assert labels == ["first", "second"]
    assert gate.token.save_allowed is False


def test_notifications_are_published_for_changed_entries(
    fake_engine: FakeMappingEngine, settings: GateSettings, sleeps: list[float]
) -> None:
    subscriber = RecordingSubscriber()
    gate = _gate(
        fake_engine,
        settings.with_changes(notifications_enabled=True),
        sleeps,
        subscriber=subscriber,
    )
    gate.load(1)
    gate.entity.label = "renamed"

    assert gate.save()

    assert len(subscriber.published) == 1
    notification = subscriber.published[0]
    assert notification.shape == "Widget"
    assert notification.state is EntityState.MODIFIED
    assert notification.entity.label == "renamed"


def test_notification_for_new_entity_carries_generated_key(
    fake_engine: FakeMappingEngine, settings: GateSettings, sleeps: list[float]
) -> None:
    subscriber = RecordingSubscriber()
    gate = _gate(
        fake_engine,
        settings.with_changes(notifications_enabled=True),
        sleeps,
        subscriber=subscriber,
    )
    widget = gate.new_entity()
    widget.label = "fresh"

    assert gate.save()

    notification = subscriber.published[0]
    assert notification.state is EntityState.ADDED
    assert notification.entity is not widget
    assert notification.entity.id == widget.id == 3


def test_notifications_are_skipped_when_disabled_or_nothing_written(
    fake_engine: FakeMappingEngine, settings: GateSettings, sleeps: list[float]
) -> None:
    subscriber = RecordingSubscriber()
    gate = _gate(fake_engine, settings, sleeps, subscriber=subscriber)
    gate.load(1)
    gate.entity.label = "renamed"
    gate.save()

    enabled = _gate(
        fake_engine,
        settings.with_changes(notifications_enabled=True),
        sleeps,
        subscriber=subscriber,
    )
    enabled.load(2)
    enabled.save()

    assert subscriber.published == []


def test_subscriber_failure_does_not_fail_save(
    fake_engine: FakeMappingEngine,
    settings: GateSettings,
    sleeps: list[float],
    caplog: pytest.LogCaptureFixture,
) -> None:
    subscriber = RecordingSubscriber(fail=True)
    gate = _gate(
        fake_engine,
        settings.with_changes(notifications_enabled=True),
        sleeps,
        subscriber=subscriber,
    )
    gate.load(1)
    gate.entity.label = "renamed"

    with caplog.at_level(logging.ERROR):
        assert gate.save()

    assert "Failed to publish change of Widget" in caplog.text
    assert gate.token.attempt_count == 1
