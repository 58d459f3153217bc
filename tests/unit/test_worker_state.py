"""Unit tests for the in-memory worker status snapshot."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

from notequeue.worker.state import WorkerStatus

NOW = datetime(2026, 5, 4, 9, 30, tzinfo=timezone.utc)


def make_status() -> WorkerStatus:
    return WorkerStatus(session_factory=Mock())


def test_new_status_is_stopped_and_empty() -> None:
    status = make_status()
    assert status.is_running is False
    assert status.last_heartbeat is None
    assert status.tasks_processed == 0


def test_mark_started_resets_counters() -> None:
    status = make_status()
    status.tasks_processed = 12
    status.tasks_failed = 4

    status.mark_started(NOW)

    assert status.is_running is True
    assert status.started_at == NOW
    assert status.last_heartbeat == NOW
    assert status.tasks_processed == 0
    assert status.tasks_failed == 0


def test_record_outcome_counts() -> None:
    status = make_status()

    status.record_outcome(True)
    status.record_outcome(True)
    status.record_outcome(False)

    assert status.tasks_processed == 3
    assert status.tasks_succeeded == 2
    assert status.tasks_failed == 1


def test_heartbeat_age_and_staleness() -> None:
    status = make_status()
    status.mark_started(NOW)
    status.beat(NOW + timedelta(seconds=10))

    later = NOW + timedelta(seconds=50)
    assert status.heartbeat_age(later) == timedelta(seconds=40)
    assert status.is_heartbeat_stale(timedelta(seconds=30), later) is True
    assert status.is_heartbeat_stale(timedelta(seconds=60), later) is False


def test_stopped_worker_is_never_stale() -> None:
    status = make_status()
    status.mark_started(NOW)
    status.mark_stopped()

    assert status.is_heartbeat_stale(timedelta(seconds=1), NOW + timedelta(hours=5)) is False
