"""Unit tests for StatusReporter."""

import dataclasses
import threading
from datetime import datetime

import pytest

from devproxy_agent.status import StatusReporter, SyncStatus


def test_initial_status() -> None:
    """Test the status before any cycle has run."""
    status = StatusReporter().snapshot()

    assert status == SyncStatus()
    assert status.connected is False
    assert status.last_sync_time is None
    assert status.paused is False


def test_update_returns_new_snapshot() -> None:
    """Test that update returns a new snapshot and leaves old ones alone."""
    reporter = StatusReporter()
    before = reporter.snapshot()

    after = reporter.update(connected=True, route_count=3)

    assert after.connected is True
    assert after.route_count == 3
    assert before.connected is False
    assert reporter.snapshot() == after


def test_snapshots_are_immutable() -> None:
    """Test that snapshots cannot be modified."""
    status = StatusReporter().snapshot()

    with pytest.raises(dataclasses.FrozenInstanceError):
        status.connected = True  # type: ignore[misc]


def test_unknown_field_rejected() -> None:
    """Test that updating an unknown field raises TypeError."""
    with pytest.raises(TypeError, match="bogus"):
        StatusReporter().update(bogus=1)


def test_toggle_paused() -> None:
    """Test toggling and setting the paused flag."""
    reporter = StatusReporter()

    assert reporter.toggle_paused() is True
    assert reporter.toggle_paused() is False
    reporter.set_paused(True)
    assert reporter.snapshot().paused is True


def test_to_dict() -> None:
    """Test SyncStatus serialization."""
    status = SyncStatus(connected=True, last_sync_time=datetime(2024, 5, 1, 10, 30), route_count=2)

    assert status.to_dict() == {
        "connected": True,
        "last_sync_time": "2024-05-01T10:30:00",
        "last_error": "",
        "route_count": 2,
        "paused": False,
        "has_permission": False,
    }
    assert SyncStatus().to_dict()["last_sync_time"] is None


def test_concurrent_toggles_are_not_lost() -> None:
    """Test that toggles from several threads are all applied."""
    reporter = StatusReporter()

    def toggler() -> None:
        for _ in range(1000):
            reporter.toggle_paused()

    threads = [threading.Thread(target=toggler) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert reporter.snapshot().paused is False
