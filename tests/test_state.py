import logging

import pytest

from sse_simulator.exceptions import InvalidStreamConfig, StreamNotFound
from sse_simulator.generator import PeriodicConfig
from sse_simulator.scheduler import ManualScheduler
from sse_simulator.state import COMPLETED, DELETED, StreamRegistry


@pytest.fixture
def registry(scheduler):
    return StreamRegistry(scheduler, PeriodicConfig(), capacity=5)


def test_get_or_create_returns_same_state(registry):
    first, created = registry.get_or_create("a", {"max_events": 3})
    second, created_again = registry.get_or_create("a")
    assert created is True
    assert created_again is False
    assert first is second
    assert len(registry) == 1
    assert "a" in registry


def test_defaults_fill_unrequested_parameters(registry):
    state, _ = registry.get_or_create("a", {"interval_ms": 10})
    assert state.config == PeriodicConfig(interval_ms=10)
    assert state.events.capacity == 5
    assert state.last_id == 0
    assert state.event_count == 0


def test_locked_parameters_win_and_mismatch_is_logged(registry, caplog):
    caplog.set_level(logging.WARNING)
    state, _ = registry.get_or_create("a", {"max_events": 3, "interval_ms": 10})
    again, _ = registry.get_or_create("a", {"max_events": 7, "interval_ms": 10})
    assert again is state
    assert state.config.max_events == 3
    warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "max_events=7 ignored" in warnings[0]


def test_invalid_configuration_is_rejected(registry):
    with pytest.raises(InvalidStreamConfig):
        registry.get_or_create("a", {"interval_ms": 0})
    with pytest.raises(InvalidStreamConfig):
        registry.get_or_create("a", {"no_such_field": 1})
    assert len(registry) == 0


def test_delete_cancels_handles_and_wakes_tails(registry, scheduler):
    state, _ = registry.get_or_create("a")
    state.generator_handle = scheduler.call_every(1, lambda: None)
    state.expiry_handle = scheduler.call_later(5, lambda: None)
    generator, expiry = state.generator_handle, state.expiry_handle

    removed = registry.delete("a")

    assert removed is state
    assert "a" not in registry
    assert generator.cancelled and expiry.cancelled
    assert state.generator_handle is None
    assert state.expiry_handle is None
    assert state.closed_reason == DELETED
    assert state.ended


def test_delete_unknown_stream(registry):
    with pytest.raises(StreamNotFound) as exc_info:
        registry.delete("missing")
    assert exc_info.value.stream_id == "missing"


def test_discard_leaves_newer_state_alone(registry):
    old, _ = registry.get_or_create("a")
    registry.delete("a")
    new, _ = registry.get_or_create("a")

    registry.discard(old, COMPLETED)

    assert registry.get("a") is new
    assert new.closed_reason is None


def test_last_activity_uses_scheduler_clock():
    scheduler = ManualScheduler(start=100.0)
    registry = StreamRegistry(scheduler, PeriodicConfig(), capacity=5)
    state, _ = registry.get_or_create("a")
    assert state.created_at == state.last_activity == 100.0
    scheduler.advance(5)
    state.touch(scheduler.now())
    assert state.last_activity == state.last_seen == 105.0


def test_viewer_leaving_counts_as_seen(registry, scheduler):
    state, _ = registry.get_or_create("a")
    state.add_viewer()
    assert state.snapshot()["viewers"] == 1
    scheduler.advance(7)
    state.remove_viewer(scheduler.now())
    assert state.viewers == 0
    assert state.last_seen == 7.0


def test_list_reports_snapshots(registry):
    registry.get_or_create("a", {"max_events": 2})
    registry.get_or_create("b")
    listed = {item["streamId"]: item for item in registry.list()}
    assert set(listed) == {"a", "b"}
    assert listed["a"]["config"]["max_events"] == 2
    assert listed["a"]["active"] is False
    assert listed["a"]["lastId"] == 0
