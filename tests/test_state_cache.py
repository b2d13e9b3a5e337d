"""Tests for the device state cache."""

from stackchan_bridge.core import StateCache
from stackchan_bridge.models import DeviceStateSnapshot


def test_empty_cache_has_no_fresh_state(clock) -> None:
    cache = StateCache(clock=clock)

    assert cache.latest is None
    assert cache.get_fresh(30.0) is None


def test_snapshot_within_max_age_is_fresh(clock) -> None:
    cache = StateCache(clock=clock)
    snapshot = DeviceStateSnapshot(captured_at=cache.now(), battery=42)
    cache.update(snapshot)

    clock.advance(29.999)

    assert cache.get_fresh(30.0) is snapshot


def test_snapshot_past_max_age_is_stale(clock) -> None:
    cache = StateCache(clock=clock)
    cache.update(DeviceStateSnapshot(captured_at=cache.now(), battery=42))

    clock.advance(30.001)

    assert cache.get_fresh(30.0) is None
    assert cache.latest is not None


def test_update_replaces_previous_snapshot(clock) -> None:
    cache = StateCache(clock=clock)
    cache.update(DeviceStateSnapshot(captured_at=cache.now(), battery=90))
    clock.advance(5)
    newer = DeviceStateSnapshot(captured_at=cache.now(), battery=80)
    cache.update(newer)

    assert cache.latest is newer
    assert cache.get_fresh(1.0) is newer
