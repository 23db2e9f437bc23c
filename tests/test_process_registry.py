"""Tests for the daemon process registry."""

from datetime import timedelta, timezone

import pytest

from diskmgr.errors import DuplicateActiveInstance, InvalidStatusTransition, NotFound, StaleWrite
from diskmgr.models import DaemonStatus


class TestRegister:

    def test_register_creates_starting_entry(self, registry, at):
        entry = registry.register("10.0.0.1", 42, at=at(0))
        assert entry.entry_id is not None
        assert entry.status == DaemonStatus.STARTING
        assert entry.start_time == at(0)
        assert entry.snapshot_time == at(0)

    def test_duplicate_active_instance(self, registry):
        first = registry.register("10.0.0.1", 42)
        with pytest.raises(DuplicateActiveInstance) as exc:
            registry.register("10.0.0.1", 42)
        assert exc.value.entry_id == first.entry_id

    def test_same_pid_on_other_host_is_separate(self, registry):
        a = registry.register("10.0.0.1", 42)
        b = registry.register("10.0.0.2", 42)
        assert a.entry_id != b.entry_id

    def test_terminated_entry_is_revived(self, registry, at):
        entry = registry.register("10.0.0.1", 42, at=at(0))
        registry.mark_terminated(entry)

        revived = registry.register("10.0.0.1", 42, at=at(500))
        assert revived.entry_id == entry.entry_id
        assert revived.status == DaemonStatus.STARTING
        assert revived.start_time == at(500)

    def test_get_unknown_entry(self, registry):
        with pytest.raises(NotFound):
            registry.get(999)

    def test_list_entries_by_ip(self, registry):
        registry.register("10.0.0.1", 1)
        registry.register("10.0.0.1", 2)
        registry.register("10.0.0.2", 3)
        assert [e.pid for e in registry.list_entries(ip="10.0.0.1")] == [1, 2]
        assert len(registry.list_entries()) == 3


class TestHeartbeat:

    def test_heartbeat_updates_status_and_snapshot(self, registry, at):
        entry = registry.register("10.0.0.1", 42, at=at(0))
        registry.heartbeat(entry, DaemonStatus.BUSY, at=at(10))
        assert entry.status == DaemonStatus.BUSY
        assert entry.snapshot_time == at(10)

    def test_heartbeat_accepts_string_status(self, registry, at):
        entry = registry.register("10.0.0.1", 42, at=at(0))
        registry.heartbeat(entry, "idle", at=at(1))
        assert entry.status == DaemonStatus.IDLE

    def test_out_of_order_heartbeat_is_stale(self, registry, at):
        entry = registry.register("10.0.0.1", 42, at=at(0))
        registry.heartbeat(entry, DaemonStatus.BUSY, at=at(20))
        with pytest.raises(StaleWrite):
            registry.heartbeat(entry, DaemonStatus.IDLE, at=at(10))
        assert entry.status == DaemonStatus.BUSY
        assert entry.snapshot_time == at(20)

    def test_heartbeat_on_terminated_entry(self, registry):
        entry = registry.register("10.0.0.1", 42)
        registry.mark_terminated(entry)
        with pytest.raises(InvalidStatusTransition):
            registry.heartbeat(entry, DaemonStatus.IDLE)


class TestLiveness:

    def test_live_within_threshold(self, registry, at):
        entry = registry.register("10.0.0.1", 42, at=at(0))
        assert registry.is_live(entry, now=at(90))
        assert not registry.is_live(entry, now=at(91))

    def test_heartbeat_extends_liveness(self, registry, at):
        entry = registry.register("10.0.0.1", 42, at=at(0))
        registry.heartbeat(entry, DaemonStatus.IDLE, at=at(80))
        assert registry.is_live(entry, now=at(160))

    def test_terminated_is_never_live(self, registry, at):
        entry = registry.register("10.0.0.1", 42, at=at(0))
        registry.mark_terminated(entry)
        assert not registry.is_live(entry, now=at(1))

    def test_sweep_marks_stale_entries_terminated(self, registry, at):
        stale = registry.register("10.0.0.1", 1, at=at(0))
        fresh = registry.register("10.0.0.1", 2, at=at(0))
        registry.heartbeat(fresh, DaemonStatus.IDLE, at=at(100))

        swept = registry.sweep_stale(now=at(120))
        assert [e.entry_id for e in swept] == [stale.entry_id]
        assert stale.status == DaemonStatus.TERMINATED
        assert fresh.status == DaemonStatus.IDLE
        # Entries are kept as history
        assert registry.get(stale.entry_id) is stale

    def test_sweep_twice_is_noop(self, registry, at):
        registry.register("10.0.0.1", 1, at=at(0))
        assert len(registry.sweep_stale(now=at(1000))) == 1
        assert registry.sweep_stale(now=at(2000)) == []

    def test_timezone_aware_heartbeat_is_stored_as_utc(self, registry, at):
        entry = registry.register("10.0.0.1", 42, at=at(0))
        plus_two = timezone(timedelta(hours=2))
        aware = (at(30) + timedelta(hours=2)).replace(tzinfo=plus_two)
        registry.heartbeat(entry, DaemonStatus.IDLE, at=aware)
        assert entry.snapshot_time == at(30)
        assert entry.snapshot_time.tzinfo is None
