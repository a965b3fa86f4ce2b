"""Tests for the log store backends.

Every test in this module runs against InMemoryLogStore and SqliteLogStore.

Tests cover:
- Mutual exclusion under concurrent acquisition
- Lease expiry and recycling
- DO_NOT_ACQUIRE / FORCE_ACQUIRE behaviors
- Prior-sync derivation from terminal history
- Copy-on-boundary semantics
- acquire_existing for queued entries
"""

import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from synclease.entities import SyncEntityOptions
from synclease.errors import (
    EntityMismatchError,
    LogEntryNotFoundError,
    LogStoreError,
    StaleLogEntryError,
    SyncCancelledError,
)
from synclease.log_store import InMemoryLogStore, SqliteLogStore, derive_prior_sync_info
from synclease.schemas import AcquireLeaseBehavior, SyncStatus, SyncTriggerType

TIMER = SyncTriggerType.TIMER


def _finish(store, entry, status, clock, **fields):
    entry.status = status
    entry.finished_at = clock()
    for name, value in fields.items():
        setattr(entry, name, value)
    store.update_log_entry(entry)
    return entry


class TestAcquireLease:
    """Tests for basic acquisition."""

    def test_creates_leased_pending_entry(self, store, orders, clock):
        result = store.acquire_lease(TIMER, orders)

        entry = result.entry
        assert entry.id
        assert entry.key == orders.key
        assert entry.status == SyncStatus.PENDING
        assert entry.trigger_type == TIMER
        assert entry.created_at == clock.now
        assert entry.leased_at == clock.now
        assert entry.leased_by == "test-host"
        assert entry.lease_expires_at == clock.now + timedelta(days=1)

    def test_entity_lease_override(self, store, orders, clock):
        result = store.acquire_lease(TIMER, orders.configure(lease_duration=timedelta(minutes=5)))
        assert result.entry.lease_expires_at == clock.now + timedelta(minutes=5)

    def test_second_acquire_is_not_acquired(self, store, orders):
        assert store.acquire_lease(TIMER, orders) is not None
        assert store.acquire_lease(TIMER, orders) is None

    def test_first_acquire_has_empty_prior_info(self, store, orders):
        result = store.acquire_lease(TIMER, orders)
        assert result.prior_sync_info.high_water_mark is None
        assert result.prior_sync_info.last_sync_leased_at is None

    def test_keys_are_independent(self, store):
        tenant_a = SyncEntityOptions(entity="Orders", job="orders", parameters={"tenant": "a"})
        tenant_b = SyncEntityOptions(entity="Orders", job="orders", parameters={"tenant": "b"})
        v2 = SyncEntityOptions(entity="Orders", job="orders", schema_version=2)
        plain = SyncEntityOptions(entity="Orders", job="orders")

        for options in (tenant_a, tenant_b, v2, plain):
            assert store.acquire_lease(TIMER, options) is not None

    def test_parameter_order_is_same_key(self, store):
        first = SyncEntityOptions(entity="Orders", job="orders", parameters={"b": 2, "a": 1})
        second = SyncEntityOptions(entity="Orders", job="orders", parameters={"a": 1, "b": 2})
        assert store.acquire_lease(TIMER, first) is not None
        assert store.acquire_lease(TIMER, second) is None

    def test_new_entry_after_terminal_entry(self, store, orders, clock):
        first = store.acquire_lease(TIMER, orders).entry
        _finish(store, first, SyncStatus.COMPLETED, clock)

        second = store.acquire_lease(TIMER, orders).entry
        assert second.id != first.id

    def test_cancelled_acquire_raises(self, store, orders):
        cancellation = threading.Event()
        cancellation.set()
        with pytest.raises(SyncCancelledError):
            store.acquire_lease(TIMER, orders, cancellation=cancellation)


class TestConcurrentAcquisition:
    """Exactly one of N concurrent acquirers wins."""

    def test_exactly_one_winner(self, store, orders):
        barrier = threading.Barrier(8)

        def acquire(_):
            barrier.wait()
            return store.acquire_lease(TIMER, orders)

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(acquire, range(8)))

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert len(store.list_entries(entity="Orders")) == 1

    def test_exactly_one_expiry_winner(self, store, orders, clock):
        short = orders.configure(lease_duration=timedelta(minutes=1))
        store.acquire_lease(TIMER, short)
        clock.advance(minutes=2)
        barrier = threading.Barrier(6)

        def acquire(_):
            barrier.wait()
            return store.acquire_lease(TIMER, short)

        with ThreadPoolExecutor(max_workers=6) as executor:
            results = list(executor.map(acquire, range(6)))

        assert len([r for r in results if r is not None]) == 1
        statuses = [e.status for e in store.list_entries(entity="Orders")]
        assert statuses.count(SyncStatus.LEASE_EXPIRED) == 1
        assert statuses.count(SyncStatus.PENDING) == 1


class TestLeaseExpiry:
    """Tests for expired lease handling."""

    def test_expired_lease_is_recycled(self, store, orders, clock):
        short = orders.configure(lease_duration=timedelta(hours=1))
        first = store.acquire_lease(TIMER, short).entry

        clock.advance(hours=2)
        second = store.acquire_lease(TIMER, short).entry

        assert second.id != first.id
        assert store.find_by_id(first.id).status == SyncStatus.LEASE_EXPIRED
        assert second.leased_at == clock.now

    def test_expiry_happens_once(self, store, orders, clock):
        short = orders.configure(lease_duration=timedelta(hours=1))
        store.acquire_lease(TIMER, short)
        clock.advance(hours=2)
        store.acquire_lease(TIMER, short)

        # The new lease is live, so the next acquirer is blocked
        assert store.acquire_lease(TIMER, short) is None
        statuses = [e.status for e in store.list_entries(entity="Orders")]
        assert statuses.count(SyncStatus.LEASE_EXPIRED) == 1

    def test_lease_at_exact_expiry_still_held(self, store, orders, clock):
        short = orders.configure(lease_duration=timedelta(hours=1))
        store.acquire_lease(TIMER, short)
        clock.advance(hours=1)
        assert store.acquire_lease(TIMER, short) is None

    def test_expired_entry_is_terminal_history(self, store, orders, clock):
        short = orders.configure(lease_duration=timedelta(hours=1))
        first = store.acquire_lease(TIMER, short).entry
        clock.advance(hours=2)

        prior = store.acquire_lease(TIMER, short).prior_sync_info
        assert prior.last_sync_queued_at == first.created_at
        assert prior.last_sync_leased_at == first.leased_at
        assert prior.last_sync_completed_at is None


class TestBehaviors:
    """Tests for DO_NOT_ACQUIRE and FORCE_ACQUIRE."""

    def test_do_not_acquire_leaves_entry_unleased(self, store, orders):
        entry = store.acquire_lease(TIMER, orders, AcquireLeaseBehavior.DO_NOT_ACQUIRE).entry
        assert entry.status == SyncStatus.PENDING
        assert entry.leased_at is None
        assert entry.leased_by is None
        assert entry.lease_expires_at is None

    def test_do_not_acquire_reuses_reserved_entry(self, store, orders):
        first = store.acquire_lease(TIMER, orders, AcquireLeaseBehavior.DO_NOT_ACQUIRE).entry
        second = store.acquire_lease(TIMER, orders, AcquireLeaseBehavior.DO_NOT_ACQUIRE).entry
        assert second.id == first.id

    def test_reserved_entry_can_be_leased(self, store, orders, clock):
        reserved = store.acquire_lease(TIMER, orders, AcquireLeaseBehavior.DO_NOT_ACQUIRE).entry
        leased = store.acquire_lease(TIMER, orders).entry
        assert leased.id == reserved.id
        assert leased.leased_at == clock.now

    def test_do_not_acquire_on_leased_entry_is_not_acquired(self, store, orders):
        store.acquire_lease(TIMER, orders)
        assert store.acquire_lease(TIMER, orders, AcquireLeaseBehavior.DO_NOT_ACQUIRE) is None

    def test_force_acquire_takes_over(self, store, orders, clock):
        first = store.acquire_lease(TIMER, orders).entry
        clock.advance(minutes=10)
        forced = store.acquire_lease(TIMER, orders, AcquireLeaseBehavior.FORCE_ACQUIRE).entry

        assert forced.id == first.id
        assert forced.leased_at == clock.now
        assert forced.lease_expires_at == clock.now + timedelta(days=1)


class TestPriorSyncInfo:
    """Tests for prior-sync derivation."""

    def test_derived_from_terminal_history(self, store, orders, clock):
        first = store.acquire_lease(TIMER, orders).entry
        clock.advance(minutes=5)
        _finish(store, first, SyncStatus.COMPLETED, clock, high_water_mark="h1")

        clock.advance(hours=1)
        second = store.acquire_lease(TIMER, orders).entry
        clock.advance(minutes=5)
        _finish(store, second, SyncStatus.FAILED, clock)

        clock.advance(hours=1)
        prior = store.acquire_lease(TIMER, orders).prior_sync_info

        assert prior.high_water_mark == "h1"
        assert prior.last_sync_queued_at == second.created_at
        assert prior.last_sync_leased_at == second.leased_at
        assert prior.last_sync_completed_at == second.finished_at

    def test_newest_high_water_mark_wins(self, store, orders, clock):
        for mark in ("h1", "h2"):
            entry = store.acquire_lease(TIMER, orders).entry
            _finish(store, entry, SyncStatus.COMPLETED, clock, high_water_mark=mark)
            clock.advance(hours=1)

        assert store.acquire_lease(TIMER, orders).prior_sync_info.high_water_mark == "h2"

    def test_skipped_entries_count_as_finished_not_leased(self, store, orders, clock):
        ran = store.acquire_lease(TIMER, orders).entry
        _finish(store, ran, SyncStatus.COMPLETED, clock)

        clock.advance(hours=1)
        skipped = store.acquire_lease(TIMER, orders).entry
        _finish(store, skipped, SyncStatus.SKIPPED, clock)

        clock.advance(hours=1)
        prior = store.acquire_lease(TIMER, orders).prior_sync_info
        assert prior.last_sync_leased_at == ran.leased_at
        assert prior.last_sync_queued_at == skipped.created_at
        assert prior.last_sync_completed_at == skipped.finished_at

    def test_history_is_per_key(self, store, orders, clock):
        entry = store.acquire_lease(TIMER, orders).entry
        _finish(store, entry, SyncStatus.COMPLETED, clock, high_water_mark="orders-mark")

        other = orders.configure(schema_version=2)
        assert store.acquire_lease(TIMER, other).prior_sync_info.high_water_mark is None


class TestUpdateAndFind:
    """Tests for update_log_entry, find_by_id and list_entries."""

    def test_update_persists_fields(self, store, orders, clock):
        entry = store.acquire_lease(TIMER, orders).entry
        entry.progress_value = 3
        entry.progress_max = 10
        entry.status = SyncStatus.IN_PROGRESS
        store.update_log_entry(entry)

        found = store.find_by_id(entry.id)
        assert found.status == SyncStatus.IN_PROGRESS
        assert found.progress_value == 3
        assert found.progress_max == 10
        assert found.leased_at == entry.leased_at

    def test_update_unknown_id_raises(self, store, orders):
        entry = store.acquire_lease(TIMER, orders).entry
        entry.id = "999999"
        with pytest.raises(LogEntryNotFoundError):
            store.update_log_entry(entry)

    def test_returned_entries_are_copies(self, store, orders):
        entry = store.acquire_lease(TIMER, orders).entry
        entry.status = SyncStatus.FAILED
        entry.result_message = "not persisted"

        found = store.find_by_id(entry.id)
        assert found.status == SyncStatus.PENDING
        assert found.result_message is None

        found.status = SyncStatus.COMPLETED
        assert store.find_by_id(entry.id).status == SyncStatus.PENDING

    def test_stale_holder_cannot_reactivate_expired_entry(self, store, orders, clock):
        stale = store.acquire_lease(TIMER, orders).entry
        clock.advance(days=2)
        current = store.acquire_lease(TIMER, orders).entry

        stale.status = SyncStatus.IN_PROGRESS
        stale.progress_value = 1
        stale.progress_max = 2
        with pytest.raises(StaleLogEntryError, match="already lease_expired"):
            store.update_log_entry(stale)

        active = [e for e in store.list_entries(entity="Orders") if e.is_active]
        assert [e.id for e in active] == [current.id]
        assert store.find_by_id(stale.id).status == SyncStatus.LEASE_EXPIRED

    def test_ended_entry_cannot_return_to_pending(self, store, orders, clock):
        entry = store.acquire_lease(TIMER, orders).entry
        _finish(store, entry, SyncStatus.COMPLETED, clock)

        entry.status = SyncStatus.PENDING
        with pytest.raises(StaleLogEntryError):
            store.update_log_entry(entry)
        assert store.find_by_id(entry.id).status == SyncStatus.COMPLETED

    def test_find_unknown_returns_none(self, store):
        assert store.find_by_id("999999") is None

    def test_list_entries_newest_first(self, store, orders, customers, clock):
        ids = []
        for options in (orders, customers):
            entry = store.acquire_lease(TIMER, options).entry
            _finish(store, entry, SyncStatus.COMPLETED, clock)
            ids.append(entry.id)
            clock.advance(minutes=1)
        entry = store.acquire_lease(TIMER, orders).entry
        ids.append(entry.id)

        assert [e.id for e in store.list_entries()] == list(reversed(ids))
        assert [e.id for e in store.list_entries(entity="Orders")] == [ids[2], ids[0]]
        assert len(store.list_entries(limit=1)) == 1


class TestAcquireExisting:
    """Tests for resuming queued entries."""

    def _queued(self, store, options):
        return store.acquire_lease(TIMER, options, AcquireLeaseBehavior.DO_NOT_ACQUIRE).entry

    def test_leases_queued_entry(self, store, orders, clock):
        queued = self._queued(store, orders)
        result = store.acquire_existing(queued, orders)

        assert result.entry.id == queued.id
        assert result.entry.leased_at == clock.now
        assert result.entry.leased_by == "test-host"

    def test_second_worker_is_not_acquired(self, store, orders):
        queued = self._queued(store, orders)
        assert store.acquire_existing(queued, orders) is not None
        assert store.acquire_existing(queued, orders) is None

    def test_key_mismatch_raises(self, store, orders, customers):
        queued = self._queued(store, orders)
        with pytest.raises(EntityMismatchError):
            store.acquire_existing(queued, customers)

    def test_schema_version_mismatch_raises(self, store, orders):
        queued = self._queued(store, orders)
        with pytest.raises(EntityMismatchError):
            store.acquire_existing(queued, orders.configure(schema_version=2))

    def test_unknown_entry_raises(self, store, orders):
        queued = self._queued(store, orders)
        queued.id = "999999"
        with pytest.raises(LogEntryNotFoundError):
            store.acquire_existing(queued, orders)

    def test_finished_entry_is_not_resumed(self, store, orders, clock):
        entry = store.acquire_lease(TIMER, orders).entry
        _finish(store, entry, SyncStatus.COMPLETED, clock)
        assert store.acquire_existing(entry, orders) is None

    def test_expired_entry_is_marked_and_not_resumed(self, store, orders, clock):
        short = orders.configure(lease_duration=timedelta(minutes=1))
        entry = store.acquire_lease(TIMER, short).entry
        clock.advance(minutes=2)

        assert store.acquire_existing(entry, short) is None
        assert store.find_by_id(entry.id).status == SyncStatus.LEASE_EXPIRED


class TestBackendSpecifics:
    """Behavior that differs between backends."""

    def test_sqlite_ids_must_be_integers(self, tmp_path):
        store = SqliteLogStore(tmp_path / "ids.db")
        with pytest.raises(ValueError):
            store.find_by_id("abc")

    def test_sqlite_entries_survive_reopen(self, tmp_path, orders, clock):
        path = tmp_path / "durable.db"
        entry = SqliteLogStore(path, clock=clock).acquire_lease(TIMER, orders).entry

        reopened = SqliteLogStore(path, clock=clock)
        assert reopened.find_by_id(entry.id) == entry
        assert reopened.acquire_lease(TIMER, orders) is None

    def test_sqlite_find_by_id_does_not_wait_for_writers(self, tmp_path, orders, clock):
        path = tmp_path / "busy.db"
        store = SqliteLogStore(path, clock=clock, timeout=0.1)
        entry = store.acquire_lease(TIMER, orders).entry

        writer = sqlite3.connect(path, isolation_level=None)
        try:
            writer.execute("BEGIN IMMEDIATE")
            assert store.find_by_id(entry.id) == entry
            with pytest.raises(LogStoreError, match="locked"):
                store.update_log_entry(entry)
        finally:
            writer.execute("ROLLBACK")
            writer.close()

    def test_memory_ids_are_ulids(self, orders):
        entry = InMemoryLogStore().acquire_lease(TIMER, orders).entry
        assert len(entry.id) == 26

    def test_default_machine_id_is_hostname(self, orders):
        import socket

        assert InMemoryLogStore().machine_id == socket.gethostname()

    def test_rejects_non_positive_default_lease(self):
        with pytest.raises(ValueError):
            InMemoryLogStore(default_lease_duration=timedelta(0))


class TestDerivePriorSyncInfo:
    """Tests for the pure derivation helper."""

    def test_empty_history(self):
        prior = derive_prior_sync_info([])
        assert prior.last_sync_queued_at is None
        assert prior.high_water_mark is None
