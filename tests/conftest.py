import logging
import threading
from datetime import datetime, timedelta, timezone

import pytest

from synclease.eligibility import AlwaysEligible
from synclease.entities import EntityResolver, SyncEntityOptions
from synclease.job import EntitySync
from synclease.log_store import InMemoryLogStore, SqliteLogStore
from synclease.registry import JobRegistry
from synclease.schemas import SyncResult


class FakeClock:
    """Settable clock shared by the store, eligibility strategies and services."""

    def __init__(self, start=datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingJob(EntitySync):
    """Job returning a fixed result (or raising) and recording every call."""

    def __init__(self, result=None, error=None, on_run=None):
        self.result = result if result is not None else SyncResult(success=True)
        self.error = error
        self.on_run = on_run
        self.calls = []
        self._lock = threading.Lock()

    def run(self, trigger, entity, report_progress, cancellation=None):
        with self._lock:
            self.calls.append((trigger, entity))
        if self.on_run is not None:
            outcome = self.on_run(trigger, entity, report_progress, cancellation)
            if outcome is not None:
                return outcome
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture(autouse=True)
def reset_synclease_logger():
    # CLI tests install handlers through setup_logging
    yield
    logger = logging.getLogger("synclease")
    logger.handlers = []
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path, clock):
    """Every store-backed test runs against both backends."""
    if request.param == "memory":
        return InMemoryLogStore(machine_id="test-host", clock=clock)
    return SqliteLogStore(tmp_path / "synclease.db", machine_id="test-host", clock=clock)


@pytest.fixture
def orders():
    return SyncEntityOptions(entity="Orders", job="orders", eligibility=AlwaysEligible())


@pytest.fixture
def customers():
    return SyncEntityOptions(entity="Customers", job="customers", eligibility=AlwaysEligible())


@pytest.fixture
def job():
    return RecordingJob()


@pytest.fixture
def registry(job):
    registry = JobRegistry()
    registry.register("orders", lambda: job)
    registry.register("customers", lambda: job)
    return registry


@pytest.fixture
def resolver(orders):
    return EntityResolver([orders])
