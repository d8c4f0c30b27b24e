"""Shared pytest fixtures for booking-ledger tests."""

import tempfile
from pathlib import Path

import pytest

from booking_ledger.config import LedgerConfig
from booking_ledger.ledger import BookingLedger
from booking_ledger.locking import InstanceLock


@pytest.fixture
def temp_project():
    """Create a temporary project directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config(temp_project):
    """Create a test configuration pinned to UTC."""
    return LedgerConfig(
        project_root=temp_project,
        timezone="UTC",
    )


@pytest.fixture
def instance_lock(config):
    """Hold the instance lock of the test data directory."""
    lock = InstanceLock(config.get_data_path())
    lock.acquire()
    yield lock
    lock.release()


@pytest.fixture
def ledger(config, instance_lock):
    """Create a test ledger."""
    return BookingLedger(config, instance_lock)


@pytest.fixture
def ledger_factory():
    """Factory fixture that creates ledgers and releases their locks.

    Usage:
        def test_example(ledger_factory, temp_project):
            config = LedgerConfig(project_root=temp_project, ...)
            ledger = ledger_factory(config)
    """
    locks = []

    def _create(config):
        lock = InstanceLock(config.get_data_path())
        locks.append(lock)
        return BookingLedger(config, lock)

    yield _create

    for lock in locks:
        lock.release()
