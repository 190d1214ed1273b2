"""
Shared fixtures for change feed tests.
"""

import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from registry.schemareg_server.store.registry_store import RegistryStore


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def store(data_dir):
    """Registry store without WAL so temporary directories clean up."""
    return RegistryStore(data_dir, wal_mode=False)


@pytest.fixture
def clock():
    return ManualClock(datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc))
