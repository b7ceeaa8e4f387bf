"""Pytest configuration for Bizdesk."""

from datetime import datetime, timedelta

import pytest

from bizdesk.activity import ActivityLogger
from bizdesk.config import BizdeskConfig, set_config
from bizdesk.db import EntityStore
from bizdesk.lifecycle import HardDeleteService, LifecycleService
from bizdesk.records import RecordService


def pytest_configure(config):
    """Configure pytest with custom settings."""
    config.addinivalue_line(
        "markers", "lifecycle: mark test as soft delete / restore / purge test"
    )


class FixedClock:
    """Deterministic clock; advance it explicitly between operations."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def test_config():
    """Install a fresh testing configuration for every test."""
    config = BizdeskConfig(environment="testing", database_url="sqlite://")
    set_config(config)
    yield config
    set_config(None)


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 3, 1, 9, 30, 0))


@pytest.fixture
def store():
    """In-memory SQLite store with all tables created."""
    store = EntityStore.from_url("sqlite://")
    store.create_all()
    yield store
    store.dispose()


@pytest.fixture
def activity(store, clock):
    return ActivityLogger(store, clock=clock)


@pytest.fixture
def lifecycle(store, activity, test_config, clock):
    return LifecycleService(
        store, activity_logger=activity, config=test_config, clock=clock
    )


@pytest.fixture
def records(store, clock):
    return RecordService(store, clock=clock)


@pytest.fixture
def hard_delete(store, activity):
    return HardDeleteService(store, activity_logger=activity)
