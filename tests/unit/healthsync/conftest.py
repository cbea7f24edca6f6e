"""Shared fixtures for the healthsync unit tests."""

from collections.abc import Callable
from datetime import datetime

import pytest
from support import NOW, USER_ID, FakeMonotonic

from adapters.memory.identity import StaticIdentityProvider
from adapters.memory.reminder_scheduler import InMemoryReminderScheduler
from adapters.memory.remote_store import InMemoryRemoteStore
from healthsync.config import SyncConfig
from healthsync.services.event_store import EventStore
from healthsync.services.reminders import ReminderPlanner
from healthsync.services.sync_coordinator import SyncCoordinator


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def store() -> EventStore:
    return EventStore()


@pytest.fixture
def remote() -> InMemoryRemoteStore:
    return InMemoryRemoteStore()


@pytest.fixture
def scheduler() -> InMemoryReminderScheduler:
    return InMemoryReminderScheduler()


@pytest.fixture
def identity() -> StaticIdentityProvider:
    return StaticIdentityProvider(USER_ID)


@pytest.fixture
def planner(scheduler: InMemoryReminderScheduler, clock) -> ReminderPlanner:
    return ReminderPlanner(scheduler, clock=clock)


@pytest.fixture
def coordinator(
    store: EventStore,
    remote: InMemoryRemoteStore,
    planner: ReminderPlanner,
    identity: StaticIdentityProvider,
    monotonic: FakeMonotonic,
) -> SyncCoordinator:
    return SyncCoordinator(
        store,
        remote,
        planner,
        identity,
        config=SyncConfig(tombstone_ttl_seconds=60.0, stop_timeout_seconds=1.0),
        monotonic=monotonic,
    )
