"""Pytest configuration and shared fixtures.

Tests run the coordinator against InMemoryRecordStore, seeded with documents
built by tests.factories.
"""

import pytest

from src.enrollment.coordinator import EnrollmentCoordinator
from src.enrollment.store.memory import InMemoryRecordStore
from tests.factories import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def coordinator(store: InMemoryRecordStore, clock: FakeClock) -> EnrollmentCoordinator:
    return EnrollmentCoordinator(store, clock=clock)
