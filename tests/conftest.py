"""Pytest configuration, Hypothesis profiles and shared fixtures."""

from datetime import UTC, datetime

import pytest
from hypothesis import settings

from eventpulse.backends.memory import InMemoryEventStore, InMemoryLockStore
from eventpulse.core.registry import HandlerRegistry
from eventpulse.core.service import EventService

# Register Hypothesis profiles
settings.register_profile("ci", max_examples=100)
settings.register_profile("dev", max_examples=20)

# Load dev profile by default, CI can override via --hypothesis-profile=ci
settings.load_profile("dev")

# Anchored to wall time so events created with default timestamps fall inside stats windows
NOW = datetime.now(UTC).replace(microsecond=0)


class FrozenClock:
    """Settable UTC clock for deterministic retention and stats windows."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
def locks() -> InMemoryLockStore:
    return InMemoryLockStore()


@pytest.fixture
def registry() -> HandlerRegistry:
    return HandlerRegistry()


@pytest.fixture
def service(store, locks, registry, clock) -> EventService:
    return EventService(
        store,
        locks,
        registry,
        max_attempts=3,
        lock_ttl=5.0,
        handler_timeout=1.0,
        clock=clock,
    )
