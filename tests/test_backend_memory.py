"""Tests for the in-memory event and lock stores."""

import asyncio
from datetime import timedelta

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from eventpulse.backends.memory import InMemoryEventStore, InMemoryLockStore
from eventpulse.core.event import Event, EventStatus, InvalidTransitionError


def make_event(**overrides) -> Event:
    fields = {"type": "test.event", "organization_id": "org-1"}
    fields.update(overrides)
    return Event(**fields)


class ManualClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestInMemoryEventStore:
    async def test_append_and_get(self, store):
        event = make_event(payload={"k": "v"})
        await store.append(event)

        assert await store.get(event.id) == event
        assert await store.get("00000000-0000-4000-8000-000000000000") is None

    async def test_duplicate_append_raises(self, store):
        event = make_event()
        await store.append(event)

        with pytest.raises(ValueError, match="already exists"):
            await store.append(event)

    async def test_fetch_pending_eligibility(self, store, clock):
        pending = make_event(created_at=clock.now - timedelta(minutes=5))
        retryable = make_event(status=EventStatus.FAILED, attempts=1, created_at=clock.now - timedelta(minutes=4))
        exhausted = make_event(status=EventStatus.FAILED, attempts=3)
        processing = make_event(status=EventStatus.PROCESSING, attempts=1, created_at=clock.now - timedelta(minutes=3))
        done = make_event(status=EventStatus.PROCESSED, processed_at=clock.now)
        for event in (done, processing, exhausted, retryable, pending):
            await store.append(event)

        assert await store.fetch_pending(10) == [pending]
        assert [e.id for e in await store.fetch_pending(10, max_attempts=3)] == [pending.id, retryable.id]
        assert [
            e.id for e in await store.fetch_pending(10, max_attempts=3, include_processing=True)
        ] == [pending.id, retryable.id, processing.id]

    async def test_fetch_pending_filters_by_type(self, store):
        wanted = make_event(type="user.created", payload={"userId": "u", "email": "e"})
        await store.append(wanted)
        await store.append(make_event(type="user.deleted"))

        assert await store.fetch_pending(10, types=["user.created"]) == [wanted]

    async def test_transition_is_compare_and_set(self, store):
        event = make_event()
        await store.append(event)

        assert await store.transition(event.id, EventStatus.PENDING, EventStatus.PROCESSING, attempts=1)
        assert not await store.transition(event.id, EventStatus.PENDING, EventStatus.PROCESSING, attempts=2)

        stored = await store.get(event.id)
        assert stored.status == EventStatus.PROCESSING
        assert stored.attempts == 1

    async def test_transition_rejects_disallowed_moves_and_fields(self, store):
        event = make_event()
        await store.append(event)

        with pytest.raises(InvalidTransitionError):
            await store.transition(event.id, EventStatus.PENDING, EventStatus.PROCESSED)
        with pytest.raises(ValueError, match="Unsupported"):
            await store.transition(event.id, EventStatus.PENDING, EventStatus.PROCESSING, type="x")

    async def test_transition_unknown_event_returns_false(self, store):
        assert not await store.transition(
            "00000000-0000-4000-8000-000000000000", EventStatus.PENDING, EventStatus.PROCESSING
        )

    async def test_delete_older_than_respects_page_size(self, store, clock):
        old = clock.now - timedelta(days=30)
        for _ in range(3):
            await store.append(make_event(status=EventStatus.PROCESSED, processed_at=old))
        await store.append(make_event(status=EventStatus.FAILED, created_at=old))

        assert await store.delete_older_than(EventStatus.PROCESSED, clock.now, 2) == 2
        assert await store.delete_older_than(EventStatus.PROCESSED, clock.now, 2) == 1
        assert await store.delete_older_than(EventStatus.PROCESSED, clock.now, 2) == 0
        assert len(store) == 1

    async def test_requeue_failed_scoped_by_org_and_type(self, store):
        mine = make_event(status=EventStatus.FAILED, attempts=3)
        other_type = make_event(type="other.event", status=EventStatus.FAILED, attempts=3)
        other_org = make_event(organization_id="org-2", status=EventStatus.FAILED, attempts=3)
        for event in (mine, other_type, other_org):
            await store.append(event)

        assert await store.requeue_failed("org-1", "test.event") == 1

        requeued = await store.get(mine.id)
        assert (requeued.status, requeued.attempts) == (EventStatus.PENDING, 0)
        assert (await store.get(other_type.id)).status == EventStatus.FAILED
        assert (await store.get(other_org.id)).status == EventStatus.FAILED


@settings(max_examples=50)
@given(offsets=st.lists(st.integers(min_value=0, max_value=10_000), min_size=1, max_size=20))
def test_fetch_pending_returns_oldest_first(offsets: list[int]):
    """Whatever the insertion order, pending events come back ordered by creation time."""
    store = InMemoryEventStore()
    base = make_event().created_at
    events = [make_event(created_at=base - timedelta(seconds=s)) for s in offsets]

    async def scenario() -> list[Event]:
        for event in events:
            await store.append(event)
        return await store.fetch_pending(len(events))

    fetched = asyncio.run(scenario())

    assert [e.created_at for e in fetched] == sorted(e.created_at for e in events)


class TestInMemoryLockStore:
    async def test_second_acquire_fails_until_release(self):
        locks = InMemoryLockStore()

        token = await locks.try_acquire("k", ttl=10)
        assert token is not None
        assert await locks.try_acquire("k", ttl=10) is None
        assert await locks.release("k", token)
        assert await locks.try_acquire("k", ttl=10) is not None

    async def test_lock_expires_after_ttl(self):
        clock = ManualClock()
        locks = InMemoryLockStore(clock=clock)

        assert await locks.try_acquire("k", ttl=5)
        clock.now += 4.9
        assert locks.is_locked("k")
        clock.now += 0.2
        assert not locks.is_locked("k")
        assert await locks.try_acquire("k", ttl=5)

    async def test_stale_owner_cannot_release_new_holder(self):
        clock = ManualClock()
        locks = InMemoryLockStore(clock=clock)

        stale = await locks.try_acquire("k", ttl=1)
        clock.now += 2
        current = await locks.try_acquire("k", ttl=10)

        assert current is not None and current != stale
        assert not await locks.release("k", stale)
        assert locks.is_locked("k")
        assert await locks.release("k", current)
        assert not locks.is_locked("k")

    async def test_release_of_unheld_key_is_a_noop(self):
        locks = InMemoryLockStore()
        assert not await locks.release("never-held", "no-token")
        assert not locks.is_locked("never-held")

    async def test_keys_are_independent(self):
        locks = InMemoryLockStore()

        assert await locks.try_acquire("a", ttl=10)
        assert await locks.try_acquire("b", ttl=10)
