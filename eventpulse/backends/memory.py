"""In-memory event and lock stores.

Suitable for development and tests. Nothing survives the process, and the
lock is only exclusive between coroutines that share the same store object.
"""

import time
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any
from uuid import uuid4

from eventpulse.core.event import Event, EventStatus, check_transition

_TRANSITION_FIELDS = frozenset({"attempts", "processed_at", "last_error"})


class InMemoryEventStore:
    """Dict-backed event log keyed by event id.

    None of the methods await between reading and writing, so each call is
    atomic with respect to other coroutines on the same event loop.
    """

    def __init__(self) -> None:
        self._events: dict[str, Event] = {}

    async def append(self, event: Event) -> Event:
        if event.id in self._events:
            raise ValueError(f"Event {event.id} already exists")
        self._events[event.id] = event
        return event

    async def get(self, event_id: str) -> Event | None:
        return self._events.get(event_id)

    async def fetch_pending(
        self,
        limit: int,
        types: Sequence[str] | None = None,
        max_attempts: int | None = None,
        include_processing: bool = False,
    ) -> list[Event]:
        eligible = []
        for event in self._events.values():
            if types is not None and event.type not in types:
                continue
            if event.status == EventStatus.PENDING:
                eligible.append(event)
            elif include_processing and event.status == EventStatus.PROCESSING:
                eligible.append(event)
            elif (
                max_attempts is not None
                and event.status == EventStatus.FAILED
                and event.attempts < max_attempts
            ):
                eligible.append(event)
        # sorted() is stable, so equal timestamps keep insertion order
        eligible.sort(key=lambda e: e.created_at)
        return eligible[:limit]

    async def transition(
        self,
        event_id: str,
        from_status: EventStatus,
        to_status: EventStatus,
        **fields: Any,
    ) -> bool:
        check_transition(from_status, to_status)
        unknown = set(fields) - _TRANSITION_FIELDS
        if unknown:
            raise ValueError(f"Unsupported transition fields: {sorted(unknown)}")

        current = self._events.get(event_id)
        if current is None or current.status != from_status:
            return False
        self._events[event_id] = current.model_copy(update={"status": to_status, **fields})
        return True

    async def delete_older_than(
        self, status: EventStatus, cutoff: datetime, page_size: int
    ) -> int:
        doomed = [
            event.id
            for event in self._events.values()
            if event.status == status
            and event.processed_at is not None
            and event.processed_at < cutoff
        ][:page_size]
        for event_id in doomed:
            del self._events[event_id]
        return len(doomed)

    async def count_by_type_and_status(
        self, organization_id: str, since: datetime
    ) -> dict[str, dict[str, int]]:
        stats: dict[str, dict[str, int]] = {}
        for event in self._events.values():
            if event.organization_id != organization_id or event.created_at < since:
                continue
            by_status = stats.setdefault(event.type, {})
            by_status[event.status.value] = by_status.get(event.status.value, 0) + 1
        return stats

    async def requeue_failed(
        self, organization_id: str, event_type: str | None = None
    ) -> int:
        requeued = 0
        for event_id, event in list(self._events.items()):
            if event.status != EventStatus.FAILED or event.organization_id != organization_id:
                continue
            if event_type is not None and event.type != event_type:
                continue
            self._events[event_id] = event.model_copy(
                update={"status": EventStatus.PENDING, "attempts": 0}
            )
            requeued += 1
        return requeued

    async def close(self) -> None:
        pass

    def __len__(self) -> int:
        return len(self._events)


class InMemoryLockStore:
    """Process-local lock table with TTL expiry.

    Args:
        clock: Monotonic time source in seconds. Overridable for tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        # key -> (owner token, expiry)
        self._locks: dict[str, tuple[str, float]] = {}

    async def try_acquire(self, key: str, ttl: float) -> str | None:
        now = self._clock()
        held = self._locks.get(key)
        if held is not None and held[1] > now:
            return None
        token = uuid4().hex
        self._locks[key] = (token, now + ttl)
        return token

    async def release(self, key: str, token: str) -> bool:
        held = self._locks.get(key)
        if held is None or held[0] != token:
            return False
        del self._locks[key]
        return True

    def is_locked(self, key: str) -> bool:
        held = self._locks.get(key)
        return held is not None and held[1] > self._clock()

    async def close(self) -> None:
        self._locks.clear()
