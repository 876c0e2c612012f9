"""Storage protocols for the event log and the distributed lock.

The EventService never touches a database or cache directly; everything goes
through these two narrow interfaces so that adapters can be swapped (SQLite
in production, in-memory for tests and local runs, Redis for locks).
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol

from eventpulse.core.event import Event, EventStatus


class EventStore(Protocol):
    """Durable record of pending, processing, processed and failed events."""

    async def append(self, event: Event) -> Event:
        """Persist a new event and return it."""
        ...

    async def get(self, event_id: str) -> Event | None:
        """Return the event with this id, or None."""
        ...

    async def fetch_pending(
        self,
        limit: int,
        types: Sequence[str] | None = None,
        max_attempts: int | None = None,
        include_processing: bool = False,
    ) -> list[Event]:
        """Return up to ``limit`` events eligible for processing.

        Args:
            limit: Maximum number of events to return.
            types: Only return events of these types when given.
            max_attempts: When given, FAILED events with fewer attempts are
                included alongside PENDING ones (the retry sweep).
            include_processing: Also return PROCESSING events, so that events
                abandoned by a crashed worker can be reclaimed once their lock
                expires.

        Returns:
            Events ordered by ``created_at``, oldest first.
        """
        ...

    async def transition(
        self,
        event_id: str,
        from_status: EventStatus,
        to_status: EventStatus,
        **fields: Any,
    ) -> bool:
        """Compare-and-swap the status of an event.

        The update applies only if the stored status still equals
        ``from_status``. Supported fields: ``attempts``, ``processed_at``,
        ``last_error``.

        Returns:
            True if the update was applied.
        """
        ...

    async def delete_older_than(
        self, status: EventStatus, cutoff: datetime, page_size: int
    ) -> int:
        """Delete at most ``page_size`` events in ``status`` processed before ``cutoff``.

        Returns:
            Number of deleted events.
        """
        ...

    async def count_by_type_and_status(
        self, organization_id: str, since: datetime
    ) -> dict[str, dict[str, int]]:
        """Count a tenant's events created at or after ``since``.

        Returns:
            ``{event_type: {status: count}}``.
        """
        ...

    async def requeue_failed(
        self, organization_id: str, event_type: str | None = None
    ) -> int:
        """Move a tenant's FAILED events back to PENDING with attempts reset.

        Returns:
            Number of requeued events.
        """
        ...

    async def close(self) -> None: ...


class LockStore(Protocol):
    """Atomic acquire-with-TTL / release primitive shared by all workers."""

    async def try_acquire(self, key: str, ttl: float) -> str | None:
        """Set the lock if absent, expiring after ``ttl`` seconds.

        Never waits for a held lock.

        Returns:
            An owner token if this caller now holds the lock, else None.
        """
        ...

    async def release(self, key: str, token: str) -> bool:
        """Release the lock only if ``token`` still owns it.

        Releasing a lock that expired and was taken by someone else leaves the
        new holder's lock in place.

        Returns:
            True if the lock was deleted.
        """
        ...

    async def close(self) -> None: ...
