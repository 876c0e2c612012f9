"""EventService: fetch -> lock -> dispatch -> record -> unlock.

The service is the only component that mutates events. Per-event problems
(handler exceptions, timeouts, invalid payloads, lock contention) are recorded
on the event or counted and never escape ``process_pending_events``. Store and
lock-store failures are systemic and propagate to the caller.
"""

import asyncio
import inspect
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from eventpulse.core.event import Event, EventStatus
from eventpulse.core.handler import Handler
from eventpulse.core.logging import get_logger
from eventpulse.core.payloads import PayloadError
from eventpulse.core.registry import HandlerRegistry

if TYPE_CHECKING:
    from eventpulse.backends.base import EventStore, LockStore
    from eventpulse.core.settings import WorkerSettings

DEFAULT_BATCH_SIZE = 50
DEFAULT_RETENTION_DAYS = 7
DEFAULT_MAX_ATTEMPTS = 3


class HandlerTimeoutError(TimeoutError):
    """Raised when a handler exceeds the configured timeout."""

    def __init__(self, handler_name: str, timeout: float):
        self.handler_name = handler_name
        self.timeout = timeout
        super().__init__(f"Handler {handler_name} timed out after {timeout}s")


class EventNotFoundError(LookupError):
    """Raised when processing is requested for an unknown event id."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event not found: {event_id}")


class Outcome(Enum):
    """Result of one processing attempt."""

    PROCESSED = "processed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ProcessResult:
    """Counts from one ``process_pending_events`` call.

    ``skipped`` covers events that were locked by another worker or changed
    status between fetch and claim. It is reported separately and never
    counted as a failure.
    """

    processed: int = 0
    failed: int = 0
    skipped: int = 0

    def as_dict(self) -> dict[str, int]:
        return {"processed": self.processed, "failed": self.failed, "skipped": self.skipped}


@dataclass
class CleanupResult:
    """Result of a retention sweep."""

    deleted: int = 0


def _utcnow() -> datetime:
    return datetime.now(UTC)


class EventService:
    """Orchestrates event processing against an event store and a lock store.

    Args:
        store: Durable event log.
        locks: Shared lock store providing per-event mutual exclusion.
        registry: Handler registry used to resolve handlers at dispatch time.
        batch_size: Default number of events fetched per batch.
        retention_days: Default age for the retention sweep.
        max_attempts: Attempts after which a failing event stays FAILED.
        lock_ttl: Lease in seconds for the per-event lock.
        handler_timeout: Seconds a handler may run, sync or async.
        cleanup_page_size: Rows deleted per statement by the retention sweep.
        lock_prefix: Prefix for lock keys; the key is prefix + event id.
        clock: Source of the current UTC time.
    """

    def __init__(
        self,
        store: "EventStore",
        locks: "LockStore",
        registry: HandlerRegistry,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        retention_days: float = DEFAULT_RETENTION_DAYS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        lock_ttl: float = 60.0,
        handler_timeout: float = 30.0,
        cleanup_page_size: int = 500,
        lock_prefix: str = "event:lock:",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        if cleanup_page_size < 1:
            raise ValueError(f"cleanup_page_size must be >= 1, got {cleanup_page_size}")
        self.store = store
        self.locks = locks
        self.registry = registry
        self.batch_size = batch_size
        self.retention_days = retention_days
        self.max_attempts = max_attempts
        self.lock_ttl = lock_ttl
        self.handler_timeout = handler_timeout
        self.cleanup_page_size = cleanup_page_size
        self.lock_prefix = lock_prefix
        self._clock = clock
        self._log = get_logger("service")

    @classmethod
    def from_settings(
        cls,
        settings: "WorkerSettings",
        store: "EventStore",
        locks: "LockStore",
        registry: HandlerRegistry,
    ) -> "EventService":
        return cls(
            store,
            locks,
            registry,
            batch_size=settings.batch_size,
            retention_days=settings.retention_days,
            max_attempts=settings.max_attempts,
            lock_ttl=settings.lock_ttl,
            handler_timeout=settings.handler_timeout,
            cleanup_page_size=settings.cleanup_page_size,
            lock_prefix=settings.lock_prefix,
        )

    def lock_key(self, event_id: str) -> str:
        return f"{self.lock_prefix}{event_id}"

    @asynccontextmanager
    async def _event_lock(self, event_id: str) -> AsyncIterator[bool]:
        """Try the per-event lock once; release it on every exit path if taken."""
        key = self.lock_key(event_id)
        token = await self.locks.try_acquire(key, self.lock_ttl)
        try:
            yield token is not None
        finally:
            if token is not None:
                try:
                    await self.locks.release(key, token)
                except Exception as e:
                    # The lease expires on its own; the event is retried after lock_ttl
                    self._log.error(
                        f"Failed to release lock {key}: {e}",
                        extra={"event_id": event_id, "error": str(e)},
                    )

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def emit(
        self,
        event_type: str,
        payload: dict[str, Any],
        organization_id: str,
        user_id: str | None = None,
    ) -> Event:
        """Append a PENDING event for asynchronous processing.

        Raises:
            PayloadError: If ``event_type`` has a schema the payload violates.
            pydantic.ValidationError: If the event itself is malformed.
        """
        event = Event(
            type=event_type,
            payload=payload,
            organization_id=organization_id,
            user_id=user_id,
        )
        event.data  # noqa: B018 - validates known payloads before they reach the queue
        await self.store.append(event)
        self._log.info(
            f"Event emitted: {event.type}",
            extra={
                "event_id": event.id,
                "event_type": event.type,
                "organization_id": event.organization_id,
            },
        )
        return event

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_pending_events(self, batch_size: int | None = None) -> ProcessResult:
        """Process one bounded batch of eligible events.

        Eligible events are PENDING ones, FAILED ones with attempts left, and
        PROCESSING ones whose worker died (their lock has expired). Events
        whose lock is held elsewhere are skipped without waiting.

        Args:
            batch_size: Maximum events to fetch. Defaults to ``self.batch_size``.

        Returns:
            Counts of processed, failed and skipped events.
        """
        limit = self.batch_size if batch_size is None else batch_size
        if limit < 1:
            raise ValueError(f"batch_size must be >= 1, got {limit}")

        events = await self.store.fetch_pending(
            limit, max_attempts=self.max_attempts, include_processing=True
        )
        result = ProcessResult()
        for event in events:
            outcome = await self._process(event)
            if outcome is Outcome.PROCESSED:
                result.processed += 1
            elif outcome is Outcome.FAILED:
                result.failed += 1
            else:
                result.skipped += 1

        if events:
            self._log.info(
                "Batch event processing completed",
                extra={"total_events": len(events), **result.as_dict()},
            )
        return result

    async def process_event(self, event_id: str) -> Outcome:
        """Process a single event by id under the same rules as a batch.

        Raises:
            EventNotFoundError: If no event has this id.
        """
        event = await self.store.get(event_id)
        if event is None:
            raise EventNotFoundError(event_id)
        return await self._process(event)

    async def _process(self, snapshot: Event) -> Outcome:
        async with self._event_lock(snapshot.id) as acquired:
            if not acquired:
                self._log.debug(
                    "Event locked by another worker, skipping",
                    extra={"event_id": snapshot.id, "event_type": snapshot.type},
                )
                return Outcome.SKIPPED

            # Re-read under the lock: the fetched row may be stale
            event = await self.store.get(snapshot.id)
            if event is None:
                return Outcome.SKIPPED

            if event.status == EventStatus.PROCESSING:
                # Only reachable when the previous holder died and its lease expired
                if event.attempts >= self.max_attempts:
                    return await self._abandon(event)
            elif not event.can_retry(self.max_attempts):
                self._log.debug(
                    f"Event not eligible ({event.status.value}), skipping",
                    extra={"event_id": event.id, "event_type": event.type},
                )
                return Outcome.SKIPPED

            attempts = event.attempts + 1
            claimed = await self.store.transition(
                event.id, event.status, EventStatus.PROCESSING, attempts=attempts
            )
            if not claimed:
                return Outcome.SKIPPED

            errors = await self._dispatch(event)

            if not errors:
                await self.store.transition(
                    event.id,
                    EventStatus.PROCESSING,
                    EventStatus.PROCESSED,
                    processed_at=self._clock(),
                    last_error=None,
                )
                self._log.info(
                    f"Event processed successfully: {event.type}",
                    extra={"event_id": event.id, "event_type": event.type, "attempts": attempts},
                )
                return Outcome.PROCESSED

            message = "; ".join(errors)
            await self.store.transition(
                event.id, EventStatus.PROCESSING, EventStatus.FAILED, last_error=message
            )
            if attempts >= self.max_attempts:
                self._log.error(
                    f"Event processing failed permanently: {event.type}",
                    extra={
                        "event_id": event.id,
                        "event_type": event.type,
                        "attempts": attempts,
                        "error": message,
                    },
                )
            else:
                self._log.warning(
                    f"Event processing failed, will retry: {event.type}",
                    extra={
                        "event_id": event.id,
                        "event_type": event.type,
                        "attempts": attempts,
                        "error": message,
                    },
                )
            return Outcome.FAILED

    async def _abandon(self, event: Event) -> Outcome:
        message = f"abandoned while processing after {event.attempts} attempts"
        moved = await self.store.transition(
            event.id, EventStatus.PROCESSING, EventStatus.FAILED, last_error=message
        )
        if not moved:
            return Outcome.SKIPPED
        self._log.error(
            f"Event processing failed permanently: {event.type}",
            extra={
                "event_id": event.id,
                "event_type": event.type,
                "attempts": event.attempts,
                "error": message,
            },
        )
        return Outcome.FAILED

    async def _dispatch(self, event: Event) -> list[str]:
        """Run every handler for the event; return the error messages.

        An empty list means success. Each handler runs inside its own error
        boundary and all of them run even if an earlier one fails.
        """
        try:
            event.data  # noqa: B018 - decode once at the dispatch boundary
        except PayloadError as e:
            self._log.error(
                str(e), extra={"event_id": event.id, "event_type": event.type}
            )
            return [str(e)]

        handlers = self.registry.resolve(event.type)
        if not handlers:
            self._log.debug(
                f"No handlers registered for {event.type}, marking processed",
                extra={"event_id": event.id, "event_type": event.type},
            )
            return []

        errors: list[str] = []
        for handler in handlers:
            name = getattr(handler, "name", type(handler).__name__)
            self._log.info(
                f"Dispatching {event.type} to {name}",
                extra={"event_id": event.id, "event_type": event.type, "handler": name},
            )
            try:
                await self._invoke_handler(handler, event)
            except Exception as e:
                errors.append(f"{name}: {e}")
                self._log.error(
                    f"Handler {name} raised exception: {e}",
                    extra={
                        "event_id": event.id,
                        "event_type": event.type,
                        "handler": name,
                        "error": str(e),
                    },
                )
        return errors

    async def _invoke_handler(self, handler: Handler, event: Event) -> None:
        """Invoke a handler within ``handler_timeout``.

        Coroutine handlers run on the event loop. Synchronous handlers run in a
        worker thread so a blocking call cannot stall the loop or outlive the
        event lock. A timed-out thread cannot be interrupted and finishes in
        the background; the attempt is recorded as failed regardless.
        """
        if inspect.iscoroutinefunction(handler.handle):
            call = handler.handle(event)
        else:
            call = asyncio.to_thread(handler.handle, event)
        scope = asyncio.timeout(self.handler_timeout)
        try:
            async with scope:
                result = await call
                if inspect.isawaitable(result):
                    await result
        except TimeoutError:
            if not scope.expired():
                raise
            raise HandlerTimeoutError(
                getattr(handler, "name", type(handler).__name__), self.handler_timeout
            ) from None

    # ------------------------------------------------------------------
    # Maintenance and reporting
    # ------------------------------------------------------------------

    async def cleanup_processed_events(self, retention_days: float | None = None) -> CleanupResult:
        """Delete PROCESSED events whose processed_at is older than the retention window.

        Deletes in pages of ``cleanup_page_size`` so no single statement holds
        a long transaction. PENDING, PROCESSING and FAILED events are never
        touched.
        """
        days = self.retention_days if retention_days is None else retention_days
        if days < 0:
            raise ValueError(f"retention_days must be >= 0, got {days}")

        cutoff = self._clock() - timedelta(days=days)
        deleted = 0
        while True:
            page = await self.store.delete_older_than(
                EventStatus.PROCESSED, cutoff, self.cleanup_page_size
            )
            deleted += page
            if page < self.cleanup_page_size:
                break

        self._log.info(
            "Cleaned up old processed events",
            extra={"deleted": deleted, "cutoff": cutoff.isoformat()},
        )
        return CleanupResult(deleted=deleted)

    async def get_event_stats(
        self, organization_id: str, window_hours: float = 24
    ) -> dict[str, dict[str, int]]:
        """Count a tenant's events by type and status over a trailing window.

        Returns:
            ``{event_type: {status: count}}`` for events created in the window.
        """
        if window_hours <= 0:
            raise ValueError(f"window_hours must be > 0, got {window_hours}")
        since = self._clock() - timedelta(hours=window_hours)
        return await self.store.count_by_type_and_status(organization_id, since)

    async def requeue_failed_events(
        self, organization_id: str, event_type: str | None = None
    ) -> int:
        """Operator action: give a tenant's FAILED events a fresh set of attempts.

        Nothing in the worker calls this; terminally failed events stay FAILED
        until someone does.
        """
        requeued = await self.store.requeue_failed(organization_id, event_type)
        self._log.warning(
            "Requeued failed events",
            extra={
                "organization_id": organization_id,
                "event_type": event_type,
                "requeued": requeued,
            },
        )
        return requeued
