"""Core components for the eventpulse event worker.

Types:
    Event: Immutable, validated event record with status and attempt tracking.
    EventStatus: PENDING, PROCESSING, PROCESSED, FAILED.
    Handler: Abstract base class for event handlers.
    HandlerRegistry: Idempotent event type -> handlers map.
    EventService: Fetch/lock/dispatch/record orchestration.
    EventWorker: Process and cleanup loops with graceful shutdown.
    WorkerSettings: Environment-driven configuration.

Errors:
    PayloadError: Payload does not match the schema of its event type.
    InvalidTransitionError: Status change would move an event backwards.
    HandlerTimeoutError: Coroutine handler exceeded its timeout.
    EventNotFoundError: Unknown event id.
    RegistryError: Handler registered incorrectly.
"""

from eventpulse.core.event import (
    MAX_PAYLOAD_SIZE,
    Event,
    EventStatus,
    InvalidTransitionError,
)
from eventpulse.core.handler import Handler
from eventpulse.core.payloads import EventPayload, PayloadError, decode_payload
from eventpulse.core.registry import HandlerRegistry, RegistryError
from eventpulse.core.service import (
    CleanupResult,
    EventNotFoundError,
    EventService,
    HandlerTimeoutError,
    Outcome,
    ProcessResult,
)
from eventpulse.core.settings import WorkerSettings
from eventpulse.core.worker import EventWorker, WorkerState

__all__ = [
    "Event",
    "EventStatus",
    "MAX_PAYLOAD_SIZE",
    "EventPayload",
    "decode_payload",
    "Handler",
    "HandlerRegistry",
    "EventService",
    "ProcessResult",
    "CleanupResult",
    "Outcome",
    "EventWorker",
    "WorkerState",
    "WorkerSettings",
    "PayloadError",
    "InvalidTransitionError",
    "HandlerTimeoutError",
    "EventNotFoundError",
    "RegistryError",
]
