"""eventpulse - durable background event processing for the school platform."""

from eventpulse.backends import (
    EventStore,
    InMemoryEventStore,
    InMemoryLockStore,
    LockStore,
    RedisLockStore,
    SqliteEventStore,
)
from eventpulse.core import (
    CleanupResult,
    Event,
    EventNotFoundError,
    EventService,
    EventStatus,
    EventWorker,
    Handler,
    HandlerRegistry,
    HandlerTimeoutError,
    InvalidTransitionError,
    Outcome,
    PayloadError,
    ProcessResult,
    RegistryError,
    WorkerSettings,
    WorkerState,
)

__version__ = "0.1.0"

__all__ = [
    # Core
    "Event",
    "EventStatus",
    "Handler",
    "HandlerRegistry",
    "EventService",
    "ProcessResult",
    "CleanupResult",
    "Outcome",
    "EventWorker",
    "WorkerState",
    "WorkerSettings",
    # Errors
    "PayloadError",
    "InvalidTransitionError",
    "HandlerTimeoutError",
    "EventNotFoundError",
    "RegistryError",
    # Stores
    "EventStore",
    "LockStore",
    "InMemoryEventStore",
    "InMemoryLockStore",
    "SqliteEventStore",
    "RedisLockStore",
    # Meta
    "__version__",
]
