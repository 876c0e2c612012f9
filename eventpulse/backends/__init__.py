"""Event store and lock store implementations."""

from eventpulse.backends.base import EventStore, LockStore
from eventpulse.backends.memory import InMemoryEventStore, InMemoryLockStore
from eventpulse.backends.redis import RedisLockStore
from eventpulse.backends.sqlite import SqliteEventStore

__all__ = [
    "EventStore",
    "LockStore",
    "InMemoryEventStore",
    "InMemoryLockStore",
    "RedisLockStore",
    "SqliteEventStore",
]
