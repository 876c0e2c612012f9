"""UserEventHandler: side effects for the ``user.*`` event family."""

from typing import Protocol

from cachetools import TTLCache

from eventpulse.core.event import Event
from eventpulse.core.handler import Handler
from eventpulse.core.logging import get_logger
from eventpulse.core.payloads import (
    UserAssignedToSchool,
    UserCreated,
    UserDeleted,
    UserRemovedFromSchool,
    UserSchoolAssignmentsUpdated,
    UserUpdated,
)

USER_EVENT_TYPES = [
    "user.created",
    "user.updated",
    "user.deleted",
    "user.assigned_to_school",
    "user.removed_from_school",
    "user.school_assignments_updated",
]


class UserCache(Protocol):
    """Cache holding per-user views that must be dropped when a user changes."""

    async def invalidate_user(self, user_id: str) -> int: ...


class RedisUserCache:
    """Deletes the cached profile, permissions and school list of a user.

    Args:
        redis: A ``redis.asyncio.Redis`` client.
    """

    KEY_PATTERNS = ("user:profile:{}", "user:permissions:{}", "user:schools:{}")

    def __init__(self, redis) -> None:
        self._redis = redis

    async def invalidate_user(self, user_id: str) -> int:
        keys = [pattern.format(user_id) for pattern in self.KEY_PATTERNS]
        return await self._redis.delete(*keys)


class UserEventHandler(Handler):
    """Handles user lifecycle and school membership events.

    Welcome emails, admin notifications and the audit trail are emitted as
    structured log records; cache invalidation goes through ``cache`` when one
    is configured.

    A failed event is retried with every handler, so welcome emails already
    queued for an event id are remembered for ``welcome_ttl`` seconds and not
    queued again.
    """

    listens_to = USER_EVENT_TYPES

    def __init__(
        self,
        cache: UserCache | None = None,
        name: str | None = None,
        welcome_ttl: float = 3600.0,
    ) -> None:
        super().__init__(name=name)
        self._cache = cache
        self._welcomed: TTLCache[str, bool] = TTLCache(maxsize=10000, ttl=welcome_ttl)
        self._log = get_logger("handlers.user")

    @property
    def cache(self) -> UserCache | None:
        return self._cache

    async def handle(self, event: Event) -> None:
        payload = event.data
        if isinstance(payload, UserCreated):
            await self._user_created(event, payload)
        elif isinstance(payload, UserUpdated):
            await self._user_updated(event, payload)
        elif isinstance(payload, UserDeleted):
            await self._user_deleted(event, payload)
        elif isinstance(payload, UserAssignedToSchool):
            await self._assigned_to_school(event, payload)
        elif isinstance(payload, UserRemovedFromSchool):
            await self._removed_from_school(event, payload)
        elif isinstance(payload, UserSchoolAssignmentsUpdated):
            await self._school_assignments_updated(event, payload)
        else:
            raise ValueError(f"Unhandled user event type: {event.type}")

    async def _user_created(self, event: Event, payload: UserCreated) -> None:
        if event.id in self._welcomed:
            self._log.debug(
                "Welcome email already queued", extra={"event_id": event.id, "user_id": payload.user_id}
            )
        else:
            self._log.info(
                "Welcome email queued",
                extra={"event_id": event.id, "user_id": payload.user_id, "email": payload.email},
            )
            self._welcomed[event.id] = True
        self._audit(event, "user_created", payload.user_id, email=payload.email, role=payload.role)

    async def _user_updated(self, event: Event, payload: UserUpdated) -> None:
        await self._invalidate(payload.user_id)
        if "role" in payload.changes:
            self._log.info(
                "Role change applied",
                extra={"user_id": payload.user_id, "role": payload.changes["role"]},
            )
        self._audit(event, "user_updated", payload.user_id, changes=payload.changes)

    async def _user_deleted(self, event: Event, payload: UserDeleted) -> None:
        await self._invalidate(payload.user_id)
        self._audit(event, "user_deleted", payload.user_id, email=payload.email)

    async def _assigned_to_school(self, event: Event, payload: UserAssignedToSchool) -> None:
        self._notify_school_admins(payload.school_id, "user_assigned", payload.user_id)
        await self._invalidate(payload.user_id)
        self._audit(
            event,
            "user_assigned_to_school",
            payload.user_id,
            school_id=payload.school_id,
            role=payload.role,
        )

    async def _removed_from_school(self, event: Event, payload: UserRemovedFromSchool) -> None:
        self._notify_school_admins(payload.school_id, "user_removed", payload.user_id)
        await self._invalidate(payload.user_id)
        self._audit(
            event, "user_removed_from_school", payload.user_id, school_id=payload.school_id
        )

    async def _school_assignments_updated(
        self, event: Event, payload: UserSchoolAssignmentsUpdated
    ) -> None:
        added, removed = diff_school_assignments(payload.previous_school_ids, payload.school_ids)
        for school_id in added:
            self._notify_school_admins(school_id, "user_assigned", payload.user_id)
        for school_id in removed:
            self._notify_school_admins(school_id, "user_removed", payload.user_id)
        await self._invalidate(payload.user_id)
        self._audit(
            event,
            "user_school_assignments_updated",
            payload.user_id,
            added=added,
            removed=removed,
        )

    async def _invalidate(self, user_id: str) -> None:
        if self._cache is not None:
            await self._cache.invalidate_user(user_id)

    def _notify_school_admins(self, school_id: str, action: str, user_id: str) -> None:
        self._log.info(
            "School admin notification queued",
            extra={"school_id": school_id, "action": action, "user_id": user_id},
        )

    def _audit(self, event: Event, action: str, user_id: str, **data) -> None:
        self._log.info(
            f"Audit: {action}",
            extra={
                "event_id": event.id,
                "organization_id": event.organization_id,
                "action": action,
                "user_id": user_id,
                "data": data,
            },
        )


def diff_school_assignments(
    previous: list[str], current: list[str]
) -> tuple[list[str], list[str]]:
    """Return (added, removed) school ids, each in first-seen order."""
    previous_set = set(previous)
    current_set = set(current)
    added = [school_id for school_id in dict.fromkeys(current) if school_id not in previous_set]
    removed = [school_id for school_id in dict.fromkeys(previous) if school_id not in current_set]
    return added, removed
