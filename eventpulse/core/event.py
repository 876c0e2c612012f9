"""Event model for eventpulse."""

import json
import re
from datetime import UTC, datetime
from enum import Enum
from functools import cached_property
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from eventpulse.core.payloads import EventPayload, decode_payload

# UUID v4 regex pattern for validation
_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

# Maximum payload size (1MB)
MAX_PAYLOAD_SIZE = 1_000_000


class EventStatus(str, Enum):
    """Lifecycle of a queued event.

    PENDING -> PROCESSING -> PROCESSED | FAILED, and FAILED -> PROCESSING while
    attempts remain. PROCESSED is final. A PROCESSING event can only be
    reclaimed once the lock of the worker that claimed it has expired.
    """

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"


ALLOWED_TRANSITIONS: frozenset[tuple[EventStatus, EventStatus]] = frozenset(
    {
        (EventStatus.PENDING, EventStatus.PROCESSING),
        (EventStatus.FAILED, EventStatus.PROCESSING),
        # reclaiming an event whose worker died mid-dispatch
        (EventStatus.PROCESSING, EventStatus.PROCESSING),
        (EventStatus.PROCESSING, EventStatus.PROCESSED),
        (EventStatus.PROCESSING, EventStatus.FAILED),
    }
)


class InvalidTransitionError(ValueError):
    """Raised when a status change would move an event backwards."""

    def __init__(self, from_status: EventStatus, to_status: EventStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Cannot move event from {from_status.value} to {to_status.value}")


def check_transition(from_status: EventStatus, to_status: EventStatus) -> None:
    """Raise InvalidTransitionError unless the status change is allowed."""
    if (from_status, to_status) not in ALLOWED_TRANSITIONS:
        raise InvalidTransitionError(from_status, to_status)


class Event(BaseModel):
    """Immutable, validated record of a fact awaiting asynchronous processing.

    Events are created by write paths, mutated only by the EventService (each
    mutation produces a new copy in the store) and deleted only by the
    retention sweep.

    Attributes:
        id: UUID v4 string, auto-generated if not provided.
        type: Non-empty dispatch discriminator, e.g. ``user.created``.
        payload: JSON-serializable dictionary (max 1MB when serialized).
        organization_id: Tenant the event belongs to.
        user_id: Optional actor that caused the event.
        status: Current lifecycle status.
        attempts: Number of processing attempts started so far.
        created_at: UTC creation time, used for FIFO ordering.
        processed_at: UTC time the event reached PROCESSED.
        last_error: Error recorded by the most recent failed attempt.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    organization_id: str
    user_id: str | None = None
    status: EventStatus = EventStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    processed_at: datetime | None = None
    last_error: str | None = None

    model_config = {
        "extra": "forbid",
        "frozen": True,
    }

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Ensure id is a valid UUID v4 string."""
        if not _UUID_PATTERN.match(v):
            raise ValueError(f"id must be a valid UUID v4 string, got: {v!r}")
        return v.lower()

    @field_validator("type", "organization_id")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("payload")
    @classmethod
    def validate_payload(cls, v: dict[str, Any]) -> dict[str, Any]:
        """Ensure payload is strictly JSON-serializable and within size limits."""
        try:
            serialized = json.dumps(v)
        except (TypeError, ValueError) as e:
            raise ValueError(f"payload must be JSON-serializable: {e}") from e

        byte_length = len(serialized.encode("utf-8"))
        if byte_length > MAX_PAYLOAD_SIZE:
            raise ValueError(
                f"payload exceeds maximum size of {MAX_PAYLOAD_SIZE} bytes "
                f"(got {byte_length} bytes)"
            )
        return v

    @cached_property
    def data(self) -> EventPayload | None:
        """Typed payload for known event types, None for unknown ones.

        Raises:
            PayloadError: If the payload does not match the schema of its type.
        """
        return decode_payload(self.type, self.payload)

    def can_retry(self, max_attempts: int) -> bool:
        """Whether the event is eligible for another automatic attempt."""
        return (
            self.status in (EventStatus.PENDING, EventStatus.FAILED)
            and self.attempts < max_attempts
        )
