"""Typed payload schemas for the event types eventpulse knows how to decode.

Each schema carries a ``type`` literal so the set of payloads forms a tagged
union. Decoding happens at the dispatch boundary: write paths store plain JSON
dictionaries and handlers receive the validated model through ``Event.data``.
Payload keys are accepted in either camelCase (as emitted by the web tier) or
snake_case.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel


class PayloadError(ValueError):
    """Raised when an event payload does not match the schema for its type."""

    def __init__(self, event_type: str, detail: str):
        self.event_type = event_type
        self.detail = detail
        super().__init__(f"Invalid payload for {event_type}: {detail}")


class _Payload(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class UserCreated(_Payload):
    type: Literal["user.created"] = "user.created"
    user_id: str
    email: str
    role: str | None = None


class UserUpdated(_Payload):
    type: Literal["user.updated"] = "user.updated"
    user_id: str
    changes: dict[str, Any] = Field(default_factory=dict)


class UserDeleted(_Payload):
    type: Literal["user.deleted"] = "user.deleted"
    user_id: str
    email: str | None = None


class UserAssignedToSchool(_Payload):
    type: Literal["user.assigned_to_school"] = "user.assigned_to_school"
    user_id: str
    school_id: str
    role: str | None = None


class UserRemovedFromSchool(_Payload):
    type: Literal["user.removed_from_school"] = "user.removed_from_school"
    user_id: str
    school_id: str


class UserSchoolAssignmentsUpdated(_Payload):
    type: Literal["user.school_assignments_updated"] = "user.school_assignments_updated"
    user_id: str
    school_ids: list[str] = Field(default_factory=list)
    previous_school_ids: list[str] = Field(default_factory=list)


EventPayload = Annotated[
    Union[
        UserCreated,
        UserUpdated,
        UserDeleted,
        UserAssignedToSchool,
        UserRemovedFromSchool,
        UserSchoolAssignmentsUpdated,
    ],
    Field(discriminator="type"),
]

_ADAPTER: TypeAdapter[EventPayload] = TypeAdapter(EventPayload)

KNOWN_EVENT_TYPES: frozenset[str] = frozenset(
    {
        "user.created",
        "user.updated",
        "user.deleted",
        "user.assigned_to_school",
        "user.removed_from_school",
        "user.school_assignments_updated",
    }
)


def decode_payload(event_type: str, payload: dict[str, Any]) -> EventPayload | None:
    """Decode a raw payload into its typed schema.

    Returns None for event types without a schema so that events emitted ahead
    of a deploy still flow through the queue.

    Raises:
        PayloadError: If the type is known but the payload does not validate.
    """
    if event_type not in KNOWN_EVENT_TYPES:
        return None
    try:
        return _ADAPTER.validate_python({**payload, "type": event_type})
    except ValidationError as e:
        raise PayloadError(event_type, str(e)) from e
