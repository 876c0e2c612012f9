"""Tests for the Event model, payload decoding and status transitions."""

import itertools
from datetime import UTC, datetime

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from pydantic import ValidationError

from eventpulse.core.event import (
    ALLOWED_TRANSITIONS,
    MAX_PAYLOAD_SIZE,
    Event,
    EventStatus,
    InvalidTransitionError,
    check_transition,
)
from eventpulse.core.payloads import (
    PayloadError,
    UserCreated,
    UserSchoolAssignmentsUpdated,
    decode_payload,
)

valid_event_type = st.from_regex(r"[a-z]+(\.[a-z_]+)?", fullmatch=True)
valid_payload = st.fixed_dictionaries(
    {},
    optional={
        "key1": st.none() | st.booleans() | st.integers(),
        "key2": st.text(max_size=20),
        "count": st.integers(min_value=0, max_value=1000),
    },
)


def make_event(**overrides) -> Event:
    fields = {"type": "test.event", "organization_id": "org-1", "payload": {}}
    fields.update(overrides)
    return Event(**fields)


class TestEventDefaults:
    def test_new_event_is_pending_with_no_attempts(self):
        event = make_event()

        assert event.status == EventStatus.PENDING
        assert event.attempts == 0
        assert event.processed_at is None
        assert event.last_error is None
        assert event.created_at.tzinfo is not None

    def test_type_and_organization_are_stripped(self):
        event = make_event(type="  user.created ", organization_id=" org-9 ")
        assert event.type == "user.created"
        assert event.organization_id == "org-9"

    def test_id_is_normalized_to_lowercase(self):
        event = make_event(id="A1B2C3D4-E5F6-4789-8ABC-DEF012345678")
        assert event.id == "a1b2c3d4-e5f6-4789-8abc-def012345678"


class TestEventValidation:
    @pytest.mark.parametrize("bad_id", ["", "not-a-uuid", "12345678-1234-1234-1234-123456789012"])
    def test_rejects_invalid_id(self, bad_id):
        with pytest.raises(ValidationError):
            make_event(id=bad_id)

    @pytest.mark.parametrize("field", ["type", "organization_id"])
    @pytest.mark.parametrize("blank", ["", "   ", "\t\n"])
    def test_rejects_blank_required_strings(self, field, blank):
        with pytest.raises(ValidationError):
            make_event(**{field: blank})

    def test_rejects_non_json_payload(self):
        with pytest.raises(ValidationError, match="JSON-serializable"):
            make_event(payload={"when": datetime.now(UTC)})

    def test_rejects_oversized_payload(self):
        with pytest.raises(ValidationError, match="maximum size"):
            make_event(payload={"blob": "x" * MAX_PAYLOAD_SIZE})

    def test_rejects_negative_attempts(self):
        with pytest.raises(ValidationError):
            make_event(attempts=-1)

    def test_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            make_event(priority=5)

    def test_is_frozen(self):
        event = make_event()
        with pytest.raises(ValidationError):
            event.status = EventStatus.PROCESSED


@given(event_type=valid_event_type, payload=valid_payload)
@settings(max_examples=50)
def test_event_serialization_round_trip(event_type: str, payload: dict):
    """Dumping an Event and rebuilding it yields an equal Event."""
    original = make_event(type=event_type, payload=payload)
    reconstructed = Event(**original.model_dump())

    assert reconstructed == original


@given(count=st.integers(min_value=2, max_value=20))
def test_event_id_uniqueness(count: int):
    ids = [make_event().id for _ in range(count)]
    assert len(ids) == len(set(ids))


class TestPayloadDecoding:
    def test_known_type_decodes_camel_case_payload(self):
        event = make_event(
            type="user.created",
            payload={"userId": "u1", "email": "a@example.com", "role": "TEACHER"},
        )

        assert isinstance(event.data, UserCreated)
        assert event.data.user_id == "u1"
        assert event.data.role == "TEACHER"

    def test_known_type_decodes_snake_case_payload(self):
        data = decode_payload(
            "user.school_assignments_updated",
            {"user_id": "u1", "school_ids": ["s1"], "previous_school_ids": []},
        )
        assert isinstance(data, UserSchoolAssignmentsUpdated)
        assert data.school_ids == ["s1"]

    def test_unknown_type_decodes_to_none(self):
        assert make_event(type="invoice.paid", payload={"anything": 1}).data is None

    def test_invalid_payload_raises_payload_error(self):
        event = make_event(type="user.created", payload={"email": "missing-user-id@example.com"})

        with pytest.raises(PayloadError) as exc_info:
            event.data

        assert exc_info.value.event_type == "user.created"
        assert "user.created" in str(exc_info.value)

    def test_payload_type_key_cannot_override_event_type(self):
        data = decode_payload(
            "user.deleted", {"type": "user.created", "userId": "u1", "email": "x@example.com"}
        )
        assert data.type == "user.deleted"


class TestCanRetry:
    @pytest.mark.parametrize(
        "status,attempts,expected",
        [
            (EventStatus.PENDING, 0, True),
            (EventStatus.FAILED, 2, True),
            (EventStatus.FAILED, 3, False),
            (EventStatus.PROCESSING, 0, False),
            (EventStatus.PROCESSED, 1, False),
        ],
    )
    def test_can_retry(self, status, attempts, expected):
        assert make_event(status=status, attempts=attempts).can_retry(3) is expected


@pytest.mark.parametrize(
    "from_status,to_status", list(itertools.product(EventStatus, EventStatus))
)
def test_check_transition_matches_allowed_set(from_status, to_status):
    if (from_status, to_status) in ALLOWED_TRANSITIONS:
        check_transition(from_status, to_status)
    else:
        with pytest.raises(InvalidTransitionError):
            check_transition(from_status, to_status)


@pytest.mark.parametrize("to_status", list(EventStatus))
def test_processed_is_final(to_status):
    with pytest.raises(InvalidTransitionError):
        check_transition(EventStatus.PROCESSED, to_status)
