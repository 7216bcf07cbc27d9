"""Unit tests for the wire envelope and the event vocabulary."""

from __future__ import annotations

import json
import uuid

import pytest
from pydantic import ValidationError

from carecircle_events.core.events.envelope import DEFAULT_SOURCE, SPEC_VERSION, EventEnvelope
from carecircle_events.core.events.types import (
    EMERGENCY_PRIORITY,
    EventType,
    NotificationChannel,
    is_safety_critical,
    priority_for,
)

# ──────────────────────────────────────────────────────
# EventEnvelope
# ──────────────────────────────────────────────────────


class TestEventEnvelopeCreate:
    """Test suite for EventEnvelope.create()."""

    def test_generates_identity_fields(self):
        """Test that id, timestamp and correlation id are generated."""
        envelope = EventEnvelope.create("medication.logged", {"dose": "5mg"})

        assert uuid.UUID(envelope.id).version == 7
        assert envelope.timestamp.tzinfo is not None
        assert envelope.correlation_id
        assert envelope.source == DEFAULT_SOURCE
        assert envelope.spec_version == SPEC_VERSION

    def test_keeps_supplied_correlation_id(self):
        """Test that an explicit correlation id is not replaced."""
        envelope = EventEnvelope.create("shift.started", {}, correlation_id="req-42")

        assert envelope.correlation_id == "req-42"

    def test_accepts_enum_member_as_type(self):
        """Test that EventType members are stored as their routing key."""
        envelope = EventEnvelope.create(EventType.SHIFT_ENDED, {})

        assert envelope.type == "shift.ended"

    def test_envelope_is_immutable(self):
        """Test that envelopes cannot be modified after creation."""
        envelope = EventEnvelope.create("medication.logged", {})

        with pytest.raises(ValidationError):
            envelope.type = "medication.deleted"


class TestEventEnvelopeWire:
    """Test suite for to_wire() / from_wire()."""

    def test_wire_keys_are_camel_case(self):
        """Test that the JSON form uses camelCase keys."""
        envelope = EventEnvelope.create(
            "medication.logged",
            {},
            caused_by="user-1",
            family_id="fam-1",
            care_recipient_id="cr-1",
        )

        wire = envelope.to_wire()

        assert {"correlationId", "causedBy", "familyId", "careRecipientId", "specVersion"} <= wire.keys()
        assert "correlation_id" not in wire

    def test_decoded_data_equals_original_payload(self):
        """Test that a consumer sees the producer's payload and metadata unchanged."""
        payload = {
            "medicationName": "Lisinopril",
            "dose": {"amount": 10, "unit": "mg"},
            "tags": ["morning", "with-food"],
            "notes": None,
        }
        envelope = EventEnvelope.create(
            "medication.logged",
            payload,
            correlation_id="corr-1",
            caused_by="user-7",
        )

        decoded = EventEnvelope.from_wire(json.dumps(envelope.to_wire()).encode())

        assert decoded.data == payload
        assert decoded.type == "medication.logged"
        assert decoded.correlation_id == "corr-1"
        assert decoded.caused_by == "user-7"
        assert decoded.id == envelope.id

    def test_unknown_keys_are_ignored(self):
        """Test that newer producers can add fields without breaking decoding."""
        wire = EventEnvelope.create("shift.started", {}).to_wire()
        wire["traceParent"] = "00-abc-def-01"

        decoded = EventEnvelope.from_wire(wire)

        assert decoded.type == "shift.started"

    def test_correlation_id_is_optional_on_decode(self):
        """Test that envelopes from producers without correlation ids decode."""
        decoded = EventEnvelope.from_wire(
            {
                "id": str(uuid.uuid4()),
                "type": "appointment.created",
                "source": "carecircle-api",
                "timestamp": "2026-03-01T09:00:00+00:00",
                "specVersion": SPEC_VERSION,
                "data": {"a": 1},
            }
        )

        assert decoded.correlation_id is None
        assert decoded.to_wire()["correlationId"] is None

    def test_missing_required_field_raises_validation_error(self):
        """Test that an envelope without a type is rejected."""
        wire = EventEnvelope.create("shift.started", {}).to_wire()
        del wire["type"]

        with pytest.raises(ValidationError):
            EventEnvelope.from_wire(wire)

    def test_invalid_json_raises_value_error(self):
        """Test that a non-JSON body is rejected."""
        with pytest.raises(ValueError):
            EventEnvelope.from_wire(b"{not json")


# ──────────────────────────────────────────────────────
# Event vocabulary
# ──────────────────────────────────────────────────────


class TestEventType:
    """Test suite for EventType and helpers."""

    def test_value_is_routing_key(self):
        """Test that members compare equal to their routing key."""
        assert EventType.MEDICATION_LOGGED == "medication.logged"
        assert EventType.EMERGENCY_ALERT_CREATED.category == "emergency"

    def test_only_emergency_events_are_safety_critical(self):
        """Test safety-critical classification."""
        critical = {member for member in EventType if member.is_safety_critical}

        assert critical == {EventType.EMERGENCY_ALERT_CREATED, EventType.EMERGENCY_ALERT_RESOLVED}
        assert is_safety_critical("emergency.alert.created")
        assert not is_safety_critical("medication.logged")

    def test_priority_only_for_emergencies(self):
        """Test that only emergency events carry an AMQP priority."""
        assert EventType.EMERGENCY_ALERT_CREATED.priority == EMERGENCY_PRIORITY
        assert EventType.MEDICATION_LOGGED.priority is None
        assert priority_for("emergency.alert.resolved") == EMERGENCY_PRIORITY
        assert priority_for("shift.started") is None

    def test_parse_unknown_returns_none(self):
        """Test that parse() tolerates unknown event types."""
        assert EventType.parse("shift.started") is EventType.SHIFT_STARTED
        assert EventType.parse("unknown.thing") is None


class TestNotificationChannel:
    """Test suite for NotificationChannel."""

    @pytest.mark.parametrize(
        ("channel", "routing_key"),
        [
            (NotificationChannel.PUSH, "notify.push"),
            (NotificationChannel.EMAIL, "notify.email"),
            (NotificationChannel.SMS, "notify.sms"),
        ],
    )
    def test_routing_keys(self, channel, routing_key):
        """Test the direct-exchange routing key per channel."""
        assert channel.routing_key == routing_key

    def test_unknown_channel_rejected(self):
        """Test that an unknown channel name raises ValueError."""
        with pytest.raises(ValueError):
            NotificationChannel("pager")
