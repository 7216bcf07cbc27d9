"""Unit tests for the event consumers.

Consumers are exercised through ``handle()`` with wire-format bodies, the
same way the subscription layer drives them.
"""

from __future__ import annotations

import json
import logging
from unittest.mock import AsyncMock

import pytest

from carecircle_events.core.events.envelope import EventEnvelope
from carecircle_events.core.exceptions import ConsumerProcessingError
from carecircle_events.infra.messaging.consumers import (
    AnalyticsSink,
    AuditSink,
    BaseConsumer,
    Disposition,
    NotificationDispatcher,
    SeenMessages,
    WebSocketBridge,
)
from carecircle_events.infra.messaging.consumers.audit import audit_entry
from carecircle_events.infra.messaging.consumers.websocket import to_broadcast


def _wire(event_type: str, data: dict, **kwargs) -> dict:
    return EventEnvelope.create(event_type, data, **kwargs).to_wire()


class RecordingConsumer(BaseConsumer):
    """Consumer that records envelopes and raises a configured error."""

    name = "recording"

    def __init__(self, error: Exception | None = None) -> None:
        super().__init__()
        self.error = error
        self.processed: list[EventEnvelope] = []

    async def process(self, envelope: EventEnvelope) -> None:
        if self.error is not None:
            raise self.error
        self.processed.append(envelope)


# ============================================================================
# Base consumer
# ============================================================================


class TestSeenMessages:
    """Test suite for the bounded redelivery set."""

    def test_evicts_least_recent(self):
        """Test that the oldest id is evicted at capacity."""
        seen = SeenMessages(capacity=2)
        seen.add("a")
        seen.add("b")
        seen.add("a")
        seen.add("c")

        assert "a" in seen
        assert "b" not in seen
        assert len(seen) == 2

    def test_capacity_must_be_positive(self):
        """Test that a zero capacity is rejected."""
        with pytest.raises(ValueError):
            SeenMessages(capacity=0)


class TestBaseConsumer:
    """Test suite for BaseConsumer.handle()."""

    async def test_ack_on_success(self):
        """Test that processed messages are acknowledged."""
        consumer = RecordingConsumer()

        disposition = await consumer.handle(json.dumps(_wire("shift.started", {})).encode())

        assert disposition is Disposition.ACK
        assert consumer.processed[0].type == "shift.started"

    async def test_undecodable_is_dropped(self):
        """Test that malformed bodies are dead-lettered."""
        consumer = RecordingConsumer()

        assert await consumer.handle(b"not json") is Disposition.NACK_DROP
        assert await consumer.handle({"type": "shift.started"}) is Disposition.NACK_DROP
        assert consumer.processed == []

    async def test_missing_correlation_id_processed(self):
        """Test that an envelope without correlationId is handled, not dropped."""
        consumer = RecordingConsumer()
        wire = _wire("appointment.created", {"a": 1})
        del wire["correlationId"]

        assert await consumer.handle(wire) is Disposition.ACK
        assert consumer.processed[0].correlation_id is None

    async def test_redelivery_acked_without_side_effects(self, metric):
        """Test that a message id seen before is not processed twice."""
        consumer = RecordingConsumer()
        body = _wire("medication.logged", {})
        before = metric("consumer_duplicates_total", consumer="recording")

        assert await consumer.handle(body) is Disposition.ACK
        assert await consumer.handle(body) is Disposition.ACK

        assert len(consumer.processed) == 1
        assert metric("consumer_duplicates_total", consumer="recording") == before + 1

    async def test_transient_failure_requeued(self):
        """Test that a recognisably transient failure is requeued."""
        consumer = RecordingConsumer(ConnectionError("Connection reset"))

        assert await consumer.handle(_wire("shift.ended", {})) is Disposition.NACK_REQUEUE

    async def test_unknown_failure_dropped(self):
        """Test that unrecognised failures are not retried forever."""
        consumer = RecordingConsumer(RuntimeError("bug"))

        assert await consumer.handle(_wire("shift.ended", {})) is Disposition.NACK_DROP

    async def test_failed_message_not_marked_seen(self):
        """Test that a requeued message is processed again on redelivery."""
        consumer = RecordingConsumer(ConnectionError("Connection reset"))
        body = _wire("shift.ended", {})

        await consumer.handle(body)
        consumer.error = None

        assert await consumer.handle(body) is Disposition.ACK
        assert len(consumer.processed) == 1


# ============================================================================
# WebSocket bridge
# ============================================================================


class TestWebSocketBridge:
    """Test suite for WebSocketBridge."""

    @pytest.fixture
    def broadcaster(self):
        return AsyncMock()

    async def test_broadcasts_to_family_and_recipient_rooms(self, broadcaster):
        """Test room derivation and the dotted event name."""
        bridge = WebSocketBridge(broadcaster)

        await bridge.handle(
            _wire(
                "medication.logged",
                {"medicationName": "Metformin"},
                family_id="fam-1",
                care_recipient_id="cr-1",
            )
        )

        broadcaster.broadcast.assert_awaited_once_with(
            "medication.logged",
            {"medicationName": "Metformin"},
            ("family:fam-1", "care-recipient:cr-1"),
        )

    async def test_emergency_uses_emergency_channel(self, broadcaster):
        """Test that emergency events bypass the normal broadcast."""
        bridge = WebSocketBridge(broadcaster)

        await bridge.handle(_wire("emergency.alert.created", {"type": "fall"}, family_id="fam-1"))

        broadcaster.emergency.assert_awaited_once()
        broadcaster.broadcast.assert_not_awaited()

    @pytest.mark.parametrize(
        ("event_type", "name"),
        [
            ("family.member.joined", "family_member_joined"),
            ("care_recipient.updated", "care_recipient_updated"),
            ("document.uploaded", "document_uploaded"),
            ("timeline.entry.created", "timeline.entry.created"),
        ],
    )
    def test_event_names(self, event_type, name):
        """Test the client-facing event names."""
        assert to_broadcast(EventEnvelope.create(event_type, {})).event == name

    async def test_broadcast_failure_requeued(self, broadcaster):
        """Test that a failed broadcast is retried."""
        broadcaster.broadcast.side_effect = RuntimeError("gateway restarting")
        bridge = WebSocketBridge(broadcaster)

        disposition = await bridge.handle(_wire("shift.started", {}, family_id="fam-1"))

        assert disposition is Disposition.NACK_REQUEUE


# ============================================================================
# Notification dispatcher
# ============================================================================


class TestNotificationDispatcher:
    """Test suite for NotificationDispatcher."""

    @pytest.fixture
    def sender(self):
        return AsyncMock()

    @pytest.fixture
    def dispatcher(self, sender):
        return NotificationDispatcher(sender)

    async def test_push_request(self, dispatcher, sender):
        """Test a notify.push request."""
        disposition = await dispatcher.handle(
            _wire(
                "notify.push",
                {"userId": "u1", "title": "Hello", "body": "World", "data": {"k": "v"}},
            )
        )

        assert disposition is Disposition.ACK
        sender.send_push.assert_awaited_once_with(["u1"], "Hello", "World", {"k": "v"})

    async def test_email_and_sms_requests(self, dispatcher, sender):
        """Test notify.email and notify.sms requests."""
        await dispatcher.handle(
            _wire(
                "notify.email",
                {"to": "a@example.com", "subject": "Hi", "template": "welcome", "context": {"n": 1}},
            )
        )
        await dispatcher.handle(_wire("notify.sms", {"to": "+15550100", "message": "Ping"}))

        sender.send_email.assert_awaited_once_with("a@example.com", "Hi", "welcome", {"n": 1})
        sender.send_sms.assert_awaited_once_with("+15550100", "Ping")

    async def test_medication_logged(self, dispatcher, sender):
        """Test the family notification for a logged medication."""
        await dispatcher.handle(
            _wire(
                "medication.logged",
                {
                    "medicationName": "Lisinopril",
                    "careRecipientName": "Grandma Rose",
                    "loggedByName": "Sam",
                    "status": "given",
                },
                family_id="fam-1",
                caused_by="user-9",
            )
        )

        sender.notify_family.assert_awaited_once_with(
            "fam-1",
            "MEDICATION_LOGGED",
            "Medication Logged",
            "Sam logged Lisinopril for Grandma Rose as given",
            {"medicationName": "Lisinopril", "status": "given"},
            exclude_user_id="user-9",
        )

    async def test_shift_check_in(self, dispatcher, sender):
        """Test the check-in message."""
        await dispatcher.handle(
            _wire(
                "shift.started",
                {"caregiverName": "Ana", "careRecipientName": "Grandpa Joe"},
                family_id="fam-1",
            )
        )

        args = sender.notify_family.await_args.args
        assert args[2] == "Shift Started"
        assert args[3] == "Ana has checked in for Grandpa Joe"
        assert args[4]["eventType"] == "checkedIn"

    async def test_shift_check_out_with_handoff(self, dispatcher, sender):
        """Test the check-out message including handoff notes."""
        await dispatcher.handle(
            _wire(
                "shift.ended",
                {"caregiverName": "Ana", "handoffNotes": "Ate well"},
                family_id="fam-1",
            )
        )

        args = sender.notify_family.await_args.args
        assert args[2] == "Shift Ended"
        assert args[3] == "Ana has checked out. Handoff notes: Ate well"

    async def test_reminders(self, dispatcher, sender):
        """Test appointment and medication reminder pushes."""
        await dispatcher.handle(
            _wire(
                "appointment.reminder",
                {
                    "familyMemberIds": ["u1", "u2"],
                    "appointmentTitle": "Cardiology",
                    "careRecipientName": "Rose",
                    "appointmentTime": "2026-03-01T10:00:00Z",
                    "timeUntil": "1 hour",
                },
            )
        )
        await dispatcher.handle(
            _wire(
                "medication.reminder",
                {
                    "familyMemberIds": ["u1"],
                    "medicationName": "Metformin",
                    "careRecipientName": "Rose",
                    "scheduledTime": "08:00",
                },
            )
        )

        first, second = sender.send_push.await_args_list
        assert first.args == (
            ["u1", "u2"],
            "Appointment Reminder",
            "Cardiology for Rose in 1 hour",
            {"appointmentTime": "2026-03-01T10:00:00Z"},
        )
        assert second.args[2] == "Time to give Metformin to Rose"

    async def test_emergency_alert(self, dispatcher, sender):
        """Test that emergency alerts go to every listed family member."""
        await dispatcher.handle(
            _wire(
                "emergency.alert.created",
                {
                    "familyMemberIds": ["u1", "u2"],
                    "careRecipientName": "Rose",
                    "type": "fall",
                    "location": "Kitchen",
                },
            )
        )

        sender.send_emergency_alert.assert_awaited_once_with(
            ["u1", "u2"], "Rose", "fall", "Kitchen"
        )

    async def test_unknown_event_type_acked(self, dispatcher, sender):
        """Test that events with no notification are acknowledged quietly."""
        assert await dispatcher.handle(_wire("document.uploaded", {})) is Disposition.ACK
        assert sender.mock_calls == []

    async def test_invalid_payload_dropped(self, dispatcher):
        """Test that a payload missing required fields is dead-lettered."""
        disposition = await dispatcher.handle(_wire("notify.push", {"title": "No user"}))

        assert disposition is Disposition.NACK_DROP

    async def test_missing_family_dropped(self, dispatcher, sender):
        """Test that a family notification without a family is dead-lettered."""
        disposition = await dispatcher.handle(
            _wire(
                "medication.logged",
                {
                    "medicationName": "Lisinopril",
                    "careRecipientName": "Rose",
                    "loggedByName": "Sam",
                    "status": "given",
                },
            )
        )

        assert disposition is Disposition.NACK_DROP
        sender.notify_family.assert_not_awaited()

    async def test_provider_timeout_requeued(self, dispatcher, sender):
        """Test that a provider timeout is retried."""
        sender.send_sms.side_effect = TimeoutError()

        disposition = await dispatcher.handle(_wire("notify.sms", {"to": "+1", "message": "x"}))

        assert disposition is Disposition.NACK_REQUEUE

    async def test_emergency_unknown_failure_requeued(self, dispatcher, sender):
        """Test that emergency alerts are retried on unrecognised failures."""
        sender.send_emergency_alert.side_effect = RuntimeError("provider glitch")
        body = {
            "familyMemberIds": ["u1"],
            "careRecipientName": "Rose",
            "type": "fall",
        }

        emergency = await dispatcher.handle(_wire("emergency.alert.created", body))
        sender.send_push.side_effect = RuntimeError("provider glitch")
        push = await dispatcher.handle(
            _wire("notify.push", {"userId": "u1", "title": "t", "body": "b"})
        )

        assert emergency is Disposition.NACK_REQUEUE
        assert push is Disposition.NACK_DROP

    async def test_emergency_permanent_failure_dropped(self, dispatcher, sender):
        """Test that a known-permanent emergency failure is dead-lettered."""
        sender.send_emergency_alert.side_effect = ConsumerProcessingError(
            "no recipients reachable", transient=False
        )

        disposition = await dispatcher.handle(
            _wire(
                "emergency.alert.created",
                {"familyMemberIds": [], "careRecipientName": "Rose", "type": "fall"},
            )
        )

        assert disposition is Disposition.NACK_DROP


# ============================================================================
# Audit and analytics
# ============================================================================


class TestAuditSinks:
    """Test suite for AuditSink and AnalyticsSink."""

    def test_audit_entry_fields(self):
        """Test the structured audit record."""
        envelope = EventEnvelope.create(
            "user.login", {"ip": "10.0.0.1"}, caused_by="u1", family_id="fam-1"
        )

        entry = audit_entry(envelope)

        assert entry["eventId"] == envelope.id
        assert entry["eventType"] == "user.login"
        assert entry["userId"] == "u1"
        assert entry["familyId"] == "fam-1"
        assert entry["data"] == {"ip": "10.0.0.1"}

    async def test_audit_sink_logs_entry(self, caplog):
        """Test that each event becomes one audit log record."""
        with caplog.at_level(logging.INFO, logger="carecircle_events.audit"):
            disposition = await AuditSink().handle(_wire("medication.deleted", {}))

        assert disposition is Disposition.ACK
        (record,) = [r for r in caplog.records if r.name == "carecircle_events.audit"]
        assert record.audit["eventType"] == "medication.deleted"

    async def test_analytics_counts_by_category(self, metric):
        """Test the per-category counter."""
        before = metric("analytics_events_total", category="appointment")

        await AnalyticsSink().handle(_wire("appointment.created", {}))

        assert metric("analytics_events_total", category="appointment") == before + 1

    async def test_sinks_keep_separate_redelivery_sets(self):
        """Test that both sinks process the same fanout copy."""
        body = _wire("shift.started", {})

        assert await AuditSink().handle(body) is Disposition.ACK
        assert await AnalyticsSink().handle(body) is Disposition.ACK
