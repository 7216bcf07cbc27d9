"""Event vocabulary shared by producers and consumers.

Every routing key that appears on the domain-events exchange is a member of
EventType, so publishers and subscriptions can never drift apart on a
spelling. The string value is the routing key.
"""

from __future__ import annotations

from enum import StrEnum

EMERGENCY_PRIORITY = 10
"""AMQP priority given to safety-critical messages (matches x-max-priority)."""


class EventType(StrEnum):
    """Domain event types, used verbatim as topic routing keys."""

    # Medication
    MEDICATION_CREATED = "medication.created"
    MEDICATION_UPDATED = "medication.updated"
    MEDICATION_DELETED = "medication.deleted"
    MEDICATION_LOGGED = "medication.logged"
    MEDICATION_MISSED = "medication.missed"
    MEDICATION_DUE = "medication.due"
    MEDICATION_REMINDER = "medication.reminder"
    MEDICATION_REFILL_NEEDED = "medication.refill_needed"

    # Appointment
    APPOINTMENT_CREATED = "appointment.created"
    APPOINTMENT_UPDATED = "appointment.updated"
    APPOINTMENT_CANCELLED = "appointment.cancelled"
    APPOINTMENT_REMINDER = "appointment.reminder"

    # Emergency
    EMERGENCY_ALERT_CREATED = "emergency.alert.created"
    EMERGENCY_ALERT_RESOLVED = "emergency.alert.resolved"

    # Caregiver shifts
    SHIFT_STARTED = "shift.started"
    SHIFT_ENDED = "shift.ended"
    SHIFT_HANDOFF = "shift.handoff"

    # Family membership
    FAMILY_MEMBER_INVITED = "family.member.invited"
    FAMILY_MEMBER_JOINED = "family.member.joined"
    FAMILY_MEMBER_LEFT = "family.member.left"

    # Care recipient
    CARE_RECIPIENT_CREATED = "care_recipient.created"
    CARE_RECIPIENT_UPDATED = "care_recipient.updated"

    # Timeline
    TIMELINE_ENTRY_CREATED = "timeline.entry.created"

    # Documents
    DOCUMENT_UPLOADED = "document.uploaded"
    DOCUMENT_DELETED = "document.deleted"

    @property
    def category(self) -> str:
        """Leading routing-key segment (``medication``, ``emergency``...)."""
        return self.value.split(".", 1)[0]

    @property
    def is_safety_critical(self) -> bool:
        """Emergency events must never be dropped and are always durable."""
        return self.category == "emergency"

    @property
    def priority(self) -> int | None:
        """AMQP message priority, or None for normal traffic."""
        return EMERGENCY_PRIORITY if self.is_safety_critical else None

    @classmethod
    def parse(cls, value: str) -> EventType | None:
        """Return the member for ``value``, or None for unknown types."""
        try:
            return cls(value)
        except ValueError:
            return None


class NotificationChannel(StrEnum):
    """Delivery channels on the notifications (direct) exchange."""

    PUSH = "push"
    EMAIL = "email"
    SMS = "sms"

    @property
    def routing_key(self) -> str:
        """Direct-exchange routing key, e.g. ``notify.push``."""
        return f"notify.{self.value}"


def is_safety_critical(event_type: str) -> bool:
    """Check whether a raw event type string denotes a safety-critical event."""
    return event_type.split(".", 1)[0] == "emergency"


def priority_for(event_type: str) -> int | None:
    """AMQP priority for a raw event type string."""
    return EMERGENCY_PRIORITY if is_safety_critical(event_type) else None


__all__ = [
    "EMERGENCY_PRIORITY",
    "EventType",
    "NotificationChannel",
    "is_safety_critical",
    "priority_for",
]
