"""Notification dispatcher.

Consumes three kinds of traffic:

- channel requests from the notifications exchange (``notify.push``,
  ``notify.email``, ``notify.sms``)
- domain events that notify the family (medication logged, shift check-in
  and check-out, appointment and medication reminders)
- emergency alerts from the priority queue

Payloads are validated with Pydantic. A payload that does not validate
can never succeed and is dropped (dead-lettered). Delivery failures that
look transient (timeouts, connection errors, rate limits) are requeued.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from carecircle_events.core.events.types import EventType
from carecircle_events.core.exceptions import ConsumerProcessingError
from carecircle_events.infra.messaging.consumers.base import BaseConsumer, Disposition
from carecircle_events.infra.messaging.errors import is_transient_error

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from carecircle_events.core.events.envelope import EventEnvelope, JsonDocument
    from carecircle_events.infra.messaging.consumers.base import SeenMessages

NOTIFY_PUSH = "notify.push"
NOTIFY_EMAIL = "notify.email"
NOTIFY_SMS = "notify.sms"


class NotificationSender(Protocol):
    """Outbound notification channels (implemented by the notifications service)."""

    async def send_push(
        self,
        user_ids: Sequence[str],
        title: str,
        body: str,
        data: JsonDocument | None = None,
    ) -> None: ...

    async def send_email(
        self,
        to: str,
        subject: str,
        template: str,
        context: JsonDocument,
    ) -> None: ...

    async def send_sms(self, to: str, message: str) -> None: ...

    async def notify_family(
        self,
        family_id: str,
        kind: str,
        title: str,
        body: str,
        data: JsonDocument | None = None,
        *,
        exclude_user_id: str | None = None,
    ) -> None: ...

    async def send_emergency_alert(
        self,
        user_ids: Sequence[str],
        care_recipient_name: str,
        alert_type: str,
        location: str | None = None,
    ) -> None: ...


# ──────────────────────────────────────────────────────
# Payload schemas (camelCase on the wire)
# ──────────────────────────────────────────────────────


class _Payload(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class PushNotificationPayload(_Payload):
    user_id: str
    title: str
    body: str
    icon: str | None = None
    url: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    priority: Literal["low", "normal", "high", "urgent"] = "normal"


class EmailNotificationPayload(_Payload):
    to: str
    subject: str
    template: str
    context: dict[str, Any] = Field(default_factory=dict)
    priority: Literal["low", "normal", "high"] = "normal"


class SmsNotificationPayload(_Payload):
    to: str
    message: str
    priority: Literal["normal", "urgent"] = "normal"


class MedicationLoggedNotice(_Payload):
    medication_name: str
    care_recipient_name: str
    logged_by_name: str
    status: str
    logged_by_id: str | None = None
    family_id: str | None = None


class ShiftNotice(_Payload):
    caregiver_name: str
    care_recipient_name: str | None = None
    event_type: Literal["checkedIn", "checkedOut"] | None = None
    handoff_notes: str | None = None
    family_id: str | None = None


class AppointmentReminderNotice(_Payload):
    family_member_ids: list[str]
    appointment_title: str
    care_recipient_name: str
    appointment_time: str
    time_until: str


class MedicationReminderNotice(_Payload):
    family_member_ids: list[str]
    medication_name: str
    care_recipient_name: str
    scheduled_time: str


class EmergencyAlertNotice(_Payload):
    family_member_ids: list[str]
    care_recipient_name: str
    type: str
    description: str | None = None
    location: str | None = None


def _family_id(envelope: EventEnvelope, payload_family_id: str | None) -> str:
    family_id = payload_family_id or envelope.family_id
    if not family_id:
        raise ConsumerProcessingError(
            "Event has no family to notify",
            transient=False,
            details={"event_id": envelope.id, "event_type": envelope.type},
        )
    return family_id


class NotificationDispatcher(BaseConsumer):
    """Turns notification requests and domain events into sends."""

    name = "notifications"

    def __init__(self, sender: NotificationSender, *, seen: SeenMessages | None = None) -> None:
        super().__init__(seen=seen)
        self.sender = sender
        self._handlers: dict[str, Callable[[EventEnvelope], Awaitable[None]]] = {
            NOTIFY_PUSH: self._push,
            NOTIFY_EMAIL: self._email,
            NOTIFY_SMS: self._sms,
            EventType.MEDICATION_LOGGED: self._medication_logged,
            EventType.SHIFT_STARTED: self._shift,
            EventType.SHIFT_ENDED: self._shift,
            EventType.APPOINTMENT_REMINDER: self._appointment_reminder,
            EventType.MEDICATION_REMINDER: self._medication_reminder,
            EventType.EMERGENCY_ALERT_CREATED: self._emergency_alert,
        }

    async def process(self, envelope: EventEnvelope) -> None:
        handler = self._handlers.get(envelope.type)
        if handler is None:
            self._logger.debug(
                "No notification for event type",
                extra={"event_type": envelope.type, "event_id": envelope.id},
            )
            return
        await handler(envelope)

    def on_failure(self, envelope: EventEnvelope, exc: Exception) -> Disposition:
        if isinstance(exc, ValidationError):
            return Disposition.NACK_DROP
        # Emergency alerts are retried unless the failure is known to be permanent
        default = envelope.type == EventType.EMERGENCY_ALERT_CREATED
        if is_transient_error(exc, default=default):
            return Disposition.NACK_REQUEUE
        return Disposition.NACK_DROP

    # Channel requests

    async def _push(self, envelope: EventEnvelope) -> None:
        payload = PushNotificationPayload.model_validate(envelope.data)
        await self.sender.send_push([payload.user_id], payload.title, payload.body, payload.data)
        self._logger.info(
            "Push notification sent",
            extra={"user_id": payload.user_id, "priority": payload.priority},
        )

    async def _email(self, envelope: EventEnvelope) -> None:
        payload = EmailNotificationPayload.model_validate(envelope.data)
        await self.sender.send_email(payload.to, payload.subject, payload.template, payload.context)
        self._logger.info("Email notification sent", extra={"template": payload.template})

    async def _sms(self, envelope: EventEnvelope) -> None:
        payload = SmsNotificationPayload.model_validate(envelope.data)
        await self.sender.send_sms(payload.to, payload.message)
        self._logger.info("SMS notification sent", extra={"priority": payload.priority})

    # Domain-driven family notifications

    async def _medication_logged(self, envelope: EventEnvelope) -> None:
        payload = MedicationLoggedNotice.model_validate(envelope.data)
        family_id = _family_id(envelope, payload.family_id)
        await self.sender.notify_family(
            family_id,
            "MEDICATION_LOGGED",
            "Medication Logged",
            f"{payload.logged_by_name} logged {payload.medication_name} for "
            f"{payload.care_recipient_name} as {payload.status}",
            {"medicationName": payload.medication_name, "status": payload.status},
            exclude_user_id=payload.logged_by_id or envelope.caused_by,
        )

    async def _shift(self, envelope: EventEnvelope) -> None:
        payload = ShiftNotice.model_validate(envelope.data)
        family_id = _family_id(envelope, payload.family_id)
        if payload.event_type is not None:
            checked_in = payload.event_type == "checkedIn"
        else:
            checked_in = envelope.type == EventType.SHIFT_STARTED

        if checked_in:
            title = "Shift Started"
            recipient = payload.care_recipient_name or "your care recipient"
            body = f"{payload.caregiver_name} has checked in for {recipient}"
        else:
            title = "Shift Ended"
            body = f"{payload.caregiver_name} has checked out"
            if payload.handoff_notes:
                body += f". Handoff notes: {payload.handoff_notes}"

        await self.sender.notify_family(
            family_id,
            "SHIFT_UPDATE",
            title,
            body,
            {
                "eventType": "checkedIn" if checked_in else "checkedOut",
                "handoffNotes": payload.handoff_notes,
            },
        )

    async def _appointment_reminder(self, envelope: EventEnvelope) -> None:
        payload = AppointmentReminderNotice.model_validate(envelope.data)
        await self.sender.send_push(
            payload.family_member_ids,
            "Appointment Reminder",
            f"{payload.appointment_title} for {payload.care_recipient_name} in {payload.time_until}",
            {"appointmentTime": payload.appointment_time},
        )

    async def _medication_reminder(self, envelope: EventEnvelope) -> None:
        payload = MedicationReminderNotice.model_validate(envelope.data)
        await self.sender.send_push(
            payload.family_member_ids,
            "Medication Reminder",
            f"Time to give {payload.medication_name} to {payload.care_recipient_name}",
            {"medicationName": payload.medication_name, "scheduledTime": payload.scheduled_time},
        )

    async def _emergency_alert(self, envelope: EventEnvelope) -> None:
        payload = EmergencyAlertNotice.model_validate(envelope.data)
        self._logger.warning(
            "Dispatching emergency alert",
            extra={
                "event_id": envelope.id,
                "alert_type": payload.type,
                "recipients": len(payload.family_member_ids),
            },
        )
        await self.sender.send_emergency_alert(
            payload.family_member_ids,
            payload.care_recipient_name,
            payload.type,
            payload.location,
        )


__all__ = [
    "AppointmentReminderNotice",
    "EmailNotificationPayload",
    "EmergencyAlertNotice",
    "MedicationLoggedNotice",
    "MedicationReminderNotice",
    "NotificationDispatcher",
    "NotificationSender",
    "PushNotificationPayload",
    "ShiftNotice",
    "SmsNotificationPayload",
]
