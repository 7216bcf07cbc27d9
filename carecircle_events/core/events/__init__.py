"""Event vocabulary and wire envelope.

The publisher façade lives in ``carecircle_events.core.events.publisher``
and is imported from there, since it depends on the outbox and broker layers.
"""

from carecircle_events.core.events.envelope import (
    DEFAULT_SOURCE,
    SPEC_VERSION,
    EventEnvelope,
    JsonDocument,
)
from carecircle_events.core.events.types import (
    EMERGENCY_PRIORITY,
    EventType,
    NotificationChannel,
    is_safety_critical,
    priority_for,
)

__all__ = [
    "DEFAULT_SOURCE",
    "EMERGENCY_PRIORITY",
    "SPEC_VERSION",
    "EventEnvelope",
    "EventType",
    "JsonDocument",
    "NotificationChannel",
    "is_safety_critical",
    "priority_for",
]
