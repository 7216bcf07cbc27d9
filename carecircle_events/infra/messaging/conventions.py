"""Exchange, queue and routing-key naming conventions.

All names are derived from RabbitSettings prefixes so several environments
can share one broker (``carecircle.domain.events``, ``staging.domain.events``).
"""

from __future__ import annotations

from carecircle_events.core.settings import get_rabbit_settings

rabbit_settings = get_rabbit_settings()

# ──────────────────────────────────────────────────────────────────────────────
# Exchange Name Constants
# ──────────────────────────────────────────────────────────────────────────────

DOMAIN_EVENTS_EXCHANGE_NAME: str = rabbit_settings.get_prefixed_exchange("domain.events")
"""Topic exchange carrying every domain event, routed by event type."""

NOTIFICATIONS_EXCHANGE_NAME: str = rabbit_settings.get_prefixed_exchange("notifications")
"""Direct exchange for channel-specific notification requests (notify.push...)."""

DEAD_LETTER_EXCHANGE_NAME: str = rabbit_settings.get_prefixed_exchange("dlx")
"""Direct exchange receiving rejected or expired messages."""

AUDIT_EXCHANGE_NAME: str = rabbit_settings.get_prefixed_exchange("audit")
"""Fanout exchange; every bound queue gets a copy of every message."""


# ──────────────────────────────────────────────────────────────────────────────
# Queue Name Constants
# ──────────────────────────────────────────────────────────────────────────────


def get_queue_name(base_name: str) -> str:
    """Get fully qualified queue name with prefix.

    Example:
        >>> get_queue_name("websocket.updates")
        'carecircle.websocket.updates'
    """
    return rabbit_settings.get_prefixed_queue(base_name)


WEBSOCKET_UPDATES_QUEUE_NAME = get_queue_name("websocket.updates")
NOTIFICATIONS_PUSH_QUEUE_NAME = get_queue_name("notifications.push")
NOTIFICATIONS_EMAIL_QUEUE_NAME = get_queue_name("notifications.email")
NOTIFICATIONS_SMS_QUEUE_NAME = get_queue_name("notifications.sms")
NOTIFICATION_EVENTS_QUEUE_NAME = get_queue_name("processor.notifications")
EMERGENCY_QUEUE_NAME = get_queue_name("processor.emergency")
AUDIT_LOG_QUEUE_NAME = get_queue_name("audit.log")
AUDIT_ANALYTICS_QUEUE_NAME = get_queue_name("audit.analytics")
DLQ_PROCESSING_QUEUE_NAME = get_queue_name("dlq.processing")
DLQ_NOTIFICATIONS_QUEUE_NAME = get_queue_name("dlq.notifications")


# ──────────────────────────────────────────────────────────────────────────────
# Routing Key Helpers
# ──────────────────────────────────────────────────────────────────────────────


def get_dead_letter_routing_key(queue_name: str) -> str:
    """Routing key a queue's rejected messages carry on the dead-letter exchange.

    Tagging by source queue keeps DLQ contents attributable during triage.

    Example:
        >>> get_dead_letter_routing_key("carecircle.notifications.push")
        'dead.carecircle.notifications.push'
    """
    return f"dead.{queue_name}"


__all__ = [
    "AUDIT_ANALYTICS_QUEUE_NAME",
    "AUDIT_EXCHANGE_NAME",
    "AUDIT_LOG_QUEUE_NAME",
    "DEAD_LETTER_EXCHANGE_NAME",
    "DLQ_NOTIFICATIONS_QUEUE_NAME",
    "DLQ_PROCESSING_QUEUE_NAME",
    "DOMAIN_EVENTS_EXCHANGE_NAME",
    "EMERGENCY_QUEUE_NAME",
    "NOTIFICATIONS_EMAIL_QUEUE_NAME",
    "NOTIFICATIONS_EXCHANGE_NAME",
    "NOTIFICATIONS_PUSH_QUEUE_NAME",
    "NOTIFICATIONS_SMS_QUEUE_NAME",
    "NOTIFICATION_EVENTS_QUEUE_NAME",
    "WEBSOCKET_UPDATES_QUEUE_NAME",
    "get_dead_letter_routing_key",
    "get_queue_name",
]
