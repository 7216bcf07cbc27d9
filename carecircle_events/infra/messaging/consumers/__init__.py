"""Message consumers for the CareCircle queues."""

from __future__ import annotations

from carecircle_events.infra.messaging.consumers.audit import AnalyticsSink, AuditSink
from carecircle_events.infra.messaging.consumers.base import BaseConsumer, Disposition, SeenMessages
from carecircle_events.infra.messaging.consumers.notifications import (
    NotificationDispatcher,
    NotificationSender,
)
from carecircle_events.infra.messaging.consumers.websocket import Broadcaster, WebSocketBridge

__all__ = [
    "AnalyticsSink",
    "AuditSink",
    "BaseConsumer",
    "Broadcaster",
    "Disposition",
    "NotificationDispatcher",
    "NotificationSender",
    "SeenMessages",
    "WebSocketBridge",
]
