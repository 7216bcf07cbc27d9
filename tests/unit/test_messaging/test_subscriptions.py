"""Unit tests for consumer subscriptions and message settlement."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from carecircle_events.core.events.envelope import EventEnvelope
from carecircle_events.infra.messaging import conventions as names
from carecircle_events.infra.messaging.consumers import (
    AnalyticsSink,
    AuditSink,
    Disposition,
    NotificationDispatcher,
    WebSocketBridge,
)
from carecircle_events.infra.messaging.subscriptions import (
    Consumers,
    apply_disposition,
    queue_assignments,
    register_subscriptions,
)


@pytest.fixture
def all_consumers() -> Consumers:
    return Consumers(
        websocket=WebSocketBridge(AsyncMock()),
        notifications=NotificationDispatcher(AsyncMock()),
        audit=AuditSink(),
        analytics=AnalyticsSink(),
    )


class TestQueueAssignments:
    """Test suite for queue_assignments()."""

    def test_every_consumer_gets_its_queues(self, all_consumers):
        """Test the queue set for a fully configured process."""
        assignments = dict(queue_assignments(all_consumers))

        assert assignments[names.WEBSOCKET_UPDATES_QUEUE_NAME] is all_consumers.websocket
        assert assignments[names.EMERGENCY_QUEUE_NAME] is all_consumers.notifications
        assert assignments[names.NOTIFICATIONS_SMS_QUEUE_NAME] is all_consumers.notifications
        assert assignments[names.AUDIT_LOG_QUEUE_NAME] is all_consumers.audit
        assert assignments[names.AUDIT_ANALYTICS_QUEUE_NAME] is all_consumers.analytics
        assert set(assignments) == {
            names.WEBSOCKET_UPDATES_QUEUE_NAME,
            names.NOTIFICATION_EVENTS_QUEUE_NAME,
            names.EMERGENCY_QUEUE_NAME,
            names.NOTIFICATIONS_PUSH_QUEUE_NAME,
            names.NOTIFICATIONS_EMAIL_QUEUE_NAME,
            names.NOTIFICATIONS_SMS_QUEUE_NAME,
            names.AUDIT_LOG_QUEUE_NAME,
            names.AUDIT_ANALYTICS_QUEUE_NAME,
        }

    def test_unset_consumers_skipped(self):
        """Test that only configured consumers are subscribed."""
        assignments = queue_assignments(Consumers(audit=AuditSink()))

        assert [queue for queue, _ in assignments] == [names.AUDIT_LOG_QUEUE_NAME]


class TestApplyDisposition:
    """Test suite for apply_disposition()."""

    @pytest.mark.parametrize(
        ("disposition", "method", "kwargs"),
        [
            (Disposition.ACK, "ack", {}),
            (Disposition.NACK_REQUEUE, "nack", {"requeue": True}),
            (Disposition.NACK_DROP, "nack", {"requeue": False}),
        ],
    )
    async def test_settles_message(self, disposition, method, kwargs):
        """Test the broker call for each disposition."""
        message = AsyncMock()

        await apply_disposition(message, disposition)

        getattr(message, method).assert_awaited_once_with(**kwargs)


class TestRegisterSubscriptions:
    """Test suite for register_subscriptions()."""

    def test_subscribes_with_declared_queue_objects(self, all_consumers):
        """Test that each queue is subscribed with its topology arguments."""
        broker = MagicMock()

        subscribed = register_subscriptions(broker, all_consumers)

        # Dead-letter queues have no consumer
        assert len(subscribed) == 8
        assert names.DLQ_PROCESSING_QUEUE_NAME not in subscribed
        assert names.DLQ_NOTIFICATIONS_QUEUE_NAME not in subscribed
        queues = [call.args[0] for call in broker.subscriber.call_args_list]
        emergency = next(q for q in queues if q.name == names.EMERGENCY_QUEUE_NAME)
        assert emergency.arguments["x-max-priority"] == 10

    async def test_handler_settles_from_consumer(self):
        """Test that the registered handler acks a processed message."""
        broker = MagicMock()
        register_subscriptions(broker, Consumers(analytics=AnalyticsSink()))
        handler = broker.subscriber.return_value.call_args.args[0]
        message = AsyncMock()

        await handler(EventEnvelope.create("medication.logged", {}).to_wire(), message)

        message.ack.assert_awaited_once()
        assert handler.__name__ == "handle_analytics"
