"""Exception hierarchy for the event pipeline.

Delivery failures are split into two kinds so the relay can decide whether
the rest of a batch is worth attempting:

- TransientBrokerError: the broker is unreachable, timed out or refused the
  publish for a reason that may clear on its own. The relay stops the batch.
- PermanentDeliveryError: this particular message can never be delivered
  (it does not serialize, it names an unknown exchange). Only the record
  fails; the batch continues.

Both leave the outbox record FAILED; the retry cap bounds how often it is
attempted again.
"""

from __future__ import annotations

from typing import Any


class EventPipelineError(Exception):
    """Base exception for the outbox and relay pipeline.

    Attributes:
        message: Error description.
        details: Additional context about the error.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Format error message with details."""
        if self.details:
            details_str = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class DeliveryError(EventPipelineError):
    """A message could not be handed to the broker."""

    transient: bool = True


class TransientBrokerError(DeliveryError):
    """Broker unreachable, publish timed out, or the channel was closed."""

    transient = True


class PermanentDeliveryError(DeliveryError):
    """The message itself is undeliverable; retrying will not help."""

    transient = False


class ConsumerProcessingError(EventPipelineError):
    """A consumer failed to handle a delivered envelope.

    Attributes:
        transient: Whether redelivery may succeed. Drives the requeue flag.
    """

    def __init__(
        self,
        message: str,
        *,
        transient: bool,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.transient = transient


class TopologyError(EventPipelineError):
    """The declared broker topology violates a structural rule."""


class OutboxSessionRequiredError(EventPipelineError):
    """A durable publish was requested without a database session.

    Durable delivery writes the outbox record inside the caller's
    transaction, so there is nothing to write into without one.
    """

    def __init__(self, event_type: str) -> None:
        super().__init__(
            "Durable publish requires the caller's database session",
            {"event_type": event_type},
        )
        self.event_type = event_type


__all__ = [
    "ConsumerProcessingError",
    "DeliveryError",
    "EventPipelineError",
    "OutboxSessionRequiredError",
    "PermanentDeliveryError",
    "TopologyError",
    "TransientBrokerError",
]
