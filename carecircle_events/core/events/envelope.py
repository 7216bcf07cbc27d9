"""Wire envelope for every message on the CareCircle exchanges.

The envelope is what consumers receive. Its JSON keys are camelCase
(``correlationId``, ``specVersion``...) while Python code uses snake_case
attributes. Unknown keys are ignored on decode so producers can add fields
without breaking older consumers.
"""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from carecircle_events.core.database.base import generate_uuid7

JsonDocument = dict[str, Any]
"""Opaque JSON object carried as event data."""

SPEC_VERSION = "1.0"
DEFAULT_SOURCE = "carecircle-api"


class EventEnvelope(BaseModel):
    """Immutable event envelope.

    Attributes:
        id: Unique event id (UUID v7); also the AMQP message id and the
            outbox record id for durable events.
        type: Event type, e.g. ``medication.logged``.
        source: Originating service.
        timestamp: When the event was created (UTC).
        spec_version: Envelope schema version.
        data: Event payload.
        correlation_id: Id linking every event caused by one request. Always
            set by ``create()``; may be absent on messages from other producers.
        caused_by: Actor (user id) that triggered the event.
        family_id: Tenant the event belongs to, used for room fan-out.
        care_recipient_id: Care recipient the event concerns.
    """

    id: str
    type: str
    source: str = DEFAULT_SOURCE
    timestamp: datetime
    spec_version: str = Field(default=SPEC_VERSION, alias="specVersion")
    data: JsonDocument = Field(default_factory=dict)
    correlation_id: str | None = Field(default=None, alias="correlationId")
    caused_by: str | None = Field(default=None, alias="causedBy")
    family_id: str | None = Field(default=None, alias="familyId")
    care_recipient_id: str | None = Field(default=None, alias="careRecipientId")

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        extra="ignore",
    )

    @classmethod
    def create(
        cls,
        event_type: str,
        data: JsonDocument,
        *,
        source: str = DEFAULT_SOURCE,
        correlation_id: str | None = None,
        caused_by: str | None = None,
        family_id: str | None = None,
        care_recipient_id: str | None = None,
        event_id: str | None = None,
    ) -> EventEnvelope:
        """Build a new envelope, generating id, timestamp and correlation id."""
        return cls(
            id=event_id or str(generate_uuid7()),
            type=str(event_type),
            source=source,
            timestamp=datetime.now(UTC),
            data=data,
            correlation_id=correlation_id or str(uuid.uuid4()),
            caused_by=caused_by,
            family_id=family_id,
            care_recipient_id=care_recipient_id,
        )

    def to_wire(self) -> JsonDocument:
        """Serialize to the camelCase JSON object sent to the broker."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_wire(cls, body: JsonDocument | str | bytes) -> EventEnvelope:
        """Decode a delivered message body.

        Raises:
            pydantic.ValidationError: If required fields are missing or malformed.
            ValueError: If a raw body is not valid JSON.
        """
        if isinstance(body, (str, bytes)):
            body = json.loads(body)
        return cls.model_validate(body)


__all__ = ["DEFAULT_SOURCE", "SPEC_VERSION", "EventEnvelope", "JsonDocument"]
