"""Database foundation: declarative base, mixins and the generic repository."""

from carecircle_events.core.database.base import (
    Base,
    TimestampMixin,
    UUIDv7PKMixin,
    generate_uuid7,
)
from carecircle_events.core.database.repository import BaseRepository

__all__ = [
    "Base",
    "BaseRepository",
    "TimestampMixin",
    "UUIDv7PKMixin",
    "generate_uuid7",
]
