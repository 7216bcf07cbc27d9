"""Minimal generic repository for SQLAlchemy models.

Provides basic operations with explicit session passing. Repositories never
commit: the caller owns the transaction, which is what lets a domain write
and its outbox record land atomically.

Example:
    class OutboxRepository(BaseRepository[EventOutbox]):
        async def count_pending(self, session: AsyncSession) -> int:
            ...

    repo = OutboxRepository()
    record = await repo.get(session, record_id)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import select

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession


T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Minimal generic repository.

    Provides:
        - get(session, id) -> T | None
        - list(session, limit, offset) -> Sequence[T]
        - create(session, instance) -> T

    Session is always explicit - no hidden state. For queries not covered here,
    use the session directly.
    """

    __slots__ = ("model", "_logger")

    def __init__(self, model: type[T]) -> None:
        """Initialize repository with model class.

        Args:
            model: SQLAlchemy model class
        """
        self.model = model
        self._logger = logging.getLogger(f"repository.{model.__name__}")

    async def get(
        self,
        session: AsyncSession,
        id: Any,  # noqa: A002
    ) -> T | None:
        """Get entity by primary key.

        Args:
            session: Database session
            id: Primary key value

        Returns:
            Entity if found, None otherwise
        """
        return await session.get(self.model, id)

    async def list(
        self,
        session: AsyncSession,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> Sequence[T]:
        """List entities with pagination.

        Args:
            session: Database session
            limit: Maximum results to return
            offset: Number of results to skip

        Returns:
            Sequence of entities
        """
        stmt = select(self.model).limit(limit).offset(offset)
        result = await session.execute(stmt)
        return result.scalars().all()

    async def create(self, session: AsyncSession, instance: T) -> T:
        """Persist a new entity without committing.

        Adds to session and flushes to surface constraint errors inside the
        caller's transaction.

        Args:
            session: Database session
            instance: Entity instance to persist

        Returns:
            The persisted entity
        """
        session.add(instance)
        await session.flush()

        entity_id = getattr(instance, "id", None)
        self._logger.debug(
            "Entity staged",
            extra={"entity": self.model.__name__, "id": str(entity_id), "operation": "db.create"},
        )
        return instance


__all__ = ["BaseRepository"]
