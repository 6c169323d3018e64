"""Access to governed records for the retention executor."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Iterable, Sequence
from uuid import UUID

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chryso.core.exceptions import StorageError
from chryso.models.legal_hold import LegalHold
from chryso.models.retention_policy import EntityType
from chryso.services.retention_criteria import RetentionQuery, to_clauses

logger = structlog.get_logger(__name__)


class RecordStore(ABC):
    """Query/delete interface over the governed tables."""

    @abstractmethod
    async def find(self, query: RetentionQuery) -> list[dict[str, Any]]:
        """Return the records selected by ``query`` as plain dicts."""

    @abstractmethod
    async def count(self, query: RetentionQuery) -> int:
        """Count the records selected by ``query``."""

    @abstractmethod
    async def delete(self, query: RetentionQuery, record_ids: Sequence[UUID]) -> int:
        """Delete the given records of the query's target. Returns rows removed."""

    @abstractmethod
    async def held_record_ids(
        self,
        organization_id: UUID,
        entity_type: EntityType,
        now: datetime,
    ) -> frozenset[UUID]:
        """Ids of records under a legal hold in effect at ``now``."""


def _chunks(items: Sequence[UUID], size: int) -> Iterable[Sequence[UUID]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class SQLAlchemyRecordStore(RecordStore):
    """Record store backed by the application database.

    Deletes are committed batch by batch; a failure part-way leaves the
    earlier batches deleted.
    """

    def __init__(self, session: AsyncSession, batch_size: int = 1000):
        self._session = session
        self._batch_size = max(1, batch_size)

    async def find(self, query: RetentionQuery) -> list[dict[str, Any]]:
        stmt = select(*query.target.archive_columns()).where(*to_clauses(query))
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to query {query.target.table_name}",
                details={"error": str(e)},
            ) from e
        return [dict(row) for row in result.mappings().all()]

    async def count(self, query: RetentionQuery) -> int:
        stmt = (
            select(func.count())
            .select_from(query.target.model)
            .where(*to_clauses(query))
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to count {query.target.table_name}",
                details={"error": str(e)},
            ) from e
        return result.scalar() or 0

    async def delete(self, query: RetentionQuery, record_ids: Sequence[UUID]) -> int:
        model = query.target.model
        id_column = query.target.column("id")
        deleted = 0

        for batch in _chunks(list(record_ids), self._batch_size):
            # Re-check the organization so a stray id can never cross tenants
            stmt = delete(model).where(
                id_column.in_(batch),
                query.target.column("organization_id") == query.organization_id,
            )
            try:
                result = await self._session.execute(stmt)
                await self._session.commit()
            except SQLAlchemyError as e:
                await self._session.rollback()
                raise StorageError(
                    f"Failed to delete from {query.target.table_name}",
                    details={"error": str(e), "deleted_before_failure": deleted},
                ) from e
            deleted += result.rowcount or 0

        logger.debug(
            "Deleted retention batch",
            table=query.target.table_name,
            deleted=deleted,
        )
        return deleted

    async def held_record_ids(
        self,
        organization_id: UUID,
        entity_type: EntityType,
        now: datetime,
    ) -> frozenset[UUID]:
        stmt = select(LegalHold).where(
            LegalHold.organization_id == organization_id,
            LegalHold.entity_type == entity_type,
            LegalHold.released_at.is_(None),
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to load legal holds",
                details={"error": str(e)},
            ) from e
        return frozenset(
            hold.record_id for hold in result.scalars().all() if hold.is_in_effect(now)
        )
