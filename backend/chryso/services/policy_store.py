"""Storage and lookup of retention policies."""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Sequence
from uuid import UUID

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from chryso.models.retention_policy import RetentionPolicy

logger = structlog.get_logger(__name__)


@dataclass
class RetentionStatistics:
    """Aggregate retention figures for one organization."""

    total_policies: int = 0
    active_policies: int = 0
    total_records_archived: int = 0
    total_records_deleted: int = 0
    total_size_archived: int = 0
    total_errors: int = 0
    last_execution: Optional[datetime] = None
    policies_by_entity_type: dict[str, int] = field(default_factory=dict)


class PolicyStore:
    """Data access for :class:`RetentionPolicy` records.

    Statistic updates are single UPDATE statements with in-database
    increments, so concurrent runs never lose counts. Persistence errors
    propagate to the caller.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def find_active_policies(self) -> Sequence[RetentionPolicy]:
        """All active, non-deleted policies. Order is unspecified."""
        result = await self._session.execute(
            select(RetentionPolicy).where(
                RetentionPolicy.is_active == True,  # noqa: E712
                RetentionPolicy.deleted_at.is_(None),
            )
        )
        return result.scalars().all()

    async def get_policy(
        self,
        policy_id: UUID,
        organization_id: Optional[UUID] = None,
    ) -> Optional[RetentionPolicy]:
        query = select(RetentionPolicy).where(
            RetentionPolicy.id == policy_id,
            RetentionPolicy.deleted_at.is_(None),
        )
        if organization_id is not None:
            query = query.where(RetentionPolicy.organization_id == organization_id)
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def list_policies(self, organization_id: UUID) -> Sequence[RetentionPolicy]:
        result = await self._session.execute(
            select(RetentionPolicy)
            .where(
                RetentionPolicy.organization_id == organization_id,
                RetentionPolicy.deleted_at.is_(None),
            )
            .order_by(RetentionPolicy.name)
        )
        return result.scalars().all()

    @staticmethod
    def compute_cutoff_date(policy: RetentionPolicy, now: datetime) -> datetime:
        """``now`` minus the policy's retention period."""
        return policy.get_cutoff_date(now)

    async def record_success(
        self,
        policy_id: UUID,
        records_archived: int,
        records_deleted: int,
        archived_bytes: int,
        now: datetime,
    ) -> None:
        """Add a successful run's counts and stamp ``last_executed``."""
        await self._session.execute(
            update(RetentionPolicy)
            .where(RetentionPolicy.id == policy_id)
            .values(
                last_executed=now,
                records_archived=RetentionPolicy.records_archived + records_archived,
                records_deleted=RetentionPolicy.records_deleted + records_deleted,
                total_size_archived=RetentionPolicy.total_size_archived + archived_bytes,
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        logger.debug(
            "Recorded retention success",
            policy_id=str(policy_id),
            records_archived=records_archived,
            records_deleted=records_deleted,
        )

    async def record_failure(self, policy_id: UUID, error_message: str, now: datetime) -> None:
        """Count a failed run and keep its error message.

        ``last_executed`` is stamped too, so a failing policy waits for its
        next cycle instead of being retried on every tick of the hour.
        """
        await self._session.execute(
            update(RetentionPolicy)
            .where(RetentionPolicy.id == policy_id)
            .values(
                last_executed=now,
                error_count=RetentionPolicy.error_count + 1,
                last_error=error_message,
                last_error_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        logger.debug("Recorded retention failure", policy_id=str(policy_id), error=error_message)

    async def try_claim(
        self,
        policy_id: UUID,
        owner: str,
        now: datetime,
        lease: timedelta,
    ) -> bool:
        """Take the execution lease of a policy.

        Succeeds when the policy is not running or its lease is older than
        ``lease``. Returns whether this caller now holds the lease.
        """
        result = await self._session.execute(
            update(RetentionPolicy)
            .where(
                RetentionPolicy.id == policy_id,
                or_(
                    RetentionPolicy.running_since.is_(None),
                    RetentionPolicy.running_since < now - lease,
                ),
            )
            .values(running_since=now, running_owner=owner)
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        return (result.rowcount or 0) == 1

    async def release(self, policy_id: UUID, owner: str) -> None:
        """Drop the execution lease if ``owner`` still holds it."""
        await self._session.execute(
            update(RetentionPolicy)
            .where(
                RetentionPolicy.id == policy_id,
                RetentionPolicy.running_owner == owner,
            )
            .values(running_since=None, running_owner=None)
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()

    async def summarize(self, organization_id: UUID) -> RetentionStatistics:
        """Totals across all of an organization's policies."""
        policies = await self.list_policies(organization_id)
        executed = [p.last_executed for p in policies if p.last_executed is not None]

        return RetentionStatistics(
            total_policies=len(policies),
            active_policies=sum(1 for p in policies if p.is_active),
            total_records_archived=sum(p.records_archived for p in policies),
            total_records_deleted=sum(p.records_deleted for p in policies),
            total_size_archived=sum(p.total_size_archived for p in policies),
            total_errors=sum(p.error_count for p in policies),
            last_execution=max(executed) if executed else None,
            policies_by_entity_type=dict(
                Counter(p.entity_type.value for p in policies)
            ),
        )
