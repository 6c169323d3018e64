"""Periodic driver for retention policy execution."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chryso.config import settings
from chryso.core.exceptions import ConflictError, NotFoundError
from chryso.core.security import Principal
from chryso.models.retention_policy import local_now
from chryso.services.archive_service import ArchiveWriter
from chryso.services.policy_store import PolicyStore
from chryso.services.record_store import SQLAlchemyRecordStore
from chryso.services.retention_service import RetentionExecutionResult, RetentionExecutor

logger = structlog.get_logger(__name__)


class RetentionScheduler:
    """Background scheduler that runs due retention policies.

    Each tick loads the active policies, keeps those whose schedule matches
    the current moment and runs them with bounded concurrency. A policy is
    never run twice at once: in-process this is tracked per policy id, and
    across processes through the lease columns on the policy row.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        archive_writer: Optional[ArchiveWriter] = None,
        check_interval_seconds: Optional[int] = None,
        max_concurrent: Optional[int] = None,
        lease: Optional[timedelta] = None,
        owner: Optional[str] = None,
        clock: Callable[[], datetime] = local_now,
    ):
        self._session_factory = session_factory
        self._archive_writer = archive_writer or ArchiveWriter()
        self._check_interval_seconds = (
            check_interval_seconds or settings.retention_check_interval_seconds
        )
        self._max_concurrent = max(1, max_concurrent or settings.retention_max_concurrent_policies)
        self._lease = lease or timedelta(minutes=settings.retention_lease_minutes)
        self._owner = owner or settings.retention_owner_id
        self._clock = clock

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._in_flight: set[UUID] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the scheduler."""
        if self._running:
            logger.warning("Retention scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "Retention scheduler started",
            interval_seconds=self._check_interval_seconds,
            max_concurrent=self._max_concurrent,
            owner=self._owner,
        )

    async def stop(self) -> None:
        """Stop the scheduler, cancelling any tick in progress."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Retention scheduler stopped")

    async def _run_loop(self) -> None:
        """Main scheduler loop."""
        while self._running:
            try:
                await self.run_tick()
            except Exception as e:
                logger.error("Error in retention scheduler loop", error=str(e))

            await asyncio.sleep(self._check_interval_seconds)

    async def run_tick(self, now: Optional[datetime] = None) -> list[RetentionExecutionResult]:
        """Run every policy due at ``now``.

        Failures of one policy are logged and never stop the others.
        Returns the results of the policies that actually ran.
        """
        now = now or self._clock()
        async with self._session_factory() as session:
            policies = await PolicyStore(session).find_active_policies()
            due = [policy.id for policy in policies if policy.should_execute(now)]

        logger.info(
            "Retention check",
            active_policies=len(policies),
            due_policies=len(due),
        )
        if not due:
            return []

        semaphore = asyncio.Semaphore(self._max_concurrent)

        async def run_one(policy_id: UUID) -> Optional[RetentionExecutionResult]:
            async with semaphore:
                try:
                    return await self._execute_exclusive(policy_id, now)
                except Exception as e:
                    logger.error(
                        "Error executing retention policy",
                        policy_id=str(policy_id),
                        error=str(e),
                    )
                    return None

        results = await asyncio.gather(*(run_one(policy_id) for policy_id in due))
        return [result for result in results if result is not None]

    async def trigger_policy(
        self,
        policy_id: UUID,
        organization_id: Optional[UUID] = None,
        principal: Optional[Principal] = None,
    ) -> RetentionExecutionResult:
        """Run one policy immediately, ignoring its schedule.

        Raises:
            NotFoundError: If the policy does not exist in the organization.
            ConflictError: If the policy is already running.
        """
        result = await self._execute_exclusive(
            policy_id,
            self._clock(),
            organization_id=organization_id,
            principal=principal,
        )
        if result is None:
            raise ConflictError(
                "Retention policy is already running",
                details={"policy_id": str(policy_id)},
            )
        logger.info(
            "Manual retention execution finished",
            policy_id=str(policy_id),
            success=result.success,
            records_deleted=result.records_deleted,
        )
        return result

    async def _execute_exclusive(
        self,
        policy_id: UUID,
        now: datetime,
        organization_id: Optional[UUID] = None,
        principal: Optional[Principal] = None,
    ) -> Optional[RetentionExecutionResult]:
        """Execute a policy while holding its lease. None when it is busy."""
        if policy_id in self._in_flight:
            logger.info("Retention policy already running in this process", policy_id=str(policy_id))
            return None

        self._in_flight.add(policy_id)
        try:
            async with self._session_factory() as session:
                store = PolicyStore(session)
                policy = await store.get_policy(policy_id, organization_id)
                if policy is None:
                    raise NotFoundError(
                        "Retention policy not found",
                        details={"policy_id": str(policy_id)},
                    )

                lease_time = datetime.now(timezone.utc)
                if not await store.try_claim(policy_id, self._owner, lease_time, self._lease):
                    logger.info(
                        "Retention policy leased by another worker",
                        policy_id=str(policy_id),
                    )
                    return None

                try:
                    executor = RetentionExecutor(
                        session,
                        record_store=SQLAlchemyRecordStore(
                            session, batch_size=settings.retention_delete_batch_size
                        ),
                        archive_writer=self._archive_writer,
                        policy_store=store,
                    )
                    return await executor.execute_policy(policy, now=now, principal=principal)
                finally:
                    await self._release(session, store, policy_id)
        finally:
            self._in_flight.discard(policy_id)

    async def _release(self, session: AsyncSession, store: PolicyStore, policy_id: UUID) -> None:
        # An unreleased lease expires on its own
        try:
            await session.rollback()
            await store.release(policy_id, self._owner)
        except Exception as e:
            logger.error(
                "Failed to release retention lease",
                policy_id=str(policy_id),
                error=str(e),
            )
