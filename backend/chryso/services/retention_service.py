"""Retention policy execution.

Applies one policy to its governed table(s): compute the cutoff, select the
candidate records, archive them when configured, delete them and book the
outcome into the policy statistics.

There is no transaction around archive and delete. A failure part-way
leaves already-deleted rows deleted; the run is recorded as failed and the
next eligible tick starts over with a fresh selection.
"""

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from chryso.config import settings
from chryso.core.exceptions import ChrysoException, ConfigurationError
from chryso.core.security import Principal
from chryso.models.retention_policy import EntityType, RetentionPolicy
from chryso.services.archive_service import ArchiveWriter
from chryso.services.audit_service import AuditService
from chryso.services.policy_store import PolicyStore
from chryso.services.record_store import RecordStore, SQLAlchemyRecordStore
from chryso.services.retention_criteria import RetentionQuery, parse_conditions
from chryso.services.retention_targets import targets_for

logger = structlog.get_logger(__name__)


@dataclass
class TargetResult:
    """Outcome for one governed table."""

    entity_type: str
    records_processed: int = 0
    records_archived: int = 0
    records_deleted: int = 0
    archive_size: int = 0
    archive_location: Optional[str] = None


@dataclass
class RetentionExecutionResult:
    """Outcome of one policy run."""

    policy_id: UUID
    policy_name: str
    success: bool
    started_at: datetime
    cutoff_date: Optional[datetime] = None
    targets: list[TargetResult] = field(default_factory=list)
    execution_time_ms: float = 0.0
    skipped_reason: Optional[str] = None
    error: Optional[str] = None

    @property
    def records_processed(self) -> int:
        return sum(t.records_processed for t in self.targets)

    @property
    def records_archived(self) -> int:
        return sum(t.records_archived for t in self.targets)

    @property
    def records_deleted(self) -> int:
        return sum(t.records_deleted for t in self.targets)

    @property
    def archive_size(self) -> int:
        return sum(t.archive_size for t in self.targets)

    @property
    def archive_locations(self) -> list[str]:
        return [t.archive_location for t in self.targets if t.archive_location]

    def summary(self) -> dict[str, Any]:
        """Flat dict used for audit details and API responses."""
        return {
            "policy_id": str(self.policy_id),
            "policy_name": self.policy_name,
            "success": self.success,
            "cutoff_date": self.cutoff_date.isoformat() if self.cutoff_date else None,
            "records_processed": self.records_processed,
            "records_archived": self.records_archived,
            "records_deleted": self.records_deleted,
            "archive_size": self.archive_size,
            "archive_locations": self.archive_locations,
            "execution_time_ms": round(self.execution_time_ms, 2),
            "skipped_reason": self.skipped_reason,
            "error": self.error,
            "targets": [asdict(t) for t in self.targets],
        }


@dataclass
class RetentionPreview:
    """Dry-run estimate of what a policy run would remove."""

    policy_id: UUID
    policy_name: str
    entity_type: str
    cutoff_date: datetime
    legal_hold_active: bool
    estimated_records: int = 0
    by_entity_type: dict[str, int] = field(default_factory=dict)


class RetentionExecutor:
    """Executes retention policies against the governed tables."""

    def __init__(
        self,
        session: AsyncSession,
        record_store: Optional[RecordStore] = None,
        archive_writer: Optional[ArchiveWriter] = None,
        policy_store: Optional[PolicyStore] = None,
        audit_service: Optional[AuditService] = None,
    ):
        self._session = session
        self._records = record_store or SQLAlchemyRecordStore(
            session, batch_size=settings.retention_delete_batch_size
        )
        self._archive = archive_writer or ArchiveWriter()
        self._policies = policy_store or PolicyStore(session)
        self._audit = audit_service or AuditService(session)

    async def build_queries(self, policy: RetentionPolicy, now: datetime) -> list[RetentionQuery]:
        """Selection for every table the policy governs.

        Raises:
            ConfigurationError: If a condition is malformed or names a field
                the governed table lacks. For ``all`` policies such tables
                are skipped instead.
        """
        cutoff = self._policies.compute_cutoff_date(policy, now)
        conditions = parse_conditions(policy.conditions)
        entity_type = EntityType(policy.entity_type)
        queries = []

        for target in targets_for(entity_type):
            query = RetentionQuery(
                target=target,
                organization_id=policy.organization_id,
                cutoff=cutoff,
                conditions=conditions,
            )
            try:
                query.validate()
            except ConfigurationError as e:
                if entity_type != EntityType.ALL:
                    raise
                logger.info(
                    "Skipping table without condition field",
                    policy_id=str(policy.id),
                    table=target.table_name,
                    reason=e.message,
                )
                continue

            held = await self._records.held_record_ids(
                policy.organization_id, target.entity_type, now
            )
            queries.append(
                RetentionQuery(
                    target=target,
                    organization_id=policy.organization_id,
                    cutoff=cutoff,
                    conditions=conditions,
                    excluded_ids=held,
                )
            )

        return queries

    async def _process_target(
        self,
        policy: RetentionPolicy,
        query: RetentionQuery,
        now: datetime,
    ) -> TargetResult:
        target = query.target
        result = TargetResult(entity_type=target.entity_type.value)

        records = await self._records.find(query)
        result.records_processed = len(records)
        logger.info(
            "Found records for retention processing",
            policy_id=str(policy.id),
            table=target.table_name,
            count=len(records),
            excluded_by_hold=len(query.excluded_ids),
        )
        if not records:
            return result

        if policy.archive_before_delete:
            archive = await self._archive.write(
                records,
                label=target.label,
                archive_location=policy.archive_location,
                archive_format=policy.archive_format,
                now=now,
            )
            result.records_archived = archive.record_count
            result.archive_size = archive.size
            result.archive_location = archive.location

        result.records_deleted = await self._records.delete(
            query, [record["id"] for record in records]
        )
        return result

    async def execute_policy(
        self,
        policy: RetentionPolicy,
        now: Optional[datetime] = None,
        principal: Optional[Principal] = None,
    ) -> RetentionExecutionResult:
        """Run one policy and record its outcome.

        Storage and configuration failures are caught, recorded into the
        policy's error statistics and returned as an unsuccessful result.
        Errors while recording the outcome propagate.
        """
        now = now or datetime.now(timezone.utc)
        started = time.monotonic()
        # A rollback expires the loaded policy, so the failure path works on this id
        policy_id = policy.id
        log = logger.bind(
            policy_id=str(policy_id),
            policy_name=policy.name,
            entity_type=EntityType(policy.entity_type).value,
        )
        result = RetentionExecutionResult(
            policy_id=policy_id,
            policy_name=policy.name,
            success=True,
            started_at=now,
        )

        if policy.legal_hold_in_effect(now):
            log.info("Policy under legal hold, skipping execution", reason=policy.legal_hold_reason)
            result.skipped_reason = "legal_hold"
            await self._policies.record_success(policy_id, 0, 0, 0, now)
            await self._audit_run(policy, result, principal)
            return result

        log.info("Executing retention policy")
        try:
            if policy.archive_before_delete and not policy.archive_location:
                raise ConfigurationError(
                    "Archiving is enabled but no archive location is configured",
                )
            result.cutoff_date = self._policies.compute_cutoff_date(policy, now)
            for query in await self.build_queries(policy, now):
                result.targets.append(await self._process_target(policy, query, now))
        except ChrysoException as e:
            result.success = False
            result.error = e.message
            log.error("Retention policy failed", error=e.message, details=e.details)
        except Exception as e:
            result.success = False
            result.error = str(e) or e.__class__.__name__
            log.error("Retention policy failed unexpectedly", error=result.error, exc_info=True)

        result.execution_time_ms = (time.monotonic() - started) * 1000

        if result.success:
            await self._policies.record_success(
                policy_id,
                result.records_archived,
                result.records_deleted,
                result.archive_size,
                now,
            )
            log.info(
                "Retention policy completed",
                records_archived=result.records_archived,
                records_deleted=result.records_deleted,
                archive_size=result.archive_size,
                duration_ms=round(result.execution_time_ms, 2),
            )
        else:
            # The session may hold a failed transaction
            await self._session.rollback()
            await self._policies.record_failure(policy_id, result.error or "Unknown error", now)
            await self._session.refresh(policy)

        await self._audit_run(policy, result, principal)
        return result

    async def _audit_run(
        self,
        policy: RetentionPolicy,
        result: RetentionExecutionResult,
        principal: Optional[Principal],
    ) -> None:
        await self._audit.log_retention_execution(
            policy,
            details=result.summary(),
            success=result.success,
            error_message=result.error,
            principal=principal,
        )

    async def preview_policy(
        self,
        policy: RetentionPolicy,
        now: Optional[datetime] = None,
    ) -> RetentionPreview:
        """Count the records a run at ``now`` would select, without changes."""
        now = now or datetime.now(timezone.utc)
        preview = RetentionPreview(
            policy_id=policy.id,
            policy_name=policy.name,
            entity_type=EntityType(policy.entity_type).value,
            cutoff_date=self._policies.compute_cutoff_date(policy, now),
            legal_hold_active=policy.legal_hold_in_effect(now),
        )
        if preview.legal_hold_active:
            return preview

        for query in await self.build_queries(policy, now):
            count = await self._records.count(query)
            preview.by_entity_type[query.target.entity_type.value] = count
            preview.estimated_records += count

        return preview
