"""Retention policy administration API endpoints."""

from datetime import datetime
from typing import Annotated, Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, model_validator
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from chryso.api.v1.deps import (
    get_retention_scheduler,
    require_admin,
    require_manager,
)
from chryso.core.security import Principal
from chryso.db.session import get_async_session
from chryso.models.audit_log import AuditAction, AuditLog
from chryso.models.base import utcnow
from chryso.models.retention_policy import (
    ArchiveFormat,
    ConditionOperator,
    EntityType,
    RetentionPolicy,
    RetentionUnit,
    ScheduleFrequency,
)
from chryso.services.audit_service import AuditService
from chryso.services.policy_store import PolicyStore
from chryso.services.retention_scheduler import RetentionScheduler
from chryso.services.retention_service import RetentionExecutor

router = APIRouter()


# --- Pydantic Models ---


class ConditionSchema(BaseModel):
    """Additional filter ANDed onto the age criterion."""

    field: str = Field(..., min_length=1, max_length=100)
    operator: ConditionOperator
    value: Any = None


class ScheduleSchema(BaseModel):
    """When a policy runs. Hours and days are server local time."""

    frequency: ScheduleFrequency
    day_of_week: int | None = Field(None, ge=0, le=6, description="0 = Sunday")
    day_of_month: int | None = Field(None, ge=1, le=31)
    hour: int = Field(2, ge=0, le=23)
    timezone: str = Field("UTC", max_length=64)

    @model_validator(mode="after")
    def check_frequency_fields(self) -> "ScheduleSchema":
        if self.frequency == ScheduleFrequency.WEEKLY and self.day_of_week is None:
            raise ValueError("day_of_week is required for weekly schedules")
        if self.frequency == ScheduleFrequency.MONTHLY and self.day_of_month is None:
            raise ValueError("day_of_month is required for monthly schedules")
        return self


class LegalHoldSchema(BaseModel):
    """Policy-level legal hold."""

    enabled: bool = False
    reason: str | None = None
    until: datetime | None = None
    exempt_from_deletion: bool = True


class ComplianceSchema(BaseModel):
    """Regulations a policy is meant to satisfy. Informational only."""

    gdpr: bool = False
    hipaa: bool = False
    sox: bool = False
    pci: bool = False
    custom: list[str] = Field(default_factory=list)


class CreatePolicyRequest(BaseModel):
    """Request to create a retention policy."""

    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    entity_type: EntityType
    retention_value: int = Field(..., ge=1)
    retention_unit: RetentionUnit
    archive_before_delete: bool = True
    archive_location: str | None = Field(None, max_length=512)
    archive_format: ArchiveFormat = ArchiveFormat.COMPRESSED
    conditions: list[ConditionSchema] = Field(default_factory=list)
    legal_hold: LegalHoldSchema = Field(default_factory=LegalHoldSchema)
    compliance_requirements: ComplianceSchema = Field(default_factory=ComplianceSchema)
    schedule: ScheduleSchema
    is_active: bool = True

    @model_validator(mode="after")
    def check_archive_location(self) -> "CreatePolicyRequest":
        if self.archive_before_delete and not self.archive_location:
            raise ValueError("archive_location is required when archive_before_delete is set")
        return self


class UpdatePolicyRequest(BaseModel):
    """Partial update of a retention policy."""

    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    entity_type: EntityType | None = None
    retention_value: int | None = Field(None, ge=1)
    retention_unit: RetentionUnit | None = None
    archive_before_delete: bool | None = None
    archive_location: str | None = Field(None, max_length=512)
    archive_format: ArchiveFormat | None = None
    conditions: list[ConditionSchema] | None = None
    legal_hold: LegalHoldSchema | None = None
    compliance_requirements: ComplianceSchema | None = None
    schedule: ScheduleSchema | None = None
    is_active: bool | None = None


class PolicyStatsSchema(BaseModel):
    """Execution statistics of one policy."""

    last_executed: datetime | None
    records_archived: int
    records_deleted: int
    total_size_archived: int
    error_count: int
    last_error: str | None
    last_error_at: datetime | None


class RetentionPolicyResponse(BaseModel):
    """Retention policy response."""

    id: UUID
    name: str
    description: str | None
    entity_type: EntityType
    retention_value: int
    retention_unit: RetentionUnit
    archive_before_delete: bool
    archive_location: str | None
    archive_format: ArchiveFormat
    conditions: list[dict[str, Any]]
    legal_hold: LegalHoldSchema
    compliance_requirements: dict[str, Any]
    schedule: ScheduleSchema
    is_active: bool
    stats: PolicyStatsSchema
    created_by: UUID
    modified_by: UUID | None
    created_at: datetime
    updated_at: datetime


class ExecutionResultResponse(BaseModel):
    """Outcome of a manual execution."""

    policy_id: UUID
    policy_name: str
    success: bool
    cutoff_date: datetime | None
    records_processed: int
    records_archived: int
    records_deleted: int
    archive_size: int
    archive_locations: list[str]
    execution_time_ms: float
    skipped_reason: str | None
    error: str | None
    targets: list[dict[str, Any]]


class PreviewResponse(BaseModel):
    """Dry-run estimate for a policy."""

    policy_id: UUID
    policy_name: str
    entity_type: str
    cutoff_date: datetime
    legal_hold_active: bool
    estimated_records: int
    by_entity_type: dict[str, int]


class RetentionStatsResponse(BaseModel):
    """Organization-wide retention statistics."""

    total_policies: int
    active_policies: int
    total_records_archived: int
    total_records_deleted: int
    total_size_archived: int
    total_errors: int
    last_execution: datetime | None
    policies_by_entity_type: dict[str, int]


class ExecutionHistoryEntry(BaseModel):
    """One past execution, read from the audit trail."""

    id: UUID
    timestamp: datetime
    username: str | None
    success: bool
    severity: str
    details: dict[str, Any]
    error_message: str | None

    model_config = {"from_attributes": True}


# --- Helper Functions ---


def _policy_to_response(policy: RetentionPolicy) -> RetentionPolicyResponse:
    """Convert RetentionPolicy to response model."""
    return RetentionPolicyResponse(
        id=policy.id,
        name=policy.name,
        description=policy.description,
        entity_type=policy.entity_type,
        retention_value=policy.retention_value,
        retention_unit=policy.retention_unit,
        archive_before_delete=policy.archive_before_delete,
        archive_location=policy.archive_location,
        archive_format=policy.archive_format,
        conditions=policy.conditions or [],
        legal_hold=LegalHoldSchema(
            enabled=policy.legal_hold_enabled,
            reason=policy.legal_hold_reason,
            until=policy.legal_hold_until,
            exempt_from_deletion=policy.legal_hold_exempt_from_deletion,
        ),
        compliance_requirements=policy.compliance_requirements or {},
        schedule=ScheduleSchema.model_construct(
            frequency=policy.schedule_frequency,
            day_of_week=policy.schedule_day_of_week,
            day_of_month=policy.schedule_day_of_month,
            hour=policy.schedule_hour,
            timezone=policy.schedule_timezone,
        ),
        is_active=policy.is_active,
        stats=PolicyStatsSchema(
            last_executed=policy.last_executed,
            records_archived=policy.records_archived,
            records_deleted=policy.records_deleted,
            total_size_archived=policy.total_size_archived,
            error_count=policy.error_count,
            last_error=policy.last_error,
            last_error_at=policy.last_error_at,
        ),
        created_by=policy.created_by,
        modified_by=policy.modified_by,
        created_at=policy.created_at,
        updated_at=policy.updated_at,
    )


def _policy_columns(data: dict[str, Any]) -> dict[str, Any]:
    """Flatten request fields into model column values."""
    columns: dict[str, Any] = {}
    for key, value in data.items():
        if key == "schedule":
            columns.update(
                schedule_frequency=value["frequency"],
                schedule_day_of_week=value.get("day_of_week"),
                schedule_day_of_month=value.get("day_of_month"),
                schedule_hour=value["hour"],
                schedule_timezone=value.get("timezone", "UTC"),
            )
        elif key == "legal_hold":
            columns.update(
                legal_hold_enabled=value.get("enabled", False),
                legal_hold_reason=value.get("reason"),
                legal_hold_until=value.get("until"),
                legal_hold_exempt_from_deletion=value.get("exempt_from_deletion", True),
            )
        elif key == "conditions":
            columns["conditions"] = [
                {**c, "operator": ConditionOperator(c["operator"]).value} for c in value
            ]
        else:
            columns[key] = value
    return columns


async def _name_taken(
    session: AsyncSession,
    organization_id: UUID,
    name: str,
    exclude_id: UUID | None = None,
) -> bool:
    query = select(RetentionPolicy.id).where(
        RetentionPolicy.organization_id == organization_id,
        RetentionPolicy.name == name,
        RetentionPolicy.deleted_at.is_(None),
    )
    if exclude_id is not None:
        query = query.where(RetentionPolicy.id != exclude_id)
    result = await session.execute(query)
    return result.scalar_one_or_none() is not None


async def _get_policy_or_404(
    session: AsyncSession,
    policy_id: UUID,
    principal: Principal,
) -> RetentionPolicy:
    policy = await PolicyStore(session).get_policy(policy_id, principal.organization_id)
    if not policy:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Retention policy not found",
        )
    return policy


def _duplicate_name(name: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=f"Retention policy with name '{name}' already exists",
    )


# --- API Endpoints ---


@router.get("", response_model=list[RetentionPolicyResponse])
async def list_policies(
    session: Annotated[AsyncSession, Depends(get_async_session)],
    principal: Annotated[Principal, Depends(require_manager)],
    entity_type: EntityType | None = Query(None, description="Filter by entity type"),
    is_active: bool | None = Query(None, description="Filter by active status"),
) -> list[RetentionPolicyResponse]:
    """List the organization's retention policies."""
    policies = await PolicyStore(session).list_policies(principal.organization_id)
    if entity_type is not None:
        policies = [p for p in policies if p.entity_type == entity_type]
    if is_active is not None:
        policies = [p for p in policies if p.is_active == is_active]
    return [_policy_to_response(p) for p in policies]


@router.get("/stats", response_model=RetentionStatsResponse)
async def get_retention_stats(
    session: Annotated[AsyncSession, Depends(get_async_session)],
    principal: Annotated[Principal, Depends(require_manager)],
) -> RetentionStatsResponse:
    """Retention totals across the organization's policies."""
    stats = await PolicyStore(session).summarize(principal.organization_id)
    return RetentionStatsResponse(
        total_policies=stats.total_policies,
        active_policies=stats.active_policies,
        total_records_archived=stats.total_records_archived,
        total_records_deleted=stats.total_records_deleted,
        total_size_archived=stats.total_size_archived,
        total_errors=stats.total_errors,
        last_execution=stats.last_execution,
        policies_by_entity_type=stats.policies_by_entity_type,
    )


@router.get("/{policy_id}", response_model=RetentionPolicyResponse)
async def get_policy(
    policy_id: UUID,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    principal: Annotated[Principal, Depends(require_manager)],
) -> RetentionPolicyResponse:
    """Get a specific retention policy."""
    policy = await _get_policy_or_404(session, policy_id, principal)
    return _policy_to_response(policy)


@router.post("", response_model=RetentionPolicyResponse, status_code=status.HTTP_201_CREATED)
async def create_policy(
    request: CreatePolicyRequest,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    principal: Annotated[Principal, Depends(require_admin)],
) -> RetentionPolicyResponse:
    """Create a new retention policy (admin only)."""
    if await _name_taken(session, principal.organization_id, request.name):
        raise _duplicate_name(request.name)

    policy = RetentionPolicy(
        organization_id=principal.organization_id,
        created_by=principal.user_id,
        **_policy_columns(request.model_dump()),
    )
    session.add(policy)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise _duplicate_name(request.name)
    await session.refresh(policy)

    await AuditService(session).log_policy_change(
        AuditAction.RETENTION_POLICY_CREATE,
        policy,
        principal,
        details={"entity_type": policy.entity_type.value},
    )
    return _policy_to_response(policy)


@router.patch("/{policy_id}", response_model=RetentionPolicyResponse)
async def update_policy(
    policy_id: UUID,
    request: UpdatePolicyRequest,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    principal: Annotated[Principal, Depends(require_admin)],
) -> RetentionPolicyResponse:
    """Update a retention policy (admin only)."""
    policy = await _get_policy_or_404(session, policy_id, principal)
    changes = request.model_dump(exclude_unset=True)

    if "name" in changes and await _name_taken(
        session, principal.organization_id, changes["name"], exclude_id=policy.id
    ):
        raise _duplicate_name(changes["name"])

    for column, value in _policy_columns(changes).items():
        setattr(policy, column, value)

    if policy.archive_before_delete and not policy.archive_location:
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="archive_location is required when archive_before_delete is set",
        )

    policy.modified_by = principal.user_id
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise _duplicate_name(policy.name)
    await session.refresh(policy)

    await AuditService(session).log_policy_change(
        AuditAction.RETENTION_POLICY_UPDATE,
        policy,
        principal,
        details={"changed_fields": sorted(changes)},
    )
    return _policy_to_response(policy)


@router.delete("/{policy_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_policy(
    policy_id: UUID,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    principal: Annotated[Principal, Depends(require_admin)],
) -> None:
    """Delete a retention policy (admin only).

    The row is kept with ``deleted_at`` set so its history stays readable.
    """
    policy = await _get_policy_or_404(session, policy_id, principal)
    policy.deleted_at = utcnow()
    policy.is_active = False
    policy.modified_by = principal.user_id
    await session.commit()

    await AuditService(session).log_policy_change(
        AuditAction.RETENTION_POLICY_DELETE,
        policy,
        principal,
    )


@router.post("/{policy_id}/toggle", response_model=RetentionPolicyResponse)
async def toggle_policy(
    policy_id: UUID,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    principal: Annotated[Principal, Depends(require_admin)],
) -> RetentionPolicyResponse:
    """Activate or deactivate a retention policy (admin only)."""
    policy = await _get_policy_or_404(session, policy_id, principal)
    policy.is_active = not policy.is_active
    policy.modified_by = principal.user_id
    await session.commit()
    await session.refresh(policy)

    await AuditService(session).log_policy_change(
        AuditAction.RETENTION_POLICY_TOGGLE,
        policy,
        principal,
        details={"is_active": policy.is_active},
    )
    return _policy_to_response(policy)


@router.post("/{policy_id}/execute", response_model=ExecutionResultResponse)
async def execute_policy(
    policy_id: UUID,
    principal: Annotated[Principal, Depends(require_admin)],
    scheduler: Annotated[RetentionScheduler, Depends(get_retention_scheduler)],
) -> ExecutionResultResponse:
    """Run a retention policy now, regardless of its schedule (admin only).

    Runs even when the policy is inactive.
    """
    result = await scheduler.trigger_policy(
        policy_id,
        organization_id=principal.organization_id,
        principal=principal,
    )
    return ExecutionResultResponse(**result.summary())


@router.post("/{policy_id}/test", response_model=PreviewResponse)
async def test_policy(
    policy_id: UUID,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    principal: Annotated[Principal, Depends(require_admin)],
) -> PreviewResponse:
    """Count the records a run would remove right now, without changing anything."""
    policy = await _get_policy_or_404(session, policy_id, principal)
    preview = await RetentionExecutor(session).preview_policy(policy)
    return PreviewResponse(
        policy_id=preview.policy_id,
        policy_name=preview.policy_name,
        entity_type=preview.entity_type,
        cutoff_date=preview.cutoff_date,
        legal_hold_active=preview.legal_hold_active,
        estimated_records=preview.estimated_records,
        by_entity_type=preview.by_entity_type,
    )


@router.get("/{policy_id}/history", response_model=list[ExecutionHistoryEntry])
async def get_policy_history(
    policy_id: UUID,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    principal: Annotated[Principal, Depends(require_manager)],
    limit: int = Query(50, ge=1, le=500),
) -> list[ExecutionHistoryEntry]:
    """Past executions of a policy, newest first."""
    policy = await _get_policy_or_404(session, policy_id, principal)
    result = await session.execute(
        select(AuditLog)
        .where(
            AuditLog.organization_id == principal.organization_id,
            AuditLog.action == AuditAction.RETENTION_EXECUTE,
            AuditLog.target_id == str(policy.id),
        )
        .order_by(AuditLog.timestamp.desc())
        .limit(limit)
    )
    return [ExecutionHistoryEntry.model_validate(entry) for entry in result.scalars().all()]
