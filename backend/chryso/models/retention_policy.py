"""Retention policy model for data lifecycle management."""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from chryso.models.base import Base, TimestampMixin


class EntityType(str, Enum):
    """Collections a retention policy can govern."""

    FORM = "form"
    AUDIT_LOG = "auditLog"
    REPORT = "report"
    USER = "user"
    TEMPLATE = "template"
    DASHBOARD = "dashboard"
    ALL = "all"


class RetentionUnit(str, Enum):
    """Units for the retention period."""

    DAYS = "days"
    MONTHS = "months"
    YEARS = "years"


class ArchiveFormat(str, Enum):
    """Serialization used when archiving records before deletion."""

    JSON = "json"
    CSV = "csv"
    COMPRESSED = "compressed"


class ConditionOperator(str, Enum):
    """Operators available for additional policy conditions."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    EXISTS = "exists"


class ScheduleFrequency(str, Enum):
    """How often a policy is executed."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# Fixed approximations, not calendar arithmetic
UNIT_DURATIONS: Dict[RetentionUnit, timedelta] = {
    RetentionUnit.DAYS: timedelta(days=1),
    RetentionUnit.MONTHS: timedelta(days=30),
    RetentionUnit.YEARS: timedelta(days=365),
}

# Minimum time between two runs; slack absorbs the hourly tick granularity
MIN_ELAPSED: Dict[ScheduleFrequency, timedelta] = {
    ScheduleFrequency.DAILY: timedelta(hours=23),
    ScheduleFrequency.WEEKLY: timedelta(days=6),
    ScheduleFrequency.MONTHLY: timedelta(days=25),
}


def _enum_column(enum_cls: type[Enum], name: str) -> SQLEnum:
    return SQLEnum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


def _as_aware(value: datetime) -> datetime:
    """Treat naive datetimes read back from the database as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def local_now() -> datetime:
    """Current server-local time as an aware datetime."""
    return datetime.now().astimezone()


def day_of_week(moment: datetime) -> int:
    """Day of week with 0 = Sunday through 6 = Saturday."""
    return moment.isoweekday() % 7


class RetentionPolicy(Base, TimestampMixin):
    """Retention rule for one entity type within one organization.

    Attributes:
        id: Unique identifier (UUID).
        organization_id: Owning tenant.
        name: Policy name, unique within the organization.
        entity_type: Collection the policy governs.
        retention_value / retention_unit: How long records are kept.
        archive_before_delete: Whether matched records are archived first.
        archive_location: Directory the archive files are written to.
        archive_format: json, csv or compressed (gzip JSON).
        conditions: Extra ANDed filters as ``{field, operator, value}`` dicts.
        legal_hold_*: Policy-level legal hold settings.
        schedule_*: Execution schedule. ``schedule_timezone`` is stored only.
        last_executed, records_*, total_size_archived, error_*: Statistics
            maintained by the scheduler.
        running_since / running_owner: Execution lease.
        deleted_at: Set when an administrator deletes the policy.
    """

    __tablename__ = "retention_policies"
    __table_args__ = (
        # Names are unique among policies that are not deleted
        Index(
            "uq_retention_policies_org_name",
            "organization_id",
            "name",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
        ),
        CheckConstraint("retention_value >= 1", name="retention_value_positive"),
        CheckConstraint("schedule_hour BETWEEN 0 AND 23", name="schedule_hour_range"),
        CheckConstraint(
            "schedule_day_of_week IS NULL OR schedule_day_of_week BETWEEN 0 AND 6",
            name="schedule_day_of_week_range",
        ),
        CheckConstraint(
            "schedule_day_of_month IS NULL OR schedule_day_of_month BETWEEN 1 AND 31",
            name="schedule_day_of_month_range",
        ),
        Index("ix_retention_policies_org_entity", "organization_id", "entity_type"),
        Index("ix_retention_policies_active_frequency", "is_active", "schedule_frequency"),
    )

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    organization_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text(), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    entity_type: Mapped[EntityType] = mapped_column(
        _enum_column(EntityType, "retentionentitytype"),
        nullable=False,
    )
    retention_value: Mapped[int] = mapped_column(Integer, nullable=False)
    retention_unit: Mapped[RetentionUnit] = mapped_column(
        _enum_column(RetentionUnit, "retentionunit"),
        nullable=False,
    )

    # Archive configuration
    archive_before_delete: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    archive_location: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    archive_format: Mapped[ArchiveFormat] = mapped_column(
        _enum_column(ArchiveFormat, "archiveformat"),
        default=ArchiveFormat.COMPRESSED,
        nullable=False,
    )

    conditions: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)

    # Legal hold
    legal_hold_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    legal_hold_reason: Mapped[Optional[str]] = mapped_column(Text(), nullable=True)
    legal_hold_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    legal_hold_exempt_from_deletion: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    compliance_requirements: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        default=dict,
        nullable=False,
    )

    # Execution schedule
    schedule_frequency: Mapped[ScheduleFrequency] = mapped_column(
        _enum_column(ScheduleFrequency, "schedulefrequency"),
        nullable=False,
    )
    schedule_day_of_week: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    schedule_day_of_month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    schedule_hour: Mapped[int] = mapped_column(Integer, nullable=False)
    schedule_timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)

    # Statistics
    last_executed: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )
    records_archived: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    records_deleted: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    total_size_archived: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text(), nullable=True)
    last_error_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Execution lease
    running_since: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    running_owner: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_by: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False)
    modified_by: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<RetentionPolicy {self.name} ({self.entity_type.value}): "
            f"{self.retention_value} {self.retention_unit.value}>"
        )

    @property
    def retention_period(self) -> timedelta:
        """Retention period as a duration."""
        return self.retention_value * UNIT_DURATIONS[RetentionUnit(self.retention_unit)]

    def get_cutoff_date(self, now: Optional[datetime] = None) -> datetime:
        """Records older than the returned moment are eligible for deletion."""
        return (now or datetime.now(timezone.utc)) - self.retention_period

    def legal_hold_in_effect(self, now: Optional[datetime] = None) -> bool:
        """Whether the policy-level legal hold currently exempts all records."""
        if not self.legal_hold_enabled or not self.legal_hold_exempt_from_deletion:
            return False
        if self.legal_hold_until is None:
            return True
        return _as_aware(self.legal_hold_until) > (now or datetime.now(timezone.utc))

    def should_execute(self, now: Optional[datetime] = None) -> bool:
        """Check whether ``now`` is an eligible execution moment.

        The hour, weekday and day of month are read from ``now`` as given
        (server local time by default); ``schedule_timezone`` is not applied.
        """
        if not self.is_active:
            return False

        now = now or local_now()
        if now.hour != self.schedule_hour:
            return False

        if self.last_executed is None:
            return True

        elapsed = now - _as_aware(self.last_executed)
        frequency = ScheduleFrequency(self.schedule_frequency)

        if frequency == ScheduleFrequency.WEEKLY:
            if day_of_week(now) != self.schedule_day_of_week:
                return False
        elif frequency == ScheduleFrequency.MONTHLY:
            if now.day != self.schedule_day_of_month:
                return False

        return elapsed > MIN_ELAPSED[frequency]

    @property
    def stats(self) -> Dict[str, Any]:
        """Statistics grouped the way the admin UI displays them."""
        return {
            "last_executed": self.last_executed,
            "records_archived": self.records_archived,
            "records_deleted": self.records_deleted,
            "total_size_archived": self.total_size_archived,
            "errors": {
                "count": self.error_count,
                "last_error": self.last_error,
                "last_error_at": self.last_error_at,
            },
        }
