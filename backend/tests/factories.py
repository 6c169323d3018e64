"""Test data factories and in-memory fakes.

These factories provide convenient methods for creating test data
with sensible defaults while allowing customization of specific fields.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID, uuid4

from chryso.core.exceptions import StorageError
from chryso.models.retention_policy import (
    ArchiveFormat,
    ConditionOperator,
    EntityType,
    RetentionPolicy,
    RetentionUnit,
    ScheduleFrequency,
)
from chryso.services.policy_store import PolicyStore
from chryso.services.record_store import RecordStore
from chryso.services.retention_criteria import RetentionQuery
from chryso.services.retention_targets import TARGETS


class RetentionPolicyFactory:
    """Factory for creating retention policies.

    Every column is set explicitly since ORM defaults only apply on flush.
    """

    _counter = 0

    @classmethod
    def build(
        cls,
        organization_id: Optional[UUID] = None,
        entity_type: EntityType = EntityType.FORM,
        retention_value: int = 30,
        retention_unit: RetentionUnit = RetentionUnit.DAYS,
        archive_before_delete: bool = False,
        archive_location: Optional[str] = None,
        archive_format: ArchiveFormat = ArchiveFormat.JSON,
        schedule_frequency: ScheduleFrequency = ScheduleFrequency.DAILY,
        schedule_hour: int = 2,
        **kwargs,
    ) -> RetentionPolicy:
        """Build a retention policy.

        Args:
            organization_id: Owning tenant (auto-generated if not provided).
            entity_type: Governed entity type.
            retention_value: Retention period amount.
            retention_unit: Retention period unit.
            archive_before_delete: Whether records are archived first.
            archive_location: Archive directory.
            archive_format: Archive serialization.
            schedule_frequency: Execution frequency.
            schedule_hour: Hour of day the policy runs.
            **kwargs: Any other column values.

        Returns:
            Unsaved RetentionPolicy instance.
        """
        cls._counter += 1
        now = datetime.now(timezone.utc)

        data: Dict[str, Any] = {
            "id": uuid4(),
            "organization_id": organization_id or uuid4(),
            "name": f"policy-{cls._counter}",
            "description": None,
            "is_active": True,
            "entity_type": entity_type,
            "retention_value": retention_value,
            "retention_unit": retention_unit,
            "archive_before_delete": archive_before_delete,
            "archive_location": archive_location,
            "archive_format": archive_format,
            "conditions": [],
            "legal_hold_enabled": False,
            "legal_hold_reason": None,
            "legal_hold_until": None,
            "legal_hold_exempt_from_deletion": True,
            "compliance_requirements": {},
            "schedule_frequency": schedule_frequency,
            "schedule_day_of_week": None,
            "schedule_day_of_month": None,
            "schedule_hour": schedule_hour,
            "schedule_timezone": "UTC",
            "last_executed": None,
            "records_archived": 0,
            "records_deleted": 0,
            "total_size_archived": 0,
            "error_count": 0,
            "last_error": None,
            "last_error_at": None,
            "running_since": None,
            "running_owner": None,
            "created_by": uuid4(),
            "modified_by": None,
            "deleted_at": None,
            "created_at": now,
            "updated_at": now,
        }
        data.update(kwargs)
        return RetentionPolicy(**data)


class RecordFactory:
    """Factory for governed records as the record store returns them."""

    @classmethod
    def build(
        cls,
        entity_type: EntityType,
        organization_id: UUID,
        age: timedelta,
        now: datetime,
        **kwargs,
    ) -> Dict[str, Any]:
        """Build a record whose age column lies ``age`` before ``now``."""
        target = TARGETS[entity_type]
        record: Dict[str, Any] = {
            "id": uuid4(),
            "organization_id": organization_id,
            "created_at": now - age,
        }
        record[target.age_column] = now - age
        for name, value in target.fixed_criteria:
            record[name] = value
        record.update(kwargs)
        return record

    @classmethod
    def build_batch(cls, count: int, **kwargs) -> List[Dict[str, Any]]:
        return [cls.build(**kwargs) for _ in range(count)]


def _matches_condition(record: Dict[str, Any], condition) -> bool:
    value = record.get(condition.field)
    op = condition.operator
    if op == ConditionOperator.EXISTS:
        return (value is not None) == bool(condition.value)
    if op == ConditionOperator.EQUALS:
        return value == condition.value
    if op == ConditionOperator.NOT_EQUALS:
        return value != condition.value
    if op == ConditionOperator.CONTAINS:
        return value is not None and str(condition.value).lower() in str(value).lower()
    if op == ConditionOperator.GREATER_THAN:
        return value is not None and value > condition.value
    return value is not None and value < condition.value


class InMemoryRecordStore(RecordStore):
    """Record store over plain dicts, grouped by entity type."""

    def __init__(self, records: Optional[Dict[EntityType, List[Dict[str, Any]]]] = None):
        self.records: Dict[EntityType, List[Dict[str, Any]]] = {
            entity_type: [] for entity_type in TARGETS
        }
        for entity_type, items in (records or {}).items():
            self.records[entity_type].extend(items)
        self.holds: Dict[EntityType, set[UUID]] = {}
        self.fail_on_delete: Optional[Exception] = None
        self.delete_calls: List[List[UUID]] = []

    def add_hold(self, entity_type: EntityType, record_id: UUID) -> None:
        self.holds.setdefault(entity_type, set()).add(record_id)

    def _select(self, query: RetentionQuery) -> List[Dict[str, Any]]:
        target = query.target
        selected = []
        for record in self.records[target.entity_type]:
            age = record.get(target.age_column)
            if record["organization_id"] != query.organization_id:
                continue
            if age is None or age >= query.cutoff:
                continue
            if any(record.get(name) != value for name, value in target.fixed_criteria):
                continue
            if not all(_matches_condition(record, c) for c in query.conditions):
                continue
            if record["id"] in query.excluded_ids:
                continue
            selected.append(record)
        return selected

    async def find(self, query: RetentionQuery) -> List[Dict[str, Any]]:
        excluded = query.target.excluded_fields
        return [
            {k: v for k, v in record.items() if k not in excluded}
            for record in self._select(query)
        ]

    async def count(self, query: RetentionQuery) -> int:
        return len(self._select(query))

    async def delete(self, query: RetentionQuery, record_ids: Sequence[UUID]) -> int:
        if self.fail_on_delete is not None:
            raise self.fail_on_delete
        self.delete_calls.append(list(record_ids))
        ids = set(record_ids)
        table = self.records[query.target.entity_type]
        remaining = [r for r in table if r["id"] not in ids]
        deleted = len(table) - len(remaining)
        self.records[query.target.entity_type] = remaining
        return deleted

    async def held_record_ids(
        self,
        organization_id: UUID,
        entity_type: EntityType,
        now: datetime,
    ) -> frozenset[UUID]:
        return frozenset(self.holds.get(entity_type, set()))


class InMemoryPolicyStore(PolicyStore):
    """Policy store applying statistic updates to in-memory policies."""

    def __init__(self, policies: Optional[List[RetentionPolicy]] = None):
        self.policies: Dict[UUID, RetentionPolicy] = {p.id: p for p in policies or []}

    async def find_active_policies(self) -> List[RetentionPolicy]:
        return [p for p in self.policies.values() if p.is_active and p.deleted_at is None]

    async def get_policy(
        self,
        policy_id: UUID,
        organization_id: Optional[UUID] = None,
    ) -> Optional[RetentionPolicy]:
        policy = self.policies.get(policy_id)
        if policy is None or policy.deleted_at is not None:
            return None
        if organization_id is not None and policy.organization_id != organization_id:
            return None
        return policy

    async def record_success(
        self,
        policy_id: UUID,
        records_archived: int,
        records_deleted: int,
        archived_bytes: int,
        now: datetime,
    ) -> None:
        policy = self.policies[policy_id]
        policy.last_executed = now
        policy.records_archived += records_archived
        policy.records_deleted += records_deleted
        policy.total_size_archived += archived_bytes

    async def record_failure(self, policy_id: UUID, error_message: str, now: datetime) -> None:
        policy = self.policies[policy_id]
        policy.last_executed = now
        policy.error_count += 1
        policy.last_error = error_message
        policy.last_error_at = now

    async def try_claim(self, policy_id, owner, now, lease) -> bool:
        policy = self.policies[policy_id]
        if policy.running_since is not None and policy.running_since >= now - lease:
            return False
        policy.running_since = now
        policy.running_owner = owner
        return True

    async def release(self, policy_id: UUID, owner: str) -> None:
        policy = self.policies[policy_id]
        if policy.running_owner == owner:
            policy.running_since = None
            policy.running_owner = None


def storage_failure(message: str = "connection reset") -> StorageError:
    return StorageError("Failed to delete from forms", details={"error": message})
