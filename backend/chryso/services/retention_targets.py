"""Tables governed by retention policies and how each one is aged."""

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Column

from chryso.core.exceptions import ConfigurationError
from chryso.models.audit_log import AuditLog
from chryso.models.base import Base
from chryso.models.dashboard import Dashboard
from chryso.models.form import Form
from chryso.models.report import Report
from chryso.models.retention_policy import EntityType
from chryso.models.template import Template
from chryso.models.user import User


@dataclass(frozen=True)
class RetentionTarget:
    """One governed table.

    Attributes:
        entity_type: Entity type selecting this table.
        model: ORM model of the table.
        age_column: Column compared against the cutoff date.
        label: Prefix used for archive file names.
        fixed_criteria: Column/value pairs every candidate must match.
        excluded_fields: Columns never written to an archive.
    """

    entity_type: EntityType
    model: type[Base]
    age_column: str
    label: str
    fixed_criteria: tuple[tuple[str, Any], ...] = ()
    excluded_fields: frozenset[str] = field(default_factory=frozenset)

    @property
    def table_name(self) -> str:
        return self.model.__tablename__

    def column(self, name: str) -> Column:
        """Look up a column by name.

        Raises:
            ConfigurationError: If the table has no such column.
        """
        columns = self.model.__table__.columns
        if name not in columns:
            raise ConfigurationError(
                f"Unknown field '{name}' for {self.entity_type.value} records",
                details={"field": name, "table": self.table_name},
            )
        return columns[name]

    def archive_columns(self) -> list[Column]:
        return [c for c in self.model.__table__.columns if c.name not in self.excluded_fields]


TARGETS: dict[EntityType, RetentionTarget] = {
    EntityType.FORM: RetentionTarget(
        entity_type=EntityType.FORM,
        model=Form,
        age_column="created_at",
        label="forms",
    ),
    EntityType.AUDIT_LOG: RetentionTarget(
        entity_type=EntityType.AUDIT_LOG,
        model=AuditLog,
        age_column="timestamp",
        label="audit-logs",
    ),
    EntityType.REPORT: RetentionTarget(
        entity_type=EntityType.REPORT,
        model=Report,
        age_column="created_at",
        label="reports",
    ),
    # Only inactive accounts are removed
    EntityType.USER: RetentionTarget(
        entity_type=EntityType.USER,
        model=User,
        age_column="last_login",
        label="users",
        fixed_criteria=(("is_active", False),),
        excluded_fields=frozenset({"password_hash"}),
    ),
    EntityType.TEMPLATE: RetentionTarget(
        entity_type=EntityType.TEMPLATE,
        model=Template,
        age_column="created_at",
        label="templates",
        fixed_criteria=(("is_active", False),),
    ),
    EntityType.DASHBOARD: RetentionTarget(
        entity_type=EntityType.DASHBOARD,
        model=Dashboard,
        age_column="last_accessed",
        label="dashboards",
    ),
}


def targets_for(entity_type: EntityType) -> list[RetentionTarget]:
    """Targets processed for a policy's entity type, in processing order."""
    entity_type = EntityType(entity_type)
    if entity_type == EntityType.ALL:
        return list(TARGETS.values())
    return [TARGETS[entity_type]]
