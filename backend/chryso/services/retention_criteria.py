"""Selection criteria for retention runs and their SQL translation.

The executor describes which records a policy selects with a
:class:`RetentionQuery`; record stores turn it into a concrete query.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Column, DateTime, Integer, Numeric, String, cast, or_
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.sql.elements import ColumnElement

from chryso.core.exceptions import ConfigurationError
from chryso.models.retention_policy import ConditionOperator
from chryso.services.retention_targets import RetentionTarget


@dataclass(frozen=True)
class PolicyCondition:
    """Additional filter attached to a policy."""

    field: str
    operator: ConditionOperator
    value: Any = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "PolicyCondition":
        try:
            return cls(
                field=raw["field"],
                operator=ConditionOperator(raw["operator"]),
                value=raw.get("value"),
            )
        except (KeyError, ValueError) as e:
            raise ConfigurationError(
                "Malformed retention condition",
                details={"condition": raw, "error": str(e)},
            )


@dataclass(frozen=True)
class RetentionQuery:
    """Records of one target selected by one policy run.

    Candidates belong to ``organization_id``, have their age column older
    than ``cutoff``, match every fixed criterion and condition, and are not
    listed in ``excluded_ids``.
    """

    target: RetentionTarget
    organization_id: UUID
    cutoff: datetime
    conditions: tuple[PolicyCondition, ...] = ()
    excluded_ids: frozenset[UUID] = field(default_factory=frozenset)

    def validate(self) -> None:
        """Check every referenced field exists on the target table.

        Raises:
            ConfigurationError: On an unknown field.
        """
        self.target.column(self.target.age_column)
        for condition in self.conditions:
            self.target.column(condition.field)


def parse_conditions(raw_conditions: list[dict[str, Any]] | None) -> tuple[PolicyCondition, ...]:
    return tuple(PolicyCondition.from_dict(raw) for raw in raw_conditions or [])


def _parse_datetime(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ConfigurationError(
                f"Invalid date value '{value}' in retention condition",
                details={"value": value},
            )
    return value


def coerce_value(column: Column, value: Any) -> Any:
    """Convert a JSON condition value to the column's Python type."""
    if value is None:
        return None
    if isinstance(column.type, DateTime):
        return _parse_datetime(value)
    if isinstance(column.type, Integer) and isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return float(value)
    if isinstance(column.type, Numeric) and isinstance(value, str):
        return float(value)
    return value


def _as_text(column: Column) -> ColumnElement:
    if isinstance(column.type, String) and not isinstance(column.type, SQLEnum):
        return column
    return cast(column, String)


def condition_clause(target: RetentionTarget, condition: PolicyCondition) -> ColumnElement[bool]:
    """Translate one condition into a SQL boolean expression."""
    column = target.column(condition.field)
    op = condition.operator

    if op == ConditionOperator.EXISTS:
        return column.is_not(None) if condition.value else column.is_(None)

    if op == ConditionOperator.CONTAINS:
        return _as_text(column).icontains(str(condition.value), autoescape=True)

    value = coerce_value(column, condition.value)

    if op == ConditionOperator.EQUALS:
        return column.is_(None) if value is None else column == value
    if op == ConditionOperator.NOT_EQUALS:
        # Missing values count as "not equal"
        if value is None:
            return column.is_not(None)
        return or_(column != value, column.is_(None))
    if op == ConditionOperator.GREATER_THAN:
        return column > value
    if op == ConditionOperator.LESS_THAN:
        return column < value

    raise ConfigurationError(f"Unsupported condition operator '{op}'")


def to_clauses(query: RetentionQuery) -> list[ColumnElement[bool]]:
    """Translate a retention query into WHERE clauses for its target table."""
    target = query.target
    clauses: list[ColumnElement[bool]] = [
        target.column("organization_id") == query.organization_id,
        target.column(target.age_column) < query.cutoff,
    ]

    for name, expected in target.fixed_criteria:
        clauses.append(target.column(name) == expected)

    clauses.extend(condition_clause(target, c) for c in query.conditions)

    if query.excluded_ids:
        clauses.append(target.column("id").not_in(sorted(query.excluded_ids, key=str)))

    return clauses
