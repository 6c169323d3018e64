"""SQLAlchemy models for Chryso Forms."""

from chryso.models.audit_log import AuditAction, AuditLog
from chryso.models.base import Base, TimestampMixin
from chryso.models.dashboard import Dashboard
from chryso.models.form import Form, FormStatus
from chryso.models.legal_hold import LegalHold
from chryso.models.report import Report
from chryso.models.retention_policy import (
    ArchiveFormat,
    ConditionOperator,
    EntityType,
    RetentionPolicy,
    RetentionUnit,
    ScheduleFrequency,
)
from chryso.models.template import Template
from chryso.models.user import User

__all__ = [
    "Base",
    "TimestampMixin",
    "AuditLog",
    "AuditAction",
    "Dashboard",
    "Form",
    "FormStatus",
    "LegalHold",
    "Report",
    "Template",
    "User",
    # Retention
    "RetentionPolicy",
    "EntityType",
    "RetentionUnit",
    "ArchiveFormat",
    "ConditionOperator",
    "ScheduleFrequency",
]
