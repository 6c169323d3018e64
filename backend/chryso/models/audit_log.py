"""Audit log model for tracking administrative and system actions."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, Enum as SQLEnum, String, Text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from chryso.models.base import Base, utcnow


class AuditAction(Enum):
    """Types of auditable actions."""

    # Retention policy administration
    RETENTION_POLICY_CREATE = "retention_policy_create"
    RETENTION_POLICY_UPDATE = "retention_policy_update"
    RETENTION_POLICY_DELETE = "retention_policy_delete"
    RETENTION_POLICY_TOGGLE = "retention_policy_toggle"

    # Retention execution
    RETENTION_EXECUTE = "retention_execute"


class AuditLog(Base):
    """Audit trail entry.

    Audit logs are themselves governed by ``auditLog`` retention policies,
    so every entry is scoped to an organization and aged by ``timestamp``.
    """

    __tablename__ = "audit_logs"

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

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True,
    )

    action: Mapped[AuditAction] = mapped_column(
        SQLEnum(AuditAction, name="auditaction", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        index=True,
    )

    # Who performed the action; None for the retention service itself
    user_id: Mapped[Optional[UUID]] = mapped_column(
        PGUUID(as_uuid=True),
        nullable=True,
        index=True,
    )

    username: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    # Target of the action
    target_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    target_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        index=True,
    )

    target_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    details: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        default=dict,
        nullable=False,
    )

    severity: Mapped[str] = mapped_column(
        String(20),
        default="low",
        nullable=False,
    )

    success: Mapped[bool] = mapped_column(
        default=True,
        nullable=False,
    )

    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<AuditLog {self.action.value} by {self.username} at {self.timestamp}>"

    @classmethod
    def create(
        cls,
        organization_id: UUID,
        action: AuditAction,
        target_type: str,
        description: str,
        user_id: Optional[UUID] = None,
        username: Optional[str] = None,
        target_id: Optional[str] = None,
        target_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: str = "low",
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> "AuditLog":
        """Create a new audit log entry."""
        return cls(
            organization_id=organization_id,
            action=action,
            target_type=target_type,
            description=description,
            user_id=user_id,
            username=username,
            target_id=target_id,
            target_name=target_name,
            details=details or {},
            severity=severity,
            success=success,
            error_message=error_message,
        )
