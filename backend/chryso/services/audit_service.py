"""Audit logging service for retention administration and execution."""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from chryso.core.security import Principal
from chryso.models.audit_log import AuditAction, AuditLog
from chryso.models.retention_policy import RetentionPolicy

logger = structlog.get_logger()

# Runs deleting more rows than this are flagged for review
HIGH_VOLUME_DELETE_THRESHOLD = 1000


class AuditService:
    """Service for creating audit log entries."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def log(
        self,
        organization_id: UUID,
        action: AuditAction,
        target_type: str,
        description: str,
        principal: Principal | None = None,
        target_id: str | None = None,
        target_name: str | None = None,
        details: dict[str, Any] | None = None,
        severity: str = "low",
        success: bool = True,
        error_message: str | None = None,
    ) -> AuditLog:
        """Create an audit log entry.

        Args:
            organization_id: Tenant the action belongs to
            action: The type of action being logged
            target_type: Type of target (retention_policy, ...)
            description: Human-readable description of the action
            principal: The caller who performed the action; None for system runs
            target_id: ID of the target (optional)
            target_name: Name of the target (optional)
            details: Additional action details (optional)
            severity: low, medium or high
            success: Whether the action was successful
            error_message: Error message if action failed

        Returns:
            The created AuditLog entry
        """
        try:
            audit_entry = AuditLog.create(
                organization_id=organization_id,
                action=action,
                target_type=target_type,
                description=description,
                user_id=principal.user_id if principal else None,
                username=(principal.email if principal else None) or "system",
                target_id=target_id,
                target_name=target_name,
                details=details,
                severity=severity,
                success=success,
                error_message=error_message,
            )

            self._session.add(audit_entry)
            await self._session.commit()

            # Also log to structlog for immediate visibility
            log_method = logger.info if success else logger.warning
            log_method(
                "Audit log created",
                action=action.value,
                target_type=target_type,
                target_id=target_id,
                user=audit_entry.username,
                success=success,
            )

            return audit_entry

        except Exception as e:
            await self._session.rollback()
            logger.error("Failed to create audit log", error=str(e))
            raise

    async def log_policy_change(
        self,
        action: AuditAction,
        policy: RetentionPolicy,
        principal: Principal,
        details: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Log an administrative change to a retention policy."""
        # create/update/delete/toggle -> created/updated/deleted/toggled
        verb = action.value.removeprefix("retention_policy_")
        return await self.log(
            organization_id=policy.organization_id,
            action=action,
            target_type="retention_policy",
            description=f"Retention policy {policy.name} {verb}d",
            principal=principal,
            target_id=str(policy.id),
            target_name=policy.name,
            details=details,
        )

    async def log_retention_execution(
        self,
        policy: RetentionPolicy,
        details: dict[str, Any],
        success: bool,
        error_message: str | None = None,
        principal: Principal | None = None,
    ) -> AuditLog | None:
        """Log a retention run.

        Failures to write the entry are logged and swallowed so that audit
        problems never mask the outcome of the run itself.
        """
        records_deleted = int(details.get("records_deleted", 0))
        try:
            return await self.log(
                organization_id=policy.organization_id,
                action=AuditAction.RETENTION_EXECUTE,
                target_type="retention_policy",
                description=f"Executed data retention policy: {policy.name}",
                principal=principal,
                target_id=str(policy.id),
                target_name=policy.name,
                details=details,
                severity=(
                    "high"
                    if not success
                    else "medium"
                    if records_deleted > HIGH_VOLUME_DELETE_THRESHOLD
                    else "low"
                ),
                success=success,
                error_message=error_message,
            )
        except Exception as e:
            logger.error(
                "Failed to log retention audit event",
                policy_id=str(policy.id),
                error=str(e),
            )
            return None
