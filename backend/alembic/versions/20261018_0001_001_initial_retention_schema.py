"""Initial schema: governed tables, audit logs, retention policies, legal holds.

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUM_TYPES = {
    "userrole": ("admin", "manager", "technician"),
    "formstatus": ("draft", "in_progress", "completed", "submitted", "approved", "rejected"),
    "auditaction": (
        "retention_policy_create",
        "retention_policy_update",
        "retention_policy_delete",
        "retention_policy_toggle",
        "retention_execute",
    ),
    "retentionentitytype": ("form", "auditLog", "report", "user", "template", "dashboard", "all"),
    "retentionunit": ("days", "months", "years"),
    "archiveformat": ("json", "csv", "compressed"),
    "schedulefrequency": ("daily", "weekly", "monthly"),
}


def upgrade() -> None:
    # Create enum types using raw SQL
    for name, values in ENUM_TYPES.items():
        labels = ", ".join(f"'{value}'" for value in values)
        op.execute(f"""
            DO $$
            BEGIN
                IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = '{name}') THEN
                    CREATE TYPE {name} AS ENUM ({labels});
                END IF;
            END$$
        """)

    # Governed tables
    op.execute("""
        CREATE TABLE users (
            id UUID NOT NULL PRIMARY KEY,
            organization_id UUID NOT NULL,
            email VARCHAR(255) NOT NULL,
            name VARCHAR(255) NOT NULL,
            password_hash VARCHAR(255) NOT NULL,
            role userrole NOT NULL DEFAULT 'technician',
            is_active BOOLEAN NOT NULL DEFAULT true,
            last_login TIMESTAMP WITH TIME ZONE,
            created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP,
            CONSTRAINT uq_users_email UNIQUE (email)
        )
    """)
    op.execute("CREATE INDEX ix_users_organization_id ON users(organization_id)")
    op.execute("CREATE INDEX ix_users_email ON users(email)")

    op.execute("""
        CREATE TABLE forms (
            id UUID NOT NULL PRIMARY KEY,
            organization_id UUID NOT NULL,
            title VARCHAR(255) NOT NULL,
            status formstatus NOT NULL DEFAULT 'draft',
            customer_name VARCHAR(255),
            worksite_name VARCHAR(255),
            technician_id UUID,
            notes TEXT,
            data JSON NOT NULL DEFAULT '{}',
            submitted_at TIMESTAMP WITH TIME ZONE,
            created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.execute("CREATE INDEX ix_forms_organization_id ON forms(organization_id)")
    op.execute("CREATE INDEX ix_forms_status ON forms(status)")

    op.execute("""
        CREATE TABLE reports (
            id UUID NOT NULL PRIMARY KEY,
            organization_id UUID NOT NULL,
            name VARCHAR(255) NOT NULL,
            report_type VARCHAR(50) NOT NULL,
            created_by UUID,
            filters JSON NOT NULL DEFAULT '{}',
            created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.execute("CREATE INDEX ix_reports_organization_id ON reports(organization_id)")

    op.execute("""
        CREATE TABLE templates (
            id UUID NOT NULL PRIMARY KEY,
            organization_id UUID NOT NULL,
            name VARCHAR(255) NOT NULL,
            category VARCHAR(100),
            version INTEGER NOT NULL DEFAULT 1,
            is_active BOOLEAN NOT NULL DEFAULT true,
            fields JSON NOT NULL DEFAULT '[]',
            created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.execute("CREATE INDEX ix_templates_organization_id ON templates(organization_id)")

    op.execute("""
        CREATE TABLE dashboards (
            id UUID NOT NULL PRIMARY KEY,
            organization_id UUID NOT NULL,
            name VARCHAR(255) NOT NULL,
            owner_id UUID,
            is_shared BOOLEAN NOT NULL DEFAULT false,
            widgets JSON NOT NULL DEFAULT '[]',
            last_accessed TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP,
            created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.execute("CREATE INDEX ix_dashboards_organization_id ON dashboards(organization_id)")

    # Audit trail (itself governed by auditLog policies)
    op.execute("""
        CREATE TABLE audit_logs (
            id UUID NOT NULL PRIMARY KEY,
            organization_id UUID NOT NULL,
            timestamp TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP,
            action auditaction NOT NULL,
            user_id UUID,
            username VARCHAR(255),
            target_type VARCHAR(50) NOT NULL,
            target_id VARCHAR(100),
            target_name VARCHAR(255),
            description TEXT NOT NULL,
            details JSON NOT NULL DEFAULT '{}',
            severity VARCHAR(20) NOT NULL DEFAULT 'low',
            success BOOLEAN NOT NULL DEFAULT true,
            error_message TEXT
        )
    """)
    op.execute("CREATE INDEX ix_audit_logs_organization_id ON audit_logs(organization_id)")
    op.execute("CREATE INDEX ix_audit_logs_timestamp ON audit_logs(timestamp)")
    op.execute("CREATE INDEX ix_audit_logs_action ON audit_logs(action)")
    op.execute("CREATE INDEX ix_audit_logs_user_id ON audit_logs(user_id)")
    op.execute("CREATE INDEX ix_audit_logs_target_id ON audit_logs(target_id)")

    # Retention policies
    op.execute("""
        CREATE TABLE retention_policies (
            id UUID NOT NULL PRIMARY KEY,
            organization_id UUID NOT NULL,
            name VARCHAR(100) NOT NULL,
            description TEXT,
            is_active BOOLEAN NOT NULL DEFAULT true,
            entity_type retentionentitytype NOT NULL,
            retention_value INTEGER NOT NULL,
            retention_unit retentionunit NOT NULL,
            archive_before_delete BOOLEAN NOT NULL DEFAULT true,
            archive_location VARCHAR(512),
            archive_format archiveformat NOT NULL DEFAULT 'compressed',
            conditions JSON NOT NULL DEFAULT '[]',
            legal_hold_enabled BOOLEAN NOT NULL DEFAULT false,
            legal_hold_reason TEXT,
            legal_hold_until TIMESTAMP WITH TIME ZONE,
            legal_hold_exempt_from_deletion BOOLEAN NOT NULL DEFAULT true,
            compliance_requirements JSON NOT NULL DEFAULT '{}',
            schedule_frequency schedulefrequency NOT NULL,
            schedule_day_of_week INTEGER,
            schedule_day_of_month INTEGER,
            schedule_hour INTEGER NOT NULL,
            schedule_timezone VARCHAR(64) NOT NULL DEFAULT 'UTC',
            last_executed TIMESTAMP WITH TIME ZONE,
            records_archived BIGINT NOT NULL DEFAULT 0,
            records_deleted BIGINT NOT NULL DEFAULT 0,
            total_size_archived BIGINT NOT NULL DEFAULT 0,
            error_count INTEGER NOT NULL DEFAULT 0,
            last_error TEXT,
            last_error_at TIMESTAMP WITH TIME ZONE,
            running_since TIMESTAMP WITH TIME ZONE,
            running_owner VARCHAR(255),
            created_by UUID NOT NULL,
            modified_by UUID,
            deleted_at TIMESTAMP WITH TIME ZONE,
            created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP,
            CONSTRAINT ck_retention_policies_retention_value_positive
                CHECK (retention_value >= 1),
            CONSTRAINT ck_retention_policies_schedule_hour_range
                CHECK (schedule_hour BETWEEN 0 AND 23),
            CONSTRAINT ck_retention_policies_schedule_day_of_week_range
                CHECK (schedule_day_of_week IS NULL OR schedule_day_of_week BETWEEN 0 AND 6),
            CONSTRAINT ck_retention_policies_schedule_day_of_month_range
                CHECK (schedule_day_of_month IS NULL OR schedule_day_of_month BETWEEN 1 AND 31)
        )
    """)
    op.execute(
        "CREATE UNIQUE INDEX uq_retention_policies_org_name "
        "ON retention_policies(organization_id, name) WHERE deleted_at IS NULL"
    )
    op.execute(
        "CREATE INDEX ix_retention_policies_organization_id ON retention_policies(organization_id)"
    )
    op.execute(
        "CREATE INDEX ix_retention_policies_org_entity "
        "ON retention_policies(organization_id, entity_type)"
    )
    op.execute(
        "CREATE INDEX ix_retention_policies_active_frequency "
        "ON retention_policies(is_active, schedule_frequency)"
    )
    op.execute(
        "CREATE INDEX ix_retention_policies_last_executed ON retention_policies(last_executed)"
    )

    # Record-level legal holds
    op.execute("""
        CREATE TABLE legal_holds (
            id UUID NOT NULL PRIMARY KEY,
            organization_id UUID NOT NULL,
            entity_type retentionentitytype NOT NULL,
            record_id UUID NOT NULL,
            reason TEXT,
            reference VARCHAR(120),
            hold_until TIMESTAMP WITH TIME ZONE,
            released_at TIMESTAMP WITH TIME ZONE,
            created_by UUID,
            created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.execute(
        "CREATE INDEX ix_legal_holds_org_entity ON legal_holds(organization_id, entity_type)"
    )
    op.execute("CREATE INDEX ix_legal_holds_record_id ON legal_holds(record_id)")


def downgrade() -> None:
    for table in (
        "legal_holds",
        "retention_policies",
        "audit_logs",
        "dashboards",
        "templates",
        "reports",
        "forms",
        "users",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table}")

    for name in reversed(list(ENUM_TYPES)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
