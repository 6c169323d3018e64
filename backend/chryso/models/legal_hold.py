"""Record-level legal holds that block retention deletes."""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from chryso.models.base import Base, utcnow
from chryso.models.retention_policy import EntityType


class LegalHold(Base):
    """Legal hold placed on a single record.

    A hold is in effect until it is released or its ``hold_until`` passes.
    Records under a hold in effect are never selected for deletion.
    """

    __tablename__ = "legal_holds"
    __table_args__ = (
        Index("ix_legal_holds_org_entity", "organization_id", "entity_type"),
    )

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    organization_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False)
    entity_type: Mapped[EntityType] = mapped_column(
        SQLEnum(
            EntityType,
            name="retentionentitytype",
            values_callable=lambda x: [e.value for e in x],
            create_type=False,
        ),
        nullable=False,
    )
    record_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    reason: Mapped[Optional[str]] = mapped_column(Text(), nullable=True)
    reference: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    hold_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    released_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_by: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<LegalHold {self.entity_type.value}:{self.record_id}>"

    def is_in_effect(self, now: Optional[datetime] = None) -> bool:
        """Whether the hold currently blocks deletion."""
        if self.released_at is not None:
            return False
        if self.hold_until is None:
            return True
        hold_until = self.hold_until
        if hold_until.tzinfo is None:
            hold_until = hold_until.replace(tzinfo=timezone.utc)
        return hold_until > (now or datetime.now(timezone.utc))
