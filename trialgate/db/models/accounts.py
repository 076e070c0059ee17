from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Index, String, Text, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from trialgate.db.models.base import Base


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint(
            "status IN ('ACTIVE','DELETION_RECORDED','DELETED')",
            name="ck_accounts_status",
        ),
        CheckConstraint(
            "lifecycle_state IN ('TRIAL_ACTIVE','NO_TRIAL','TRIAL_EXPIRED','SUBSCRIPTION_ACTIVE',"
            "'SUBSCRIPTION_CANCELED','DELETION_RECORDED','REMOVED')",
            name="ck_accounts_lifecycle_state",
        ),
        Index("idx_accounts_identity_key", "identity_key"),
        Index("idx_accounts_created_at", "created_at"),
        Index(
            "idx_accounts_lifecycle_state_created",
            "lifecycle_state",
            "created_at",
            postgresql_where=text("status = 'ACTIVE'"),
        ),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)
    email: Mapped[str] = mapped_column(Text, nullable=False)
    identity_key: Mapped[str] = mapped_column(String(320), nullable=False)
    status: Mapped[str] = mapped_column(String(24), nullable=False)
    lifecycle_state: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
