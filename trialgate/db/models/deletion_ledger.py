from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, Boolean, CheckConstraint, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from trialgate.db.models.base import Base


class DeletionLedgerEntry(Base):
    __tablename__ = "deletion_ledger"
    __table_args__ = (
        CheckConstraint("deletion_count > 0", name="ck_deletion_ledger_count_positive"),
        Index("idx_deletion_ledger_deleted_at", "deleted_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    identity_key: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    original_account_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    email: Mapped[str] = mapped_column(Text, nullable=False)
    trial_was_used: Mapped[bool] = mapped_column(Boolean, nullable=False)
    ever_subscribed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    deletion_reason: Mapped[str] = mapped_column(String(64), nullable=False)
    deletion_count: Mapped[int] = mapped_column(Integer, nullable=False)
    first_deleted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    deleted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
