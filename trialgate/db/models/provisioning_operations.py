from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from trialgate.db.models.base import Base


class ProvisioningOperation(Base):
    __tablename__ = "provisioning_operations"
    __table_args__ = (
        CheckConstraint(
            "action IN ('ACTIVATE','DEACTIVATE','DELETE')",
            name="ck_provisioning_operations_action",
        ),
        CheckConstraint(
            "status IN ('PENDING','SUCCEEDED','FAILED','SKIPPED')",
            name="ck_provisioning_operations_status",
        ),
        Index("idx_provisioning_operations_account_created", "account_id", "created_at"),
        Index(
            "idx_provisioning_operations_failed_updated",
            "updated_at",
            postgresql_where=text("status = 'FAILED'"),
        ),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    account_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    external_user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
