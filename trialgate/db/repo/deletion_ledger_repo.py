from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from trialgate.db.models.deletion_ledger import DeletionLedgerEntry


class DeletionLedgerRepo:
    @staticmethod
    async def get_by_identity_key(
        session: AsyncSession,
        identity_key: str,
    ) -> DeletionLedgerEntry | None:
        stmt = select(DeletionLedgerEntry).where(DeletionLedgerEntry.identity_key == identity_key)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def upsert(
        session: AsyncSession,
        *,
        identity_key: str,
        original_account_id: UUID,
        email: str,
        trial_was_used: bool,
        ever_subscribed: bool,
        deletion_reason: str,
        deleted_at: datetime,
    ) -> DeletionLedgerEntry:
        insert_stmt = postgresql_insert(DeletionLedgerEntry).values(
            identity_key=identity_key,
            original_account_id=original_account_id,
            email=email,
            trial_was_used=trial_was_used,
            ever_subscribed=ever_subscribed,
            deletion_reason=deletion_reason,
            deletion_count=1,
            first_deleted_at=deleted_at,
            deleted_at=deleted_at,
        )
        excluded = insert_stmt.excluded
        # Usage flags only ever flip to true; first_deleted_at is never rewritten.
        stmt = insert_stmt.on_conflict_do_update(
            index_elements=[DeletionLedgerEntry.identity_key],
            set_={
                "original_account_id": excluded.original_account_id,
                "email": excluded.email,
                "trial_was_used": or_(
                    DeletionLedgerEntry.trial_was_used,
                    excluded.trial_was_used,
                ),
                "ever_subscribed": or_(
                    DeletionLedgerEntry.ever_subscribed,
                    excluded.ever_subscribed,
                ),
                "deletion_reason": excluded.deletion_reason,
                "deletion_count": DeletionLedgerEntry.deletion_count + 1,
                "deleted_at": excluded.deleted_at,
            },
        ).returning(DeletionLedgerEntry)
        result = await session.execute(
            stmt,
            execution_options={"populate_existing": True},
        )
        return result.scalar_one()
