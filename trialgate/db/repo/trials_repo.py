from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from trialgate.db.models.trial_records import TrialRecord


class TrialRecordsRepo:
    @staticmethod
    async def get_by_account_id(session: AsyncSession, account_id: UUID) -> TrialRecord | None:
        stmt = select(TrialRecord).where(TrialRecord.account_id == account_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_account_id_for_update(
        session: AsyncSession,
        account_id: UUID,
    ) -> TrialRecord | None:
        stmt = select(TrialRecord).where(TrialRecord.account_id == account_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        account_id: UUID,
        trial_start: datetime,
        trial_end: datetime,
        status: str,
        now_utc: datetime,
    ) -> TrialRecord:
        trial = TrialRecord(
            account_id=account_id,
            trial_start=trial_start,
            trial_end=trial_end,
            status=status,
            created_at=now_utc,
            updated_at=now_utc,
        )
        session.add(trial)
        await session.flush()
        return trial
