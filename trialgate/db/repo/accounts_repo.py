from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from sqlalchemy.ext.asyncio import AsyncSession

from trialgate.db.models.accounts import Account
from trialgate.db.models.subscriptions import Subscription
from trialgate.db.models.trial_records import TrialRecord


class AccountsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, account_id: UUID) -> Account | None:
        return await session.get(Account, account_id)

    @staticmethod
    async def get_by_id_for_update(session: AsyncSession, account_id: UUID) -> Account | None:
        stmt = select(Account).where(Account.id == account_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        account_id: UUID,
        email: str,
        identity_key: str,
        lifecycle_state: str,
        created_at: datetime,
    ) -> Account:
        account = Account(
            id=account_id,
            email=email,
            identity_key=identity_key,
            status="ACTIVE",
            lifecycle_state=lifecycle_state,
            created_at=created_at,
            updated_at=created_at,
        )
        session.add(account)
        await session.flush()
        return account

    @staticmethod
    async def list_due_trial_account_ids(
        session: AsyncSession,
        *,
        now_utc: datetime,
        after_account_id: UUID | None,
        limit: int,
    ) -> list[UUID]:
        stmt = (
            select(Account.id)
            .join(TrialRecord, TrialRecord.account_id == Account.id)
            .where(
                Account.status == "ACTIVE",
                Account.lifecycle_state == "TRIAL_ACTIVE",
                TrialRecord.status == "active",
                TrialRecord.trial_end <= now_utc,
            )
            .order_by(Account.id.asc())
            .limit(max(1, int(limit)))
        )
        if after_account_id is not None:
            stmt = stmt.where(Account.id > after_account_id)
        result = await session.execute(stmt)
        return list(result.scalars())

    @staticmethod
    async def list_ended_period_account_ids(
        session: AsyncSession,
        *,
        now_utc: datetime,
        after_account_id: UUID | None,
        limit: int,
    ) -> list[UUID]:
        stmt = (
            select(Account.id)
            .join(Subscription, Subscription.account_id == Account.id)
            .where(
                Account.status == "ACTIVE",
                Account.lifecycle_state == "SUBSCRIPTION_CANCELED",
                Subscription.status.in_(("active", "trialing")),
                Subscription.cancel_at_period_end.is_(True),
                Subscription.current_period_end <= now_utc,
            )
            .order_by(Account.id.asc())
            .limit(max(1, int(limit)))
        )
        if after_account_id is not None:
            stmt = stmt.where(Account.id > after_account_id)
        result = await session.execute(stmt)
        return list(result.scalars())
