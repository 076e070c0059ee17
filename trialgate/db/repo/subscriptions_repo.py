from __future__ import annotations

from collections.abc import Collection
from datetime import datetime
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from trialgate.db.models.subscriptions import Subscription

LIVE_STATUSES = ("active", "trialing")
OPEN_STATUSES = ("active", "trialing", "past_due")


class SubscriptionsRepo:
    @staticmethod
    async def get_by_subscription_id_for_update(
        session: AsyncSession,
        subscription_id: str,
    ) -> Subscription | None:
        stmt = (
            select(Subscription)
            .where(Subscription.subscription_id == subscription_id)
            .with_for_update()
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_current_for_account(
        session: AsyncSession,
        account_id: UUID,
    ) -> Subscription | None:
        live_first = case((Subscription.status.in_(LIVE_STATUSES), 0), else_=1)
        stmt = (
            select(Subscription)
            .where(Subscription.account_id == account_id)
            .order_by(live_first.asc(), Subscription.updated_at.desc(), Subscription.id.desc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_for_account_for_update(
        session: AsyncSession,
        account_id: UUID,
        *,
        statuses: Collection[str] = LIVE_STATUSES,
    ) -> list[Subscription]:
        stmt = (
            select(Subscription)
            .where(
                Subscription.account_id == account_id,
                Subscription.status.in_(tuple(statuses)),
            )
            .order_by(Subscription.id.asc())
            .with_for_update()
        )
        result = await session.execute(stmt)
        return list(result.scalars())

    @staticmethod
    async def has_any_for_account(session: AsyncSession, account_id: UUID) -> bool:
        stmt = select(func.count(Subscription.id)).where(Subscription.account_id == account_id)
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0) > 0

    @staticmethod
    async def find_account_id(
        session: AsyncSession,
        *,
        subscription_id: str,
        customer_id: str | None,
    ) -> UUID | None:
        stmt = select(Subscription.account_id).where(
            Subscription.subscription_id == subscription_id
        )
        result = await session.execute(stmt)
        account_id = result.scalar_one_or_none()
        if account_id is not None or not customer_id:
            return account_id

        stmt = (
            select(Subscription.account_id)
            .where(Subscription.customer_id == customer_id)
            .order_by(Subscription.updated_at.desc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        account_id: UUID,
        subscription_id: str,
        customer_id: str,
        status: str,
        current_period_end: datetime | None,
        cancel_at_period_end: bool,
        last_event_at: datetime,
        now_utc: datetime,
    ) -> Subscription:
        subscription = Subscription(
            account_id=account_id,
            subscription_id=subscription_id,
            customer_id=customer_id,
            status=status,
            current_period_end=current_period_end,
            cancel_at_period_end=cancel_at_period_end,
            last_event_at=last_event_at,
            created_at=now_utc,
            updated_at=now_utc,
        )
        session.add(subscription)
        await session.flush()
        return subscription
