from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from trialgate.db.models.provisioning_operations import ProvisioningOperation


class ProvisioningOperationsRepo:
    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        account_id: UUID,
        action: str,
        now_utc: datetime,
    ) -> ProvisioningOperation:
        operation = ProvisioningOperation(
            account_id=account_id,
            action=action,
            status="PENDING",
            attempts=0,
            created_at=now_utc,
            updated_at=now_utc,
        )
        session.add(operation)
        await session.flush()
        return operation

    @staticmethod
    async def mark_attempt(session: AsyncSession, *, operation_id: int, now_utc: datetime) -> int:
        stmt = (
            update(ProvisioningOperation)
            .where(ProvisioningOperation.id == operation_id)
            .values(
                status="PENDING",
                attempts=ProvisioningOperation.attempts + 1,
                updated_at=now_utc,
            )
            .returning(ProvisioningOperation.attempts)
        )
        result = await session.execute(stmt)
        attempts = result.scalar_one_or_none()
        return int(attempts or 0)

    @staticmethod
    async def mark_succeeded(
        session: AsyncSession,
        *,
        operation_id: int,
        external_user_id: str | None,
        now_utc: datetime,
    ) -> None:
        stmt = (
            update(ProvisioningOperation)
            .where(ProvisioningOperation.id == operation_id)
            .values(
                status="SUCCEEDED",
                external_user_id=external_user_id,
                last_error=None,
                updated_at=now_utc,
            )
        )
        await session.execute(stmt)

    @staticmethod
    async def mark_failed(
        session: AsyncSession,
        *,
        operation_id: int,
        error: str,
        now_utc: datetime,
    ) -> None:
        stmt = (
            update(ProvisioningOperation)
            .where(ProvisioningOperation.id == operation_id)
            .values(
                status="FAILED",
                last_error=error[:2000],
                updated_at=now_utc,
            )
        )
        await session.execute(stmt)

    @staticmethod
    async def mark_skipped(
        session: AsyncSession,
        *,
        operation_id: int,
        reason: str,
        now_utc: datetime,
    ) -> None:
        stmt = (
            update(ProvisioningOperation)
            .where(ProvisioningOperation.id == operation_id)
            .values(
                status="SKIPPED",
                last_error=reason,
                updated_at=now_utc,
            )
        )
        await session.execute(stmt)
