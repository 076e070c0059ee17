from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from trialgate.db.models.super_admin_grants import SuperAdminGrant


class AdminGrantsRepo:
    @staticmethod
    async def get_by_account_id(session: AsyncSession, account_id: UUID) -> SuperAdminGrant | None:
        stmt = select(SuperAdminGrant).where(SuperAdminGrant.account_id == account_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def upsert(
        session: AsyncSession,
        *,
        account_id: UUID,
        granted_by: UUID | None,
        granted_at: datetime,
        expires_at: datetime,
    ) -> SuperAdminGrant:
        insert_stmt = postgresql_insert(SuperAdminGrant).values(
            account_id=account_id,
            granted_by=granted_by,
            granted_at=granted_at,
            expires_at=expires_at,
            revoked_at=None,
        )
        excluded = insert_stmt.excluded
        stmt = insert_stmt.on_conflict_do_update(
            index_elements=[SuperAdminGrant.account_id],
            set_={
                "granted_by": excluded.granted_by,
                "granted_at": excluded.granted_at,
                "expires_at": excluded.expires_at,
                "revoked_at": None,
            },
        ).returning(SuperAdminGrant)
        result = await session.execute(stmt, execution_options={"populate_existing": True})
        return result.scalar_one()
