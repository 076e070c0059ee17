from __future__ import annotations

from collections.abc import Collection
from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from trialgate.db.models.audit_events import AuditEvent


class AuditEventsRepo:
    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        category: str,
        account_id: UUID | None,
        identity_key: str | None,
        details: dict[str, object],
        created_at: datetime,
    ) -> AuditEvent:
        event = AuditEvent(
            category=category,
            account_id=account_id,
            identity_key=identity_key,
            details=details,
            created_at=created_at,
        )
        session.add(event)
        await session.flush()
        return event

    @staticmethod
    async def list_recent(
        session: AsyncSession,
        *,
        categories: Collection[str],
        since_utc: datetime,
        limit: int,
    ) -> list[AuditEvent]:
        if not categories:
            return []
        stmt = (
            select(AuditEvent)
            .where(
                AuditEvent.category.in_(tuple(categories)),
                AuditEvent.created_at >= since_utc,
            )
            .order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
            .limit(max(1, int(limit)))
        )
        result = await session.execute(stmt)
        return list(result.scalars())

    @staticmethod
    async def count_by_category_since(
        session: AsyncSession,
        *,
        since_utc: datetime,
    ) -> dict[str, int]:
        stmt = (
            select(AuditEvent.category, func.count(AuditEvent.id))
            .where(AuditEvent.created_at >= since_utc)
            .group_by(AuditEvent.category)
        )
        result = await session.execute(stmt)
        return {str(category): int(count) for category, count in result.all()}

    @staticmethod
    async def delete_created_before(
        session: AsyncSession,
        *,
        cutoff_utc: datetime,
        limit: int,
    ) -> int:
        resolved_limit = max(1, int(limit))
        candidate_ids = (
            select(AuditEvent.id)
            .where(AuditEvent.created_at < cutoff_utc)
            .order_by(AuditEvent.created_at.asc(), AuditEvent.id.asc())
            .limit(resolved_limit)
            .scalar_subquery()
        )
        stmt = delete(AuditEvent).where(AuditEvent.id.in_(candidate_ids)).returning(AuditEvent.id)
        result = await session.execute(stmt)
        return len(list(result.scalars()))
