from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from trialgate.db.models.webhook_events import WebhookEvent

TERMINAL_STATUSES = ("PROCESSED", "IGNORED")


class WebhookEventsRepo:
    @staticmethod
    async def purge_expired_matches(
        session: AsyncSession,
        *,
        event_id: str,
        payload_hash: str,
        cutoff_utc: datetime,
    ) -> int:
        stmt = (
            delete(WebhookEvent)
            .where(
                or_(
                    WebhookEvent.event_id == event_id,
                    WebhookEvent.payload_hash == payload_hash,
                ),
                WebhookEvent.received_at < cutoff_utc,
                WebhookEvent.status.in_(TERMINAL_STATUSES),
            )
            .returning(WebhookEvent.id)
        )
        result = await session.execute(stmt)
        return len(list(result.scalars()))

    @staticmethod
    async def try_insert(
        session: AsyncSession,
        *,
        event_id: str,
        event_type: str,
        payload_hash: str,
        payload: dict[str, object],
        provider_created_at: datetime | None,
        received_at: datetime,
    ) -> int | None:
        # No conflict target: a clash on event_id or on payload_hash both count as a replay.
        stmt = (
            postgresql_insert(WebhookEvent)
            .values(
                event_id=event_id,
                event_type=event_type,
                payload_hash=payload_hash,
                payload=payload,
                status="RECEIVED",
                attempts=0,
                provider_created_at=provider_created_at,
                received_at=received_at,
            )
            .on_conflict_do_nothing()
            .returning(WebhookEvent.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_first_match(
        session: AsyncSession,
        *,
        event_id: str,
        payload_hash: str,
    ) -> WebhookEvent | None:
        stmt = (
            select(WebhookEvent)
            .where(
                or_(
                    WebhookEvent.event_id == event_id,
                    WebhookEvent.payload_hash == payload_hash,
                )
            )
            .order_by(WebhookEvent.received_at.asc(), WebhookEvent.id.asc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_event_id(session: AsyncSession, event_id: str) -> WebhookEvent | None:
        stmt = select(WebhookEvent).where(WebhookEvent.event_id == event_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def try_claim(
        session: AsyncSession,
        *,
        event_id: str,
        processing_task_id: str | None,
        max_attempts: int,
    ) -> WebhookEvent | None:
        stmt = (
            update(WebhookEvent)
            .where(
                WebhookEvent.event_id == event_id,
                WebhookEvent.status.in_(("RECEIVED", "FAILED")),
                WebhookEvent.attempts < max(1, int(max_attempts)),
            )
            .values(
                status="PROCESSING",
                attempts=WebhookEvent.attempts + 1,
                processing_task_id=processing_task_id,
                processed_at=func.now(),
            )
            .returning(WebhookEvent)
        )
        result = await session.execute(stmt, execution_options={"populate_existing": True})
        return result.scalar_one_or_none()

    @staticmethod
    async def try_reclaim_stale(
        session: AsyncSession,
        *,
        event_id: str,
        processing_task_id: str | None,
        processing_ttl_seconds: int,
    ) -> WebhookEvent | None:
        processing_age_seconds = func.extract(
            "epoch",
            func.now() - WebhookEvent.processed_at,
        )
        stmt = (
            update(WebhookEvent)
            .where(
                WebhookEvent.event_id == event_id,
                WebhookEvent.status == "PROCESSING",
                processing_age_seconds >= max(1, int(processing_ttl_seconds)),
            )
            .values(
                attempts=WebhookEvent.attempts + 1,
                processing_task_id=processing_task_id,
                processed_at=func.now(),
            )
            .returning(WebhookEvent)
        )
        result = await session.execute(stmt, execution_options={"populate_existing": True})
        return result.scalar_one_or_none()

    @staticmethod
    async def set_status(
        session: AsyncSession,
        *,
        event_id: str,
        status: str,
        last_error: str | None = None,
        processed_at: datetime | None = None,
    ) -> int:
        stmt = (
            update(WebhookEvent)
            .where(WebhookEvent.event_id == event_id)
            .values(
                status=status,
                last_error=last_error,
                processed_at=processed_at or func.now(),
            )
            .returning(WebhookEvent.id)
        )
        result = await session.execute(stmt)
        return 1 if result.scalar_one_or_none() is not None else 0

    @staticmethod
    async def list_recoverable_event_ids(
        session: AsyncSession,
        *,
        received_before_utc: datetime,
        processing_ttl_seconds: int,
        max_attempts: int,
        limit: int,
    ) -> list[str]:
        processing_age_seconds = func.extract(
            "epoch",
            func.now() - WebhookEvent.processed_at,
        )
        stmt = (
            select(WebhookEvent.event_id)
            .where(
                WebhookEvent.received_at < received_before_utc,
                WebhookEvent.attempts < max(1, int(max_attempts)),
                or_(
                    WebhookEvent.status.in_(("RECEIVED", "FAILED")),
                    (WebhookEvent.status == "PROCESSING")
                    & (processing_age_seconds >= max(1, int(processing_ttl_seconds))),
                ),
            )
            .order_by(WebhookEvent.received_at.asc(), WebhookEvent.id.asc())
            .limit(max(1, int(limit)))
        )
        result = await session.execute(stmt)
        return list(result.scalars())

    @staticmethod
    async def delete_terminal_before(
        session: AsyncSession,
        *,
        cutoff_utc: datetime,
        limit: int,
    ) -> int:
        resolved_limit = max(1, int(limit))
        candidate_ids = (
            select(WebhookEvent.id)
            .where(
                WebhookEvent.received_at < cutoff_utc,
                WebhookEvent.status.in_(TERMINAL_STATUSES),
            )
            .order_by(WebhookEvent.received_at.asc(), WebhookEvent.id.asc())
            .limit(resolved_limit)
            .scalar_subquery()
        )
        stmt = delete(WebhookEvent).where(WebhookEvent.id.in_(candidate_ids)).returning(WebhookEvent.id)
        result = await session.execute(stmt)
        return len(list(result.scalars()))
