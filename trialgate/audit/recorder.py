from __future__ import annotations

from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trialgate.audit.threats import (
    THREAT_LEVEL_RANKS,
    AuditCategory,
    ThreatLevel,
    classify,
    risk_score,
)
from trialgate.db.repo.audit_events_repo import AuditEventsRepo
from trialgate.db.session import SessionLocal

logger = structlog.get_logger(__name__)


def _log_audit_event(
    *,
    category: AuditCategory,
    account_id: UUID | None,
    identity_key: str | None,
    details: dict[str, object],
) -> None:
    threat_level = classify(category)
    log_method = (
        logger.warning
        if THREAT_LEVEL_RANKS[threat_level] >= THREAT_LEVEL_RANKS[ThreatLevel.HIGH]
        else logger.info
    )
    log_method(
        "audit_event",
        category=category.value,
        threat_level=threat_level.value,
        risk_score=risk_score(category),
        account_id=str(account_id) if account_id is not None else None,
        identity_key=identity_key,
        details=details,
    )


class AuditRecorder:
    """Append-only audit trail.

    Classification is observational only: nothing here may gate an operation,
    and a failed audit write is logged instead of propagated.
    """

    @staticmethod
    async def record(
        session: AsyncSession,
        *,
        category: AuditCategory,
        now_utc: datetime,
        account_id: UUID | None = None,
        identity_key: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        resolved_details = dict(details or {})
        _log_audit_event(
            category=category,
            account_id=account_id,
            identity_key=identity_key,
            details=resolved_details,
        )
        try:
            async with session.begin_nested():
                await AuditEventsRepo.create(
                    session,
                    category=category.value,
                    account_id=account_id,
                    identity_key=identity_key,
                    details=resolved_details,
                    created_at=now_utc,
                )
        except SQLAlchemyError:
            logger.exception("audit_event_write_failed", category=category.value)

    @staticmethod
    async def record_detached(
        *,
        category: AuditCategory,
        now_utc: datetime,
        account_id: UUID | None = None,
        identity_key: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        """Writes in its own transaction, for events whose caller is rolling back."""
        resolved_details = dict(details or {})
        _log_audit_event(
            category=category,
            account_id=account_id,
            identity_key=identity_key,
            details=resolved_details,
        )
        try:
            async with SessionLocal.begin() as session:
                await AuditEventsRepo.create(
                    session,
                    category=category.value,
                    account_id=account_id,
                    identity_key=identity_key,
                    details=resolved_details,
                    created_at=now_utc,
                )
        except SQLAlchemyError:
            logger.exception("audit_event_write_failed", category=category.value)

    @staticmethod
    def log_only(
        *,
        category: AuditCategory,
        account_id: UUID | None = None,
        identity_key: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        _log_audit_event(
            category=category,
            account_id=account_id,
            identity_key=identity_key,
            details=dict(details or {}),
        )
