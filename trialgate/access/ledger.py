from __future__ import annotations

from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trialgate.access.identity import normalize_email
from trialgate.db.models.deletion_ledger import DeletionLedgerEntry
from trialgate.db.repo.deletion_ledger_repo import DeletionLedgerRepo
from trialgate.lifecycle.errors import HistoryRecordFailedError

logger = structlog.get_logger(__name__)


class DeletionLedger:
    @staticmethod
    async def record_deletion(
        session: AsyncSession,
        *,
        account_id: UUID,
        email: str,
        reason: str,
        trial_was_used: bool,
        ever_subscribed: bool,
        now_utc: datetime,
    ) -> DeletionLedgerEntry:
        identity_key = normalize_email(email)
        try:
            return await DeletionLedgerRepo.upsert(
                session,
                identity_key=identity_key,
                original_account_id=account_id,
                email=email,
                trial_was_used=trial_was_used,
                ever_subscribed=ever_subscribed,
                deletion_reason=reason,
                deleted_at=now_utc,
            )
        except SQLAlchemyError as exc:
            logger.error(
                "deletion_history_write_failed",
                account_id=str(account_id),
                identity_key=identity_key,
                error_type=type(exc).__name__,
            )
            raise HistoryRecordFailedError(identity_key) from exc

    @staticmethod
    async def lookup(session: AsyncSession, email: str) -> DeletionLedgerEntry | None:
        return await DeletionLedgerRepo.get_by_identity_key(session, normalize_email(email))
