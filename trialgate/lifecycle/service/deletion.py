from __future__ import annotations

from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError

from trialgate.access.identity import normalize_email
from trialgate.access.ledger import DeletionLedger
from trialgate.access.types import SubscriptionStatus, TrialStatus
from trialgate.audit.recorder import AuditRecorder
from trialgate.audit.threats import AuditCategory
from trialgate.db.repo.accounts_repo import AccountsRepo
from trialgate.db.repo.deletion_ledger_repo import DeletionLedgerRepo
from trialgate.db.repo.subscriptions_repo import OPEN_STATUSES, SubscriptionsRepo
from trialgate.db.repo.trials_repo import TrialRecordsRepo
from trialgate.db.session import SessionLocal
from trialgate.lifecycle.errors import (
    AccountNotFoundError,
    HistoryRecordFailedError,
    InvalidTransitionError,
)
from trialgate.lifecycle.locking import account_lock_key, identity_lock_key
from trialgate.lifecycle.types import (
    LifecycleOperation,
    LifecycleState,
    ProvisioningAction,
    TransitionResult,
)

from .common import current_locks, run_transition

logger = structlog.get_logger(__name__)

DEFAULT_DELETION_REASON = "user_requested"


async def _record_history(
    account_id: UUID,
    *,
    identity_key: str,
    reason: str,
    now_utc: datetime,
) -> LifecycleState:
    try:
        async with SessionLocal.begin() as session:
            account = await AccountsRepo.get_by_id_for_update(session, account_id)
            if account is None:
                raise AccountNotFoundError(str(account_id))
            previous_state = LifecycleState(account.lifecycle_state)

            existing_entry = await DeletionLedgerRepo.get_by_identity_key(session, identity_key)
            already_recorded = (
                account.status == "DELETION_RECORDED"
                and existing_entry is not None
                and existing_entry.original_account_id == account_id
            )
            if not already_recorded:
                trial = await TrialRecordsRepo.get_by_account_id(session, account_id)
                ever_subscribed = await SubscriptionsRepo.has_any_for_account(session, account_id)
                # The ledger row is the first write; nothing is torn down until it commits.
                entry = await DeletionLedger.record_deletion(
                    session,
                    account_id=account_id,
                    email=account.email,
                    reason=reason,
                    trial_was_used=trial is not None,
                    ever_subscribed=ever_subscribed,
                    now_utc=now_utc,
                )
                account.status = "DELETION_RECORDED"
                account.lifecycle_state = LifecycleState.DELETION_RECORDED.value
                account.updated_at = now_utc
                await AuditRecorder.record(
                    session,
                    category=AuditCategory.DELETION_RECORDED,
                    now_utc=now_utc,
                    account_id=account_id,
                    identity_key=identity_key,
                    details={
                        "reason": reason,
                        "deletion_count": entry.deletion_count,
                        "trial_was_used": entry.trial_was_used,
                        "ever_subscribed": entry.ever_subscribed,
                    },
                )
    except HistoryRecordFailedError:
        await _audit_history_failure(account_id, identity_key=identity_key, now_utc=now_utc)
        raise
    except SQLAlchemyError as exc:
        await _audit_history_failure(account_id, identity_key=identity_key, now_utc=now_utc)
        raise HistoryRecordFailedError(identity_key) from exc
    return previous_state


async def _audit_history_failure(
    account_id: UUID,
    *,
    identity_key: str,
    now_utc: datetime,
) -> None:
    logger.error(
        "account_deletion_aborted",
        account_id=str(account_id),
        identity_key=identity_key,
        reason="history_not_recorded",
    )
    await AuditRecorder.record_detached(
        category=AuditCategory.DELETION_HISTORY_FAILED,
        now_utc=now_utc,
        account_id=account_id,
        identity_key=identity_key,
    )


async def _remove_account(account_id: UUID, *, identity_key: str, now_utc: datetime) -> None:
    async with SessionLocal.begin() as session:
        account = await AccountsRepo.get_by_id_for_update(session, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))

        trial = await TrialRecordsRepo.get_by_account_id_for_update(session, account_id)
        if trial is not None and trial.status != TrialStatus.CANCELED:
            trial.status = TrialStatus.CANCELED.value
            trial.updated_at = now_utc

        canceled_subscription_ids: list[str] = []
        for subscription in await SubscriptionsRepo.list_for_account_for_update(
            session,
            account_id,
            statuses=OPEN_STATUSES,
        ):
            subscription.status = SubscriptionStatus.CANCELED.value
            subscription.updated_at = now_utc
            canceled_subscription_ids.append(subscription.subscription_id)

        account.status = "DELETED"
        account.lifecycle_state = LifecycleState.REMOVED.value
        account.deleted_at = now_utc
        account.updated_at = now_utc
        await AuditRecorder.record(
            session,
            category=AuditCategory.ACCOUNT_REMOVED,
            now_utc=now_utc,
            account_id=account_id,
            identity_key=identity_key,
            details={"canceled_subscription_ids": canceled_subscription_ids},
        )


async def delete_account(
    account_id: UUID,
    *,
    reason: str = DEFAULT_DELETION_REASON,
    now_utc: datetime,
) -> TransitionResult:
    async def transition() -> tuple[TransitionResult, str]:
        async with SessionLocal.begin() as session:
            account = await AccountsRepo.get_by_id(session, account_id)
            if account is None:
                raise AccountNotFoundError(str(account_id))
            if account.status == "DELETED":
                raise InvalidTransitionError("account_already_deleted")
            email = account.email
        identity_key = normalize_email(email)

        # Lock order: account, then identity. Signup only ever takes the identity lock.
        async with current_locks().hold(identity_lock_key(identity_key)):
            previous_state = await _record_history(
                account_id,
                identity_key=identity_key,
                reason=reason,
                now_utc=now_utc,
            )
            await _remove_account(account_id, identity_key=identity_key, now_utc=now_utc)

        result = TransitionResult(
            account_id=account_id,
            operation=LifecycleOperation.DELETE_ACCOUNT,
            applied=True,
            previous_state=previous_state,
            new_state=LifecycleState.REMOVED,
            provisioning_actions=(ProvisioningAction.DEACTIVATE, ProvisioningAction.DELETE),
        )
        return result, email

    return await run_transition(
        operation=LifecycleOperation.DELETE_ACCOUNT,
        account_id=account_id,
        lock_keys=[account_lock_key(account_id)],
        now_utc=now_utc,
        transition=transition,
    )
