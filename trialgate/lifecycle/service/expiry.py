from __future__ import annotations

from datetime import datetime
from uuid import UUID

from trialgate.access.rules import evaluate_access, trial_window_end
from trialgate.access.service import AccessService
from trialgate.access.types import SubscriptionStatus, TrialStatus
from trialgate.audit.recorder import AuditRecorder
from trialgate.audit.threats import AuditCategory
from trialgate.db.repo.accounts_repo import AccountsRepo
from trialgate.db.repo.subscriptions_repo import SubscriptionsRepo
from trialgate.db.repo.trials_repo import TrialRecordsRepo
from trialgate.db.session import SessionLocal
from trialgate.lifecycle.errors import AccountNotFoundError, InvalidTransitionError
from trialgate.lifecycle.locking import account_lock_key
from trialgate.lifecycle.transitions import provisioning_actions_after_expiry
from trialgate.lifecycle.types import LifecycleOperation, LifecycleState, TransitionResult

from .common import run_transition


async def expire_trial(account_id: UUID, *, now_utc: datetime) -> TransitionResult:
    async def transition() -> tuple[TransitionResult, str]:
        async with SessionLocal.begin() as session:
            account = await AccountsRepo.get_by_id_for_update(session, account_id)
            if account is None:
                raise AccountNotFoundError(str(account_id))
            if account.status != "ACTIVE" or account.lifecycle_state != LifecycleState.TRIAL_ACTIVE:
                raise InvalidTransitionError("trial_not_active")

            trial = await TrialRecordsRepo.get_by_account_id_for_update(session, account_id)
            trial_end = trial.trial_end if trial is not None else trial_window_end(account.created_at)
            if now_utc < trial_end:
                raise InvalidTransitionError("trial_not_due")

            if trial is not None and trial.status == TrialStatus.ACTIVE:
                trial.status = TrialStatus.EXPIRED.value
                trial.updated_at = now_utc
            account.lifecycle_state = LifecycleState.TRIAL_EXPIRED.value
            account.updated_at = now_utc
            await session.flush()

            await AuditRecorder.record(
                session,
                category=AuditCategory.TRIAL_EXPIRED,
                now_utc=now_utc,
                account_id=account_id,
                identity_key=account.identity_key,
                details={"trial_end": trial_end.isoformat()},
            )
            decision = evaluate_access(
                await AccessService.load_facts(session, account_id),
                now_utc=now_utc,
            )

        result = TransitionResult(
            account_id=account_id,
            operation=LifecycleOperation.EXPIRE_TRIAL,
            applied=True,
            previous_state=LifecycleState.TRIAL_ACTIVE,
            new_state=LifecycleState.TRIAL_EXPIRED,
            provisioning_actions=provisioning_actions_after_expiry(decision),
        )
        return result, account.email

    return await run_transition(
        operation=LifecycleOperation.EXPIRE_TRIAL,
        account_id=account_id,
        lock_keys=[account_lock_key(account_id)],
        now_utc=now_utc,
        transition=transition,
    )


async def expire_subscription_period(account_id: UUID, *, now_utc: datetime) -> TransitionResult:
    async def transition() -> tuple[TransitionResult, str]:
        async with SessionLocal.begin() as session:
            account = await AccountsRepo.get_by_id_for_update(session, account_id)
            if account is None:
                raise AccountNotFoundError(str(account_id))
            if (
                account.status != "ACTIVE"
                or account.lifecycle_state != LifecycleState.SUBSCRIPTION_CANCELED
            ):
                raise InvalidTransitionError("subscription_not_pending_cancel")

            ended = [
                subscription
                for subscription in await SubscriptionsRepo.list_for_account_for_update(
                    session,
                    account_id,
                )
                if subscription.current_period_end is not None
                and subscription.current_period_end <= now_utc
            ]
            if not ended:
                raise InvalidTransitionError("period_not_ended")

            for subscription in ended:
                subscription.status = SubscriptionStatus.CANCELED.value
                subscription.updated_at = now_utc
            account.lifecycle_state = LifecycleState.TRIAL_EXPIRED.value
            account.updated_at = now_utc
            await session.flush()

            await AuditRecorder.record(
                session,
                category=AuditCategory.SUBSCRIPTION_PERIOD_ENDED,
                now_utc=now_utc,
                account_id=account_id,
                identity_key=account.identity_key,
                details={
                    "subscription_ids": [subscription.subscription_id for subscription in ended],
                },
            )
            decision = evaluate_access(
                await AccessService.load_facts(session, account_id),
                now_utc=now_utc,
            )

        result = TransitionResult(
            account_id=account_id,
            operation=LifecycleOperation.EXPIRE_SUBSCRIPTION_PERIOD,
            applied=True,
            previous_state=LifecycleState.SUBSCRIPTION_CANCELED,
            new_state=LifecycleState.TRIAL_EXPIRED,
            provisioning_actions=provisioning_actions_after_expiry(decision),
        )
        return result, account.email

    return await run_transition(
        operation=LifecycleOperation.EXPIRE_SUBSCRIPTION_PERIOD,
        account_id=account_id,
        lock_keys=[account_lock_key(account_id)],
        now_utc=now_utc,
        transition=transition,
    )
