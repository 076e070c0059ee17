from __future__ import annotations

from datetime import datetime
from uuid import UUID

from trialgate.access.rules import evaluate_access
from trialgate.access.service import AccessService
from trialgate.access.types import LIVE_SUBSCRIPTION_STATUSES, SubscriptionStatus, TrialStatus
from trialgate.audit.recorder import AuditRecorder
from trialgate.audit.threats import AuditCategory
from trialgate.db.models.subscriptions import Subscription
from trialgate.db.repo.accounts_repo import AccountsRepo
from trialgate.db.repo.subscriptions_repo import SubscriptionsRepo
from trialgate.db.repo.trials_repo import TrialRecordsRepo
from trialgate.db.session import SessionLocal
from trialgate.lifecycle.errors import AccountNotFoundError, InvalidTransitionError
from trialgate.lifecycle.locking import account_lock_key
from trialgate.lifecycle.transitions import provisioning_actions_for, resolve_subscription_state
from trialgate.lifecycle.types import (
    LifecycleOperation,
    LifecycleState,
    SubscriptionChange,
    TransitionResult,
)

from .common import run_transition

CONVERTIBLE_TRIAL_STATUSES = frozenset({TrialStatus.ACTIVE, TrialStatus.EXPIRED})


def _parse_status(raw_status: str) -> SubscriptionStatus:
    try:
        return SubscriptionStatus(raw_status)
    except ValueError as exc:
        raise InvalidTransitionError("unsupported_subscription_status") from exc


def _is_unchanged(
    subscription: Subscription,
    change: SubscriptionChange,
    *,
    status: SubscriptionStatus,
    current_period_end: datetime | None,
) -> bool:
    return (
        subscription.status == status
        and subscription.current_period_end == current_period_end
        and bool(subscription.cancel_at_period_end) == change.cancel_at_period_end
        and subscription.customer_id == change.customer_id
    )


async def apply_subscription(
    account_id: UUID,
    change: SubscriptionChange,
    *,
    now_utc: datetime,
) -> TransitionResult:
    async def transition() -> tuple[TransitionResult, str]:
        status = _parse_status(change.status)
        async with SessionLocal.begin() as session:
            account = await AccountsRepo.get_by_id_for_update(session, account_id)
            if account is None:
                raise AccountNotFoundError(str(account_id))
            if account.status != "ACTIVE":
                raise InvalidTransitionError("account_deleted")

            before = evaluate_access(
                await AccessService.load_facts(session, account_id),
                now_utc=now_utc,
            )
            subscription = await SubscriptionsRepo.get_by_subscription_id_for_update(
                session,
                change.subscription_id,
            )
            # Checkout completions carry no period; keep what a subscription event reported.
            current_period_end = change.current_period_end
            if current_period_end is None and subscription is not None:
                current_period_end = subscription.current_period_end

            if subscription is not None:
                if subscription.account_id != account_id:
                    raise InvalidTransitionError("subscription_owned_by_other_account")
                if change.event_created_at < subscription.last_event_at:
                    raise InvalidTransitionError("stale_subscription_event")
                if _is_unchanged(
                    subscription,
                    change,
                    status=status,
                    current_period_end=current_period_end,
                ):
                    raise InvalidTransitionError("subscription_unchanged")

            other_live = [
                other
                for other in await SubscriptionsRepo.list_for_account_for_update(session, account_id)
                if other.subscription_id != change.subscription_id
            ]
            previous_state = LifecycleState(account.lifecycle_state)
            new_state = resolve_subscription_state(
                previous_state,
                status=status,
                cancel_at_period_end=change.cancel_at_period_end,
                has_other_live_subscription=bool(other_live),
            )

            if status in LIVE_SUBSCRIPTION_STATUSES:
                # One live subscription per account: a new one supersedes the old.
                for other in other_live:
                    other.status = SubscriptionStatus.CANCELED.value
                    other.updated_at = now_utc
                await session.flush()

            if subscription is None:
                await SubscriptionsRepo.create(
                    session,
                    account_id=account_id,
                    subscription_id=change.subscription_id,
                    customer_id=change.customer_id,
                    status=status.value,
                    current_period_end=current_period_end,
                    cancel_at_period_end=change.cancel_at_period_end,
                    last_event_at=change.event_created_at,
                    now_utc=now_utc,
                )
            else:
                subscription.customer_id = change.customer_id
                subscription.status = status.value
                subscription.current_period_end = current_period_end
                subscription.cancel_at_period_end = change.cancel_at_period_end
                subscription.last_event_at = change.event_created_at
                subscription.updated_at = now_utc

            if status in LIVE_SUBSCRIPTION_STATUSES:
                trial = await TrialRecordsRepo.get_by_account_id_for_update(session, account_id)
                if trial is not None and trial.status in CONVERTIBLE_TRIAL_STATUSES:
                    trial.status = TrialStatus.CONVERTED_TO_PAID.value
                    trial.updated_at = now_utc

            account.lifecycle_state = new_state.value
            account.updated_at = now_utc
            await session.flush()

            after = evaluate_access(
                await AccessService.load_facts(session, account_id),
                now_utc=now_utc,
            )
            await AuditRecorder.record(
                session,
                category=AuditCategory.SUBSCRIPTION_CHANGED,
                now_utc=now_utc,
                account_id=account_id,
                identity_key=account.identity_key,
                details={
                    "subscription_id": change.subscription_id,
                    "status": status.value,
                    "cancel_at_period_end": change.cancel_at_period_end,
                    "event_id": change.event_id,
                    "previous_state": previous_state.value,
                    "new_state": new_state.value,
                },
            )

        result = TransitionResult(
            account_id=account_id,
            operation=LifecycleOperation.APPLY_SUBSCRIPTION,
            applied=True,
            previous_state=previous_state,
            new_state=new_state,
            provisioning_actions=provisioning_actions_for(before, after),
        )
        return result, account.email

    return await run_transition(
        operation=LifecycleOperation.APPLY_SUBSCRIPTION,
        account_id=account_id,
        lock_keys=[account_lock_key(account_id)],
        now_utc=now_utc,
        transition=transition,
    )
