from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from uuid import UUID

from trialgate.lifecycle.errors import AccountNotFoundError
from trialgate.lifecycle.types import LifecycleOperation, SubscriptionChange, TransitionResult

from .deletion import DEFAULT_DELETION_REASON, delete_account
from .expiry import expire_subscription_period, expire_trial
from .signup import signup
from .subscription import apply_subscription


async def apply(
    account_id: UUID | None,
    operation: LifecycleOperation | str,
    params: Mapping[str, object] | None = None,
    *,
    now_utc: datetime,
) -> TransitionResult:
    resolved_operation = LifecycleOperation(operation)
    resolved_params = dict(params or {})

    if resolved_operation == LifecycleOperation.SIGNUP:
        email = resolved_params.get("email")
        if not isinstance(email, str) or not email.strip():
            raise ValueError("signup requires an email")
        return await signup(email=email, account_id=account_id, now_utc=now_utc)

    if account_id is None:
        raise AccountNotFoundError("account_id is required")

    if resolved_operation == LifecycleOperation.EXPIRE_TRIAL:
        return await expire_trial(account_id, now_utc=now_utc)
    if resolved_operation == LifecycleOperation.EXPIRE_SUBSCRIPTION_PERIOD:
        return await expire_subscription_period(account_id, now_utc=now_utc)
    if resolved_operation == LifecycleOperation.APPLY_SUBSCRIPTION:
        change = resolved_params.get("change")
        if not isinstance(change, SubscriptionChange):
            change = SubscriptionChange(**resolved_params)
        return await apply_subscription(account_id, change, now_utc=now_utc)

    reason = resolved_params.get("reason")
    return await delete_account(
        account_id,
        reason=reason if isinstance(reason, str) and reason else DEFAULT_DELETION_REASON,
        now_utc=now_utc,
    )


class LifecycleService:
    apply = staticmethod(apply)
    signup = staticmethod(signup)
    expire_trial = staticmethod(expire_trial)
    apply_subscription = staticmethod(apply_subscription)
    expire_subscription_period = staticmethod(expire_subscription_period)
    delete_account = staticmethod(delete_account)


__all__ = [
    "DEFAULT_DELETION_REASON",
    "LifecycleService",
]
