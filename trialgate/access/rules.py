from __future__ import annotations

from datetime import datetime

from trialgate.access.constants import TRIAL_WINDOW
from trialgate.access.types import (
    AccessDecision,
    AccessFacts,
    AccessType,
    AdminGrantFacts,
    SubscriptionStatus,
)


def trial_window_end(created_at: datetime) -> datetime:
    return created_at + TRIAL_WINDOW


def trial_seconds_remaining(created_at: datetime, *, now_utc: datetime) -> int:
    remaining = (trial_window_end(created_at) - now_utc).total_seconds()
    return max(0, int(remaining))


def is_admin_grant_active(grant: AdminGrantFacts | None, *, now_utc: datetime) -> bool:
    if grant is None or grant.revoked_at is not None:
        return False
    return grant.granted_at <= now_utc < grant.expires_at


def _granted(access_type: AccessType, *, seconds_remaining: int, is_returning_user: bool) -> AccessDecision:
    return AccessDecision(
        has_access=True,
        access_type=access_type,
        trial_seconds_remaining=seconds_remaining,
        is_returning_user=is_returning_user,
        can_provision_external_account=True,
    )


def evaluate_access(facts: AccessFacts, *, now_utc: datetime) -> AccessDecision:
    """Evaluates the access policy; the first matching rule wins.

    1. active super-admin grant
    2. subscription ``active``
    3. subscription ``trialing``
    4. identity not in the deletion ledger and still inside the 7-day window
       anchored to ``account.created_at``
    5. otherwise expired

    The stored trial row is display data only: the window is always derived
    from the account creation time, so repeated reads give the same countdown.
    """
    is_returning_user = facts.deletion is not None
    seconds_remaining = (
        0
        if is_returning_user
        else trial_seconds_remaining(facts.account.created_at, now_utc=now_utc)
    )

    if is_admin_grant_active(facts.admin_grant, now_utc=now_utc):
        return _granted(
            AccessType.SUPER_ADMIN,
            seconds_remaining=seconds_remaining,
            is_returning_user=is_returning_user,
        )

    subscription = facts.subscription
    if subscription is not None and subscription.status == SubscriptionStatus.ACTIVE:
        return _granted(
            AccessType.SUBSCRIPTION,
            seconds_remaining=seconds_remaining,
            is_returning_user=is_returning_user,
        )
    if subscription is not None and subscription.status == SubscriptionStatus.TRIALING:
        return _granted(
            AccessType.SUBSCRIPTION_TRIAL,
            seconds_remaining=seconds_remaining,
            is_returning_user=is_returning_user,
        )

    if not is_returning_user and now_utc < trial_window_end(facts.account.created_at):
        return _granted(
            AccessType.TRIAL,
            seconds_remaining=seconds_remaining,
            is_returning_user=False,
        )

    return AccessDecision(
        has_access=False,
        access_type=AccessType.EXPIRED,
        trial_seconds_remaining=0,
        is_returning_user=is_returning_user,
        can_provision_external_account=False,
    )
