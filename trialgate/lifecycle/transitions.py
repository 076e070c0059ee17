from __future__ import annotations

from trialgate.access.types import AccessDecision, SubscriptionStatus
from trialgate.lifecycle.errors import InvalidTransitionError
from trialgate.lifecycle.types import LifecycleState, ProvisioningAction

DELETED_STATES = frozenset({LifecycleState.DELETION_RECORDED, LifecycleState.REMOVED})
SUBSCRIBED_STATES = frozenset(
    {LifecycleState.SUBSCRIPTION_ACTIVE, LifecycleState.SUBSCRIPTION_CANCELED}
)


def resolve_subscription_state(
    current: LifecycleState,
    *,
    status: SubscriptionStatus,
    cancel_at_period_end: bool,
    has_other_live_subscription: bool = False,
) -> LifecycleState:
    if current in DELETED_STATES:
        raise InvalidTransitionError("account_deleted")

    if status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING):
        if cancel_at_period_end:
            return LifecycleState.SUBSCRIPTION_CANCELED
        return LifecycleState.SUBSCRIPTION_ACTIVE

    if has_other_live_subscription:
        # A superseded subscription ending does not end the live one.
        return current

    if status == SubscriptionStatus.CANCELED and current in SUBSCRIBED_STATES:
        return LifecycleState.TRIAL_EXPIRED

    # past_due, and a canceled subscription that never made the account subscribed,
    # leave the lifecycle state alone; the evaluator decides access from the row.
    return current


def provisioning_actions_for(
    before: AccessDecision | None,
    after: AccessDecision,
) -> tuple[ProvisioningAction, ...]:
    had_access = before.can_provision_external_account if before is not None else False
    if after.can_provision_external_account and not had_access:
        return (ProvisioningAction.ACTIVATE,)
    if had_access and not after.can_provision_external_account:
        return (ProvisioningAction.DEACTIVATE,)
    return ()


def provisioning_actions_after_expiry(after: AccessDecision) -> tuple[ProvisioningAction, ...]:
    if after.can_provision_external_account:
        return ()
    return (ProvisioningAction.DEACTIVATE,)
