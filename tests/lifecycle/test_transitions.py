from __future__ import annotations

import pytest

from trialgate.access.types import AccessDecision, AccessType, SubscriptionStatus
from trialgate.lifecycle.errors import InvalidTransitionError
from trialgate.lifecycle.transitions import (
    provisioning_actions_after_expiry,
    provisioning_actions_for,
    resolve_subscription_state,
)
from trialgate.lifecycle.types import LifecycleState, ProvisioningAction

GRANTED = AccessDecision(
    has_access=True,
    access_type=AccessType.TRIAL,
    trial_seconds_remaining=60,
    is_returning_user=False,
    can_provision_external_account=True,
)
DENIED = AccessDecision(
    has_access=False,
    access_type=AccessType.EXPIRED,
    trial_seconds_remaining=0,
    is_returning_user=True,
    can_provision_external_account=False,
)


@pytest.mark.parametrize(
    "current",
    [
        LifecycleState.TRIAL_ACTIVE,
        LifecycleState.TRIAL_EXPIRED,
        LifecycleState.NO_TRIAL,
        LifecycleState.SUBSCRIPTION_CANCELED,
    ],
)
def test_live_subscription_moves_to_subscription_active(current: LifecycleState) -> None:
    assert (
        resolve_subscription_state(current, status=SubscriptionStatus.ACTIVE, cancel_at_period_end=False)
        == LifecycleState.SUBSCRIPTION_ACTIVE
    )


def test_cancel_at_period_end_moves_to_subscription_canceled() -> None:
    assert (
        resolve_subscription_state(
            LifecycleState.SUBSCRIPTION_ACTIVE,
            status=SubscriptionStatus.TRIALING,
            cancel_at_period_end=True,
        )
        == LifecycleState.SUBSCRIPTION_CANCELED
    )


def test_ended_subscription_returns_to_trial_expired() -> None:
    for current in (LifecycleState.SUBSCRIPTION_ACTIVE, LifecycleState.SUBSCRIPTION_CANCELED):
        assert (
            resolve_subscription_state(current, status=SubscriptionStatus.CANCELED, cancel_at_period_end=False)
            == LifecycleState.TRIAL_EXPIRED
        )


def test_past_due_and_unsubscribed_cancel_keep_state() -> None:
    assert (
        resolve_subscription_state(
            LifecycleState.SUBSCRIPTION_ACTIVE,
            status=SubscriptionStatus.PAST_DUE,
            cancel_at_period_end=False,
        )
        == LifecycleState.SUBSCRIPTION_ACTIVE
    )
    assert (
        resolve_subscription_state(
            LifecycleState.TRIAL_ACTIVE,
            status=SubscriptionStatus.CANCELED,
            cancel_at_period_end=False,
        )
        == LifecycleState.TRIAL_ACTIVE
    )


@pytest.mark.parametrize("current", [LifecycleState.DELETION_RECORDED, LifecycleState.REMOVED])
def test_deleted_accounts_reject_subscription_changes(current: LifecycleState) -> None:
    with pytest.raises(InvalidTransitionError) as exc_info:
        resolve_subscription_state(current, status=SubscriptionStatus.ACTIVE, cancel_at_period_end=False)
    assert exc_info.value.reason == "account_deleted"


def test_provisioning_actions_follow_eligibility_edges() -> None:
    assert provisioning_actions_for(None, GRANTED) == (ProvisioningAction.ACTIVATE,)
    assert provisioning_actions_for(DENIED, GRANTED) == (ProvisioningAction.ACTIVATE,)
    assert provisioning_actions_for(GRANTED, DENIED) == (ProvisioningAction.DEACTIVATE,)
    assert provisioning_actions_for(GRANTED, GRANTED) == ()
    assert provisioning_actions_for(None, DENIED) == ()
    assert provisioning_actions_after_expiry(DENIED) == (ProvisioningAction.DEACTIVATE,)
    assert provisioning_actions_after_expiry(GRANTED) == ()


def test_cancel_with_another_live_subscription_keeps_state() -> None:
    assert (
        resolve_subscription_state(
            LifecycleState.SUBSCRIPTION_ACTIVE,
            status=SubscriptionStatus.CANCELED,
            cancel_at_period_end=False,
            has_other_live_subscription=True,
        )
        == LifecycleState.SUBSCRIPTION_ACTIVE
    )
