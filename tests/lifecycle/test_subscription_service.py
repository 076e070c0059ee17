from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from tests.fakes import FakeSession, install_fake_store, install_provisioning_recorder
from trialgate.access.service import AccessService
from trialgate.access.types import AccessType
from trialgate.lifecycle.service import LifecycleService
from trialgate.lifecycle.types import LifecycleState, ProvisioningAction, SubscriptionChange

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _change(
    *,
    status: str = "active",
    subscription_id: str = "sub_1",
    event_created_at: datetime = T0 + timedelta(days=2),
    cancel_at_period_end: bool = False,
    current_period_end: datetime | None = T0 + timedelta(days=32),
) -> SubscriptionChange:
    return SubscriptionChange(
        subscription_id=subscription_id,
        customer_id="cus_1",
        status=status,
        current_period_end=current_period_end,
        cancel_at_period_end=cancel_at_period_end,
        event_created_at=event_created_at,
        event_id="evt_1",
    )


def _seed(store, *, lifecycle_state: str = "TRIAL_ACTIVE"):
    account = store.add_account(
        account_id=uuid4(),
        email="jane@example.com",
        identity_key="jane@example.com",
        lifecycle_state=lifecycle_state,
        created_at=T0,
    )
    store.add_trial(account_id=account.id, trial_start=T0, trial_end=T0 + timedelta(days=7))
    return account


@pytest.mark.asyncio
async def test_subscribing_mid_trial_converts_trial_and_grants_subscription_access(monkeypatch) -> None:
    store = install_fake_store(monkeypatch)
    provisioning = install_provisioning_recorder(monkeypatch)
    account = _seed(store)
    now_utc = T0 + timedelta(days=2)

    result = await LifecycleService.apply_subscription(account.id, _change(), now_utc=now_utc)

    assert result.applied is True
    assert result.previous_state == LifecycleState.TRIAL_ACTIVE
    assert result.new_state == LifecycleState.SUBSCRIPTION_ACTIVE
    # Access never lapsed, so nothing to provision.
    assert result.provisioning_actions == ()
    assert provisioning.calls == []
    assert store.trials[account.id].status == "converted_to_paid"
    assert store.subscriptions["sub_1"].status == "active"
    assert store.audit_categories() == ["SUBSCRIPTION_CHANGED"]

    decision = await AccessService.get_access(FakeSession(store), account_id=account.id, now_utc=now_utc)
    assert decision.access_type == AccessType.SUBSCRIPTION


@pytest.mark.asyncio
async def test_subscribing_after_expiry_activates_provisioning(monkeypatch) -> None:
    store = install_fake_store(monkeypatch)
    install_provisioning_recorder(monkeypatch)
    account = _seed(store, lifecycle_state="TRIAL_EXPIRED")
    store.trials[account.id].status = "expired"

    result = await LifecycleService.apply_subscription(
        account.id,
        _change(event_created_at=T0 + timedelta(days=9)),
        now_utc=T0 + timedelta(days=9),
    )

    assert result.new_state == LifecycleState.SUBSCRIPTION_ACTIVE
    assert result.provisioning_actions == (ProvisioningAction.ACTIVATE,)
    assert store.trials[account.id].status == "converted_to_paid"


@pytest.mark.asyncio
async def test_stale_event_is_ignored(monkeypatch) -> None:
    store = install_fake_store(monkeypatch)
    install_provisioning_recorder(monkeypatch)
    account = _seed(store, lifecycle_state="SUBSCRIPTION_ACTIVE")
    store.add_subscription(
        account_id=account.id,
        subscription_id="sub_1",
        status="active",
        current_period_end=T0 + timedelta(days=32),
        last_event_at=T0 + timedelta(days=3),
    )

    result = await LifecycleService.apply_subscription(
        account.id,
        _change(status="canceled", event_created_at=T0 + timedelta(days=2)),
        now_utc=T0 + timedelta(days=4),
    )

    assert result.applied is False
    assert result.noop_reason == "stale_subscription_event"
    assert store.subscriptions["sub_1"].status == "active"
    assert store.accounts[account.id].lifecycle_state == "SUBSCRIPTION_ACTIVE"
    assert store.audit_categories() == ["INVALID_TRANSITION"]


@pytest.mark.asyncio
async def test_replayed_identical_state_is_a_noop(monkeypatch) -> None:
    store = install_fake_store(monkeypatch)
    install_provisioning_recorder(monkeypatch)
    account = _seed(store)

    first = await LifecycleService.apply_subscription(account.id, _change(), now_utc=T0 + timedelta(days=2))
    second = await LifecycleService.apply_subscription(
        account.id,
        _change(event_created_at=T0 + timedelta(days=2, hours=1)),
        now_utc=T0 + timedelta(days=2, hours=1),
    )

    assert first.applied is True
    assert second.applied is False
    assert second.noop_reason == "subscription_unchanged"


@pytest.mark.asyncio
async def test_cancel_at_period_end_keeps_access_until_period_end(monkeypatch) -> None:
    store = install_fake_store(monkeypatch)
    install_provisioning_recorder(monkeypatch)
    account = _seed(store)
    await LifecycleService.apply_subscription(account.id, _change(), now_utc=T0 + timedelta(days=2))

    result = await LifecycleService.apply_subscription(
        account.id,
        _change(cancel_at_period_end=True, event_created_at=T0 + timedelta(days=5)),
        now_utc=T0 + timedelta(days=5),
    )

    assert result.new_state == LifecycleState.SUBSCRIPTION_CANCELED
    assert result.provisioning_actions == ()
    assert store.subscriptions["sub_1"].cancel_at_period_end is True


@pytest.mark.asyncio
async def test_canceled_subscription_returns_account_to_trial_expired(monkeypatch) -> None:
    store = install_fake_store(monkeypatch)
    provisioning = install_provisioning_recorder(monkeypatch)
    account = _seed(store)
    await LifecycleService.apply_subscription(account.id, _change(), now_utc=T0 + timedelta(days=2))

    result = await LifecycleService.apply_subscription(
        account.id,
        _change(status="canceled", event_created_at=T0 + timedelta(days=10)),
        now_utc=T0 + timedelta(days=10),
    )

    assert result.previous_state == LifecycleState.SUBSCRIPTION_ACTIVE
    assert result.new_state == LifecycleState.TRIAL_EXPIRED
    assert result.provisioning_actions == (ProvisioningAction.DEACTIVATE,)
    assert provisioning.calls[-1]["actions"] == (ProvisioningAction.DEACTIVATE,)


@pytest.mark.asyncio
async def test_subscription_owned_by_another_account_is_rejected(monkeypatch) -> None:
    store = install_fake_store(monkeypatch)
    install_provisioning_recorder(monkeypatch)
    account = _seed(store)
    other = store.add_account(
        account_id=uuid4(),
        email="other@example.com",
        identity_key="other@example.com",
        lifecycle_state="SUBSCRIPTION_ACTIVE",
        created_at=T0,
    )
    store.add_subscription(
        account_id=other.id,
        subscription_id="sub_1",
        status="active",
        current_period_end=T0 + timedelta(days=30),
        last_event_at=T0,
    )

    result = await LifecycleService.apply_subscription(account.id, _change(), now_utc=T0 + timedelta(days=2))

    assert result.applied is False
    assert result.noop_reason == "subscription_owned_by_other_account"
    assert store.subscriptions["sub_1"].account_id == other.id


@pytest.mark.asyncio
async def test_unsupported_status_is_rejected_without_writes(monkeypatch) -> None:
    store = install_fake_store(monkeypatch)
    install_provisioning_recorder(monkeypatch)
    account = _seed(store)

    result = await LifecycleService.apply_subscription(
        account.id,
        _change(status="incomplete_expired"),
        now_utc=T0 + timedelta(days=2),
    )

    assert result.applied is False
    assert result.noop_reason == "unsupported_subscription_status"
    assert store.repo_writes == []


@pytest.mark.asyncio
async def test_new_live_subscription_supersedes_the_previous_one(monkeypatch) -> None:
    store = install_fake_store(monkeypatch)
    install_provisioning_recorder(monkeypatch)
    account = _seed(store, lifecycle_state="SUBSCRIPTION_ACTIVE")
    store.add_subscription(
        account_id=account.id,
        subscription_id="sub_old",
        status="active",
        current_period_end=T0 + timedelta(days=30),
        last_event_at=T0,
    )

    result = await LifecycleService.apply_subscription(
        account.id,
        _change(subscription_id="sub_new", event_created_at=T0 + timedelta(days=3)),
        now_utc=T0 + timedelta(days=3),
    )

    assert result.applied is True
    assert store.subscriptions["sub_old"].status == "canceled"
    assert store.subscriptions["sub_new"].status == "active"


@pytest.mark.asyncio
async def test_past_due_keeps_lifecycle_state_but_revokes_access(monkeypatch) -> None:
    store = install_fake_store(monkeypatch)
    install_provisioning_recorder(monkeypatch)
    account = _seed(store)
    await LifecycleService.apply_subscription(account.id, _change(), now_utc=T0 + timedelta(days=2))

    result = await LifecycleService.apply_subscription(
        account.id,
        _change(status="past_due", event_created_at=T0 + timedelta(days=12)),
        now_utc=T0 + timedelta(days=12),
    )

    assert result.new_state == LifecycleState.SUBSCRIPTION_ACTIVE
    assert result.provisioning_actions == (ProvisioningAction.DEACTIVATE,)


@pytest.mark.asyncio
async def test_ending_a_superseded_subscription_keeps_the_live_one(monkeypatch) -> None:
    store = install_fake_store(monkeypatch)
    install_provisioning_recorder(monkeypatch)
    account = _seed(store)
    await LifecycleService.apply_subscription(
        account.id,
        _change(subscription_id="sub_A"),
        now_utc=T0 + timedelta(days=2),
    )
    await LifecycleService.apply_subscription(
        account.id,
        _change(subscription_id="sub_B", event_created_at=T0 + timedelta(days=3)),
        now_utc=T0 + timedelta(days=3),
    )

    result = await LifecycleService.apply_subscription(
        account.id,
        _change(
            subscription_id="sub_A",
            status="canceled",
            event_created_at=T0 + timedelta(days=4),
            current_period_end=T0 + timedelta(days=4),
        ),
        now_utc=T0 + timedelta(days=4),
    )

    assert result.applied is True
    assert result.new_state == LifecycleState.SUBSCRIPTION_ACTIVE
    assert result.provisioning_actions == ()
    assert store.accounts[account.id].lifecycle_state == "SUBSCRIPTION_ACTIVE"
    assert [item.subscription_id for item in store.subscriptions.values() if item.status == "active"] == ["sub_B"]
