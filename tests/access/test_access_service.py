from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from tests.fakes import FakeSession, install_fake_store
from trialgate.access.service import AccessService
from trialgate.access.types import AccessType, SubscriptionStatus, TrialStatus
from trialgate.lifecycle.errors import AccountNotFoundError

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_get_access_reads_without_writing(monkeypatch) -> None:
    store = install_fake_store(monkeypatch)
    account = store.add_account(
        account_id=uuid4(),
        email="ab@gmail.com",
        identity_key="ab@gmail.com",
        lifecycle_state="TRIAL_ACTIVE",
        created_at=T0,
    )
    store.add_trial(account_id=account.id, trial_start=T0, trial_end=T0 + timedelta(days=7))
    before = store.snapshot()

    decision = await AccessService.get_access(
        FakeSession(store),
        account_id=account.id,
        now_utc=T0 + timedelta(days=1),
    )

    assert decision.access_type == AccessType.TRIAL
    assert decision.trial_seconds_remaining == 6 * 24 * 3600
    assert store.snapshot() == before
    assert store.repo_writes == []
    assert store.audit_events == []
    assert store.flushes == 0


@pytest.mark.asyncio
async def test_get_access_for_deleted_account_raises_not_found(monkeypatch) -> None:
    store = install_fake_store(monkeypatch)
    account = store.add_account(
        account_id=uuid4(),
        email="gone@example.com",
        identity_key="gone@example.com",
        lifecycle_state="REMOVED",
        created_at=T0,
        status="DELETED",
    )

    with pytest.raises(AccountNotFoundError):
        await AccessService.get_access(FakeSession(store), account_id=account.id, now_utc=T0)
    with pytest.raises(AccountNotFoundError):
        await AccessService.get_access(FakeSession(store), account_id=uuid4(), now_utc=T0)


@pytest.mark.asyncio
async def test_get_status_prefers_live_subscription_and_reports_trial(monkeypatch) -> None:
    store = install_fake_store(monkeypatch)
    account = store.add_account(
        account_id=uuid4(),
        email="ab@gmail.com",
        identity_key="ab@gmail.com",
        lifecycle_state="SUBSCRIPTION_ACTIVE",
        created_at=T0,
    )
    store.add_trial(
        account_id=account.id,
        trial_start=T0,
        trial_end=T0 + timedelta(days=7),
        status="converted_to_paid",
    )
    store.add_subscription(
        account_id=account.id,
        subscription_id="sub_old",
        status="canceled",
        current_period_end=T0 + timedelta(days=1),
        last_event_at=T0 + timedelta(days=2),
    )
    store.add_subscription(
        account_id=account.id,
        subscription_id="sub_new",
        status="active",
        current_period_end=T0 + timedelta(days=40),
        last_event_at=T0 + timedelta(days=1),
    )

    status = await AccessService.get_status(
        FakeSession(store),
        account_id=account.id,
        now_utc=T0 + timedelta(days=10),
    )

    assert status.decision.access_type == AccessType.SUBSCRIPTION
    assert status.subscription is not None
    assert status.subscription.subscription_id == "sub_new"
    assert status.subscription.status == SubscriptionStatus.ACTIVE
    assert status.trial is not None
    assert status.trial.status == TrialStatus.CONVERTED_TO_PAID
    assert status.evaluated_at == T0 + timedelta(days=10)
