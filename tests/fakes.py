from __future__ import annotations

import copy
import importlib
from dataclasses import dataclass, field
from datetime import datetime
from types import SimpleNamespace
from typing import Any
from uuid import UUID

from trialgate.db.repo.accounts_repo import AccountsRepo
from trialgate.db.repo.admin_grants_repo import AdminGrantsRepo
from trialgate.db.repo.audit_events_repo import AuditEventsRepo
from trialgate.db.repo.deletion_ledger_repo import DeletionLedgerRepo
from trialgate.db.repo.subscriptions_repo import LIVE_STATUSES, SubscriptionsRepo
from trialgate.db.repo.trials_repo import TrialRecordsRepo

SESSION_MODULES = (
    "trialgate.audit.recorder",
    "trialgate.lifecycle.service.signup",
    "trialgate.lifecycle.service.expiry",
    "trialgate.lifecycle.service.subscription",
    "trialgate.lifecycle.service.deletion",
)


class _NullTransaction:
    async def __aenter__(self) -> None:
        return None

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class FakeSession:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    def begin_nested(self) -> _NullTransaction:
        return _NullTransaction()

    async def flush(self) -> None:
        self.store.flushes += 1


class _FakeSessionBegin:
    def __init__(self, store: FakeStore) -> None:
        self.store = store
        self._snapshot: dict[str, Any] | None = None

    async def __aenter__(self) -> FakeSession:
        self._snapshot = self.store.snapshot()
        return FakeSession(self.store)

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None and self._snapshot is not None:
            self.store.restore(self._snapshot)
            self.store.rollbacks += 1
        else:
            self.store.commits += 1
        return False


class _FakePlainSession:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def __aenter__(self) -> FakeSession:
        return FakeSession(self.store)

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class FakeSessionLocal:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    def __call__(self) -> _FakePlainSession:
        return _FakePlainSession(self.store)

    def begin(self) -> _FakeSessionBegin:
        return _FakeSessionBegin(self.store)


@dataclass
class FakeStore:
    """In-memory stand-in for the account tables.

    Transactions snapshot every table except audit_events; audit rows survive
    rollbacks the way detached audit writes do.
    """

    accounts: dict[UUID, SimpleNamespace] = field(default_factory=dict)
    trials: dict[UUID, SimpleNamespace] = field(default_factory=dict)
    subscriptions: dict[str, SimpleNamespace] = field(default_factory=dict)
    ledger: dict[str, SimpleNamespace] = field(default_factory=dict)
    grants: dict[UUID, SimpleNamespace] = field(default_factory=dict)
    audit_events: list[SimpleNamespace] = field(default_factory=list)
    repo_writes: list[str] = field(default_factory=list)
    fail_ledger_upsert: Exception | None = None
    commits: int = 0
    rollbacks: int = 0
    flushes: int = 0
    _next_id: int = 0

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(
            {
                "accounts": self.accounts,
                "trials": self.trials,
                "subscriptions": self.subscriptions,
                "ledger": self.ledger,
                "grants": self.grants,
            }
        )

    def restore(self, snapshot: dict[str, Any]) -> None:
        self.accounts = snapshot["accounts"]
        self.trials = snapshot["trials"]
        self.subscriptions = snapshot["subscriptions"]
        self.ledger = snapshot["ledger"]
        self.grants = snapshot["grants"]

    def next_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def audit_categories(self) -> list[str]:
        return [event.category for event in self.audit_events]

    def add_account(
        self,
        *,
        account_id: UUID,
        email: str,
        identity_key: str,
        lifecycle_state: str,
        created_at: datetime,
        status: str = "ACTIVE",
    ) -> SimpleNamespace:
        account = SimpleNamespace(
            id=account_id,
            email=email,
            identity_key=identity_key,
            status=status,
            lifecycle_state=lifecycle_state,
            created_at=created_at,
            updated_at=created_at,
            deleted_at=None,
        )
        self.accounts[account_id] = account
        return account

    def add_trial(
        self,
        *,
        account_id: UUID,
        trial_start: datetime,
        trial_end: datetime,
        status: str = "active",
    ) -> SimpleNamespace:
        trial = SimpleNamespace(
            id=self.next_id(),
            account_id=account_id,
            trial_start=trial_start,
            trial_end=trial_end,
            status=status,
            created_at=trial_start,
            updated_at=trial_start,
        )
        self.trials[account_id] = trial
        return trial

    def add_subscription(
        self,
        *,
        account_id: UUID,
        subscription_id: str,
        status: str,
        current_period_end: datetime | None,
        last_event_at: datetime,
        cancel_at_period_end: bool = False,
        customer_id: str = "cus_1",
    ) -> SimpleNamespace:
        subscription = SimpleNamespace(
            id=self.next_id(),
            account_id=account_id,
            subscription_id=subscription_id,
            customer_id=customer_id,
            status=status,
            current_period_end=current_period_end,
            cancel_at_period_end=cancel_at_period_end,
            last_event_at=last_event_at,
            created_at=last_event_at,
            updated_at=last_event_at,
        )
        self.subscriptions[subscription_id] = subscription
        return subscription

    def add_grant(
        self,
        *,
        account_id: UUID,
        granted_at: datetime,
        expires_at: datetime,
        granted_by: UUID | None = None,
        revoked_at: datetime | None = None,
    ) -> SimpleNamespace:
        grant = SimpleNamespace(
            id=self.next_id(),
            account_id=account_id,
            granted_by=granted_by,
            granted_at=granted_at,
            expires_at=expires_at,
            revoked_at=revoked_at,
        )
        self.grants[account_id] = grant
        return grant

    # AccountsRepo

    async def get_account(self, session, account_id: UUID) -> SimpleNamespace | None:
        return self.accounts.get(account_id)

    async def create_account(
        self,
        session,
        *,
        account_id: UUID,
        email: str,
        identity_key: str,
        lifecycle_state: str,
        created_at: datetime,
    ) -> SimpleNamespace:
        self.repo_writes.append("accounts.create")
        return self.add_account(
            account_id=account_id,
            email=email,
            identity_key=identity_key,
            lifecycle_state=lifecycle_state,
            created_at=created_at,
        )

    # TrialRecordsRepo

    async def get_trial(self, session, account_id: UUID) -> SimpleNamespace | None:
        return self.trials.get(account_id)

    async def create_trial(
        self,
        session,
        *,
        account_id: UUID,
        trial_start: datetime,
        trial_end: datetime,
        status: str,
        now_utc: datetime,
    ) -> SimpleNamespace:
        self.repo_writes.append("trials.create")
        return self.add_trial(
            account_id=account_id,
            trial_start=trial_start,
            trial_end=trial_end,
            status=status,
        )

    # SubscriptionsRepo

    async def get_subscription(self, session, subscription_id: str) -> SimpleNamespace | None:
        return self.subscriptions.get(subscription_id)

    async def get_current_subscription(self, session, account_id: UUID) -> SimpleNamespace | None:
        owned = [item for item in self.subscriptions.values() if item.account_id == account_id]
        if not owned:
            return None
        owned.sort(
            key=lambda item: (
                0 if item.status in LIVE_STATUSES else 1,
                -item.updated_at.timestamp(),
                -item.id,
            )
        )
        return owned[0]

    async def list_subscriptions(
        self,
        session,
        account_id: UUID,
        *,
        statuses=LIVE_STATUSES,
    ) -> list[SimpleNamespace]:
        return sorted(
            (
                item
                for item in self.subscriptions.values()
                if item.account_id == account_id and item.status in tuple(statuses)
            ),
            key=lambda item: item.id,
        )

    async def has_any_subscription(self, session, account_id: UUID) -> bool:
        return any(item.account_id == account_id for item in self.subscriptions.values())

    async def find_subscription_account_id(
        self,
        session,
        *,
        subscription_id: str,
        customer_id: str | None,
    ) -> UUID | None:
        subscription = self.subscriptions.get(subscription_id)
        if subscription is not None:
            return subscription.account_id
        for item in self.subscriptions.values():
            if customer_id and item.customer_id == customer_id:
                return item.account_id
        return None

    async def create_subscription(
        self,
        session,
        *,
        account_id: UUID,
        subscription_id: str,
        customer_id: str,
        status: str,
        current_period_end: datetime | None,
        cancel_at_period_end: bool,
        last_event_at: datetime,
        now_utc: datetime,
    ) -> SimpleNamespace:
        self.repo_writes.append("subscriptions.create")
        subscription = self.add_subscription(
            account_id=account_id,
            subscription_id=subscription_id,
            status=status,
            current_period_end=current_period_end,
            last_event_at=last_event_at,
            cancel_at_period_end=cancel_at_period_end,
            customer_id=customer_id,
        )
        subscription.created_at = now_utc
        subscription.updated_at = now_utc
        return subscription

    # DeletionLedgerRepo

    async def get_ledger_entry(self, session, identity_key: str) -> SimpleNamespace | None:
        return self.ledger.get(identity_key)

    async def upsert_ledger_entry(
        self,
        session,
        *,
        identity_key: str,
        original_account_id: UUID,
        email: str,
        trial_was_used: bool,
        ever_subscribed: bool,
        deletion_reason: str,
        deleted_at: datetime,
    ) -> SimpleNamespace:
        if self.fail_ledger_upsert is not None:
            raise self.fail_ledger_upsert
        self.repo_writes.append("deletion_ledger.upsert")
        entry = self.ledger.get(identity_key)
        if entry is None:
            entry = SimpleNamespace(
                id=self.next_id(),
                identity_key=identity_key,
                original_account_id=original_account_id,
                email=email,
                trial_was_used=trial_was_used,
                ever_subscribed=ever_subscribed,
                deletion_reason=deletion_reason,
                deletion_count=1,
                first_deleted_at=deleted_at,
                deleted_at=deleted_at,
            )
            self.ledger[identity_key] = entry
            return entry

        entry.original_account_id = original_account_id
        entry.email = email
        entry.trial_was_used = entry.trial_was_used or trial_was_used
        entry.ever_subscribed = entry.ever_subscribed or ever_subscribed
        entry.deletion_reason = deletion_reason
        entry.deletion_count += 1
        entry.deleted_at = deleted_at
        return entry

    # AdminGrantsRepo

    async def get_grant(self, session, account_id: UUID) -> SimpleNamespace | None:
        return self.grants.get(account_id)

    async def upsert_grant(
        self,
        session,
        *,
        account_id: UUID,
        granted_by: UUID | None,
        granted_at: datetime,
        expires_at: datetime,
    ) -> SimpleNamespace:
        self.repo_writes.append("super_admin_grants.upsert")
        return self.add_grant(
            account_id=account_id,
            granted_by=granted_by,
            granted_at=granted_at,
            expires_at=expires_at,
        )

    # AuditEventsRepo

    async def create_audit_event(
        self,
        session,
        *,
        category: str,
        account_id: UUID | None,
        identity_key: str | None,
        details: dict[str, object],
        created_at: datetime,
    ) -> SimpleNamespace:
        event = SimpleNamespace(
            id=self.next_id(),
            category=category,
            account_id=account_id,
            identity_key=identity_key,
            details=details,
            created_at=created_at,
        )
        self.audit_events.append(event)
        return event


def install_fake_store(monkeypatch, store: FakeStore | None = None) -> FakeStore:
    resolved_store = store or FakeStore()
    session_local = FakeSessionLocal(resolved_store)
    for module_name in SESSION_MODULES:
        # importlib, not attribute access: the package re-exports a function named signup.
        monkeypatch.setattr(importlib.import_module(module_name), "SessionLocal", session_local)

    patches = (
        (AccountsRepo, "get_by_id", resolved_store.get_account),
        (AccountsRepo, "get_by_id_for_update", resolved_store.get_account),
        (AccountsRepo, "create", resolved_store.create_account),
        (TrialRecordsRepo, "get_by_account_id", resolved_store.get_trial),
        (TrialRecordsRepo, "get_by_account_id_for_update", resolved_store.get_trial),
        (TrialRecordsRepo, "create", resolved_store.create_trial),
        (SubscriptionsRepo, "get_by_subscription_id_for_update", resolved_store.get_subscription),
        (SubscriptionsRepo, "get_current_for_account", resolved_store.get_current_subscription),
        (SubscriptionsRepo, "list_for_account_for_update", resolved_store.list_subscriptions),
        (SubscriptionsRepo, "has_any_for_account", resolved_store.has_any_subscription),
        (SubscriptionsRepo, "find_account_id", resolved_store.find_subscription_account_id),
        (SubscriptionsRepo, "create", resolved_store.create_subscription),
        (DeletionLedgerRepo, "get_by_identity_key", resolved_store.get_ledger_entry),
        (DeletionLedgerRepo, "upsert", resolved_store.upsert_ledger_entry),
        (AdminGrantsRepo, "get_by_account_id", resolved_store.get_grant),
        (AdminGrantsRepo, "upsert", resolved_store.upsert_grant),
        (AuditEventsRepo, "create", resolved_store.create_audit_event),
    )
    for repo, name, replacement in patches:
        monkeypatch.setattr(repo, name, staticmethod(replacement))
    return resolved_store


class ProvisioningRecorder:
    def __init__(self) -> None:
        self.calls: list[dict[str, object]] = []

    async def __call__(self, *, account_id: UUID, email: str, actions) -> int:
        self.calls.append({"account_id": account_id, "email": email, "actions": tuple(actions)})
        return len(actions)


def install_provisioning_recorder(monkeypatch) -> ProvisioningRecorder:
    recorder = ProvisioningRecorder()
    monkeypatch.setattr(
        importlib.import_module("trialgate.lifecycle.service.common"),
        "schedule_provisioning",
        recorder,
    )
    return recorder
