from __future__ import annotations

from sqlalchemy import CheckConstraint

from trialgate.db.models import (  # noqa: F401
    Account,
    AuditEvent,
    DeletionLedgerEntry,
    ProvisioningOperation,
    Subscription,
    SuperAdminGrant,
    TrialRecord,
    WebhookEvent,
)
from trialgate.db.models.base import Base


def test_all_tables_registered() -> None:
    expected_tables = {
        "accounts",
        "trial_records",
        "subscriptions",
        "deletion_ledger",
        "webhook_events",
        "audit_events",
        "super_admin_grants",
        "provisioning_operations",
    }
    assert expected_tables == set(Base.metadata.tables)


def test_critical_constraints_present() -> None:
    accounts = Base.metadata.tables["accounts"]
    account_check_names = {
        constraint.name for constraint in accounts.constraints if isinstance(constraint, CheckConstraint)
    }
    assert {"ck_accounts_status", "ck_accounts_lifecycle_state"} <= account_check_names
    assert "idx_accounts_identity_key" in {index.name for index in accounts.indexes}
    # Several accounts may share an identity key over time; only the ledger is unique per identity.
    assert accounts.c.identity_key.unique is not True

    deletion_ledger = Base.metadata.tables["deletion_ledger"]
    assert deletion_ledger.c.identity_key.unique is True
    ledger_check_names = {
        constraint.name
        for constraint in deletion_ledger.constraints
        if isinstance(constraint, CheckConstraint)
    }
    assert "ck_deletion_ledger_count_positive" in ledger_check_names

    trial_records = Base.metadata.tables["trial_records"]
    assert trial_records.c.account_id.unique is True
    assert "idx_trial_records_active_end" in {index.name for index in trial_records.indexes}

    subscriptions = Base.metadata.tables["subscriptions"]
    assert subscriptions.c.subscription_id.unique is True
    subscription_indexes = {index.name: index for index in subscriptions.indexes}
    assert subscription_indexes["uq_subscriptions_live_per_account"].unique is True
    assert "idx_subscriptions_cancel_pending_period_end" in subscription_indexes

    webhook_events = Base.metadata.tables["webhook_events"]
    assert webhook_events.c.event_id.unique is True
    assert webhook_events.c.payload_hash.unique is True
    assert "idx_webhook_events_pending_received_at" in {index.name for index in webhook_events.indexes}

    super_admin_grants = Base.metadata.tables["super_admin_grants"]
    assert super_admin_grants.c.account_id.unique is True
