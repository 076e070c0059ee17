"""t1_core_access_model

Revision ID: 3a7c1e9b2d40
Revises:
Create Date: 2026-09-28 09:00:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "3a7c1e9b2d40"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("identity_key", sa.String(320), nullable=False),
        sa.Column("status", sa.String(24), nullable=False),
        sa.Column("lifecycle_state", sa.String(32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('ACTIVE','DELETION_RECORDED','DELETED')",
            name="ck_accounts_status",
        ),
        sa.CheckConstraint(
            "lifecycle_state IN ('TRIAL_ACTIVE','NO_TRIAL','TRIAL_EXPIRED','SUBSCRIPTION_ACTIVE',"
            "'SUBSCRIPTION_CANCELED','DELETION_RECORDED','REMOVED')",
            name="ck_accounts_lifecycle_state",
        ),
    )
    op.create_index("idx_accounts_identity_key", "accounts", ["identity_key"])
    op.create_index("idx_accounts_created_at", "accounts", ["created_at"])
    op.create_index(
        "idx_accounts_lifecycle_state_created",
        "accounts",
        ["lifecycle_state", "created_at"],
        postgresql_where=sa.text("status = 'ACTIVE'"),
    )

    op.create_table(
        "trial_records",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("trial_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("trial_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(24), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('active','expired','converted_to_paid','canceled','not_eligible')",
            name="ck_trial_records_status",
        ),
        sa.CheckConstraint("trial_end > trial_start", name="ck_trial_records_window"),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.UniqueConstraint("account_id", name="uq_trial_records_account_id"),
    )
    op.create_index(
        "idx_trial_records_active_end",
        "trial_records",
        ["trial_end"],
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("subscription_id", sa.String(128), nullable=False),
        sa.Column("customer_id", sa.String(128), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "cancel_at_period_end",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("last_event_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('active','trialing','past_due','canceled')",
            name="ck_subscriptions_status",
        ),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.UniqueConstraint("subscription_id", name="uq_subscriptions_subscription_id"),
    )
    op.create_index("idx_subscriptions_account", "subscriptions", ["account_id"])
    op.create_index("idx_subscriptions_customer", "subscriptions", ["customer_id"])
    op.create_index(
        "uq_subscriptions_live_per_account",
        "subscriptions",
        ["account_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('active','trialing')"),
    )
    op.create_index(
        "idx_subscriptions_cancel_pending_period_end",
        "subscriptions",
        ["current_period_end"],
        postgresql_where=sa.text("cancel_at_period_end AND status IN ('active','trialing')"),
    )

    op.create_table(
        "deletion_ledger",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("identity_key", sa.String(320), nullable=False),
        sa.Column("original_account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("trial_was_used", sa.Boolean(), nullable=False),
        sa.Column("ever_subscribed", sa.Boolean(), nullable=False),
        sa.Column("deletion_reason", sa.String(64), nullable=False),
        sa.Column("deletion_count", sa.Integer(), nullable=False),
        sa.Column("first_deleted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("deletion_count > 0", name="ck_deletion_ledger_count_positive"),
        sa.UniqueConstraint("identity_key", name="uq_deletion_ledger_identity_key"),
    )
    op.create_index("idx_deletion_ledger_deleted_at", "deletion_ledger", ["deleted_at"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("event_id", sa.String(128), nullable=False),
        sa.Column("event_type", sa.String(96), nullable=False),
        sa.Column("payload_hash", sa.String(64), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("processing_task_id", sa.String(64), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("provider_created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('RECEIVED','PROCESSING','PROCESSED','FAILED','IGNORED')",
            name="ck_webhook_events_status",
        ),
        sa.UniqueConstraint("event_id", name="uq_webhook_events_event_id"),
        sa.UniqueConstraint("payload_hash", name="uq_webhook_events_payload_hash"),
    )
    op.create_index("idx_webhook_events_received_at", "webhook_events", ["received_at"])
    op.create_index(
        "idx_webhook_events_pending_received_at",
        "webhook_events",
        ["received_at"],
        postgresql_where=sa.text("status IN ('RECEIVED','PROCESSING','FAILED')"),
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("category", sa.String(64), nullable=False),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("identity_key", sa.String(320), nullable=True),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_audit_events_created_at", "audit_events", ["created_at"])
    op.create_index("idx_audit_events_category_created", "audit_events", ["category", "created_at"])
    op.create_index("idx_audit_events_account_created", "audit_events", ["account_id", "created_at"])

    op.create_table(
        "super_admin_grants",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("granted_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("expires_at > granted_at", name="ck_super_admin_grants_expiry"),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.UniqueConstraint("account_id", name="uq_super_admin_grants_account_id"),
    )

    op.create_table(
        "provisioning_operations",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("action", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("external_user_id", sa.String(128), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "action IN ('ACTIVATE','DEACTIVATE','DELETE')",
            name="ck_provisioning_operations_action",
        ),
        sa.CheckConstraint(
            "status IN ('PENDING','SUCCEEDED','FAILED','SKIPPED')",
            name="ck_provisioning_operations_status",
        ),
    )
    op.create_index(
        "idx_provisioning_operations_account_created",
        "provisioning_operations",
        ["account_id", "created_at"],
    )
    op.create_index(
        "idx_provisioning_operations_failed_updated",
        "provisioning_operations",
        ["updated_at"],
        postgresql_where=sa.text("status = 'FAILED'"),
    )


def downgrade() -> None:
    op.drop_table("provisioning_operations")
    op.drop_table("super_admin_grants")
    op.drop_table("audit_events")
    op.drop_table("webhook_events")
    op.drop_table("deletion_ledger")
    op.drop_table("subscriptions")
    op.drop_table("trial_records")
    op.drop_table("accounts")
