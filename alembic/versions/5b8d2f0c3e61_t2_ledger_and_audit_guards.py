"""t2_ledger_and_audit_guards

Revision ID: 5b8d2f0c3e61
Revises: 3a7c1e9b2d40
Create Date: 2026-09-28 09:30:00.000000
"""

from collections.abc import Sequence

from alembic import op

revision: str = "5b8d2f0c3e61"
down_revision: str | None = "3a7c1e9b2d40"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    # Ledger rows are upserted in place but never removed.
    op.execute(
        """
        CREATE OR REPLACE FUNCTION fn_deletion_ledger_no_delete()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            RAISE EXCEPTION 'deletion_ledger rows cannot be deleted';
        END;
        $$;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_deletion_ledger_no_delete
        BEFORE DELETE ON deletion_ledger
        FOR EACH ROW
        EXECUTE FUNCTION fn_deletion_ledger_no_delete();
        """
    )

    # Audit rows are append-only; retention cleanup may still delete expired rows.
    op.execute(
        """
        CREATE OR REPLACE FUNCTION fn_audit_events_no_update()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            RAISE EXCEPTION 'audit_events is append-only';
        END;
        $$;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_audit_events_no_update
        BEFORE UPDATE ON audit_events
        FOR EACH ROW
        EXECUTE FUNCTION fn_audit_events_no_update();
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_audit_events_no_update ON audit_events;")
    op.execute("DROP FUNCTION IF EXISTS fn_audit_events_no_update();")
    op.execute("DROP TRIGGER IF EXISTS trg_deletion_ledger_no_delete ON deletion_ledger;")
    op.execute("DROP FUNCTION IF EXISTS fn_deletion_ledger_no_delete();")
