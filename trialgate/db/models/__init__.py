from trialgate.db.models.accounts import Account
from trialgate.db.models.audit_events import AuditEvent
from trialgate.db.models.deletion_ledger import DeletionLedgerEntry
from trialgate.db.models.provisioning_operations import ProvisioningOperation
from trialgate.db.models.subscriptions import Subscription
from trialgate.db.models.super_admin_grants import SuperAdminGrant
from trialgate.db.models.trial_records import TrialRecord
from trialgate.db.models.webhook_events import WebhookEvent

__all__ = [
    "Account",
    "AuditEvent",
    "DeletionLedgerEntry",
    "ProvisioningOperation",
    "Subscription",
    "SuperAdminGrant",
    "TrialRecord",
    "WebhookEvent",
]
