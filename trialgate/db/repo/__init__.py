from trialgate.db.repo.accounts_repo import AccountsRepo
from trialgate.db.repo.admin_grants_repo import AdminGrantsRepo
from trialgate.db.repo.audit_events_repo import AuditEventsRepo
from trialgate.db.repo.deletion_ledger_repo import DeletionLedgerRepo
from trialgate.db.repo.provisioning_operations_repo import ProvisioningOperationsRepo
from trialgate.db.repo.subscriptions_repo import SubscriptionsRepo
from trialgate.db.repo.trials_repo import TrialRecordsRepo
from trialgate.db.repo.webhook_events_repo import WebhookEventsRepo

__all__ = [
    "AccountsRepo",
    "AdminGrantsRepo",
    "AuditEventsRepo",
    "DeletionLedgerRepo",
    "ProvisioningOperationsRepo",
    "SubscriptionsRepo",
    "TrialRecordsRepo",
    "WebhookEventsRepo",
]
