from trialgate.workers.tasks.lifecycle_sweeps import (
    expire_due_trials,
    expire_ended_subscriptions,
)
from trialgate.workers.tasks.payment_events import process_payment_event, recover_payment_events
from trialgate.workers.tasks.provisioning import run_provisioning_action
from trialgate.workers.tasks.retention_cleanup import run_retention_cleanup

__all__ = [
    "expire_due_trials",
    "expire_ended_subscriptions",
    "process_payment_event",
    "recover_payment_events",
    "run_provisioning_action",
    "run_retention_cleanup",
]
