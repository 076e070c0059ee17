from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID


class LifecycleState(str, Enum):
    TRIAL_ACTIVE = "TRIAL_ACTIVE"
    NO_TRIAL = "NO_TRIAL"
    TRIAL_EXPIRED = "TRIAL_EXPIRED"
    SUBSCRIPTION_ACTIVE = "SUBSCRIPTION_ACTIVE"
    SUBSCRIPTION_CANCELED = "SUBSCRIPTION_CANCELED"
    DELETION_RECORDED = "DELETION_RECORDED"
    REMOVED = "REMOVED"


class LifecycleOperation(str, Enum):
    SIGNUP = "signup"
    EXPIRE_TRIAL = "expire_trial"
    APPLY_SUBSCRIPTION = "apply_subscription"
    EXPIRE_SUBSCRIPTION_PERIOD = "expire_subscription_period"
    DELETE_ACCOUNT = "delete_account"


class SignupOutcome(str, Enum):
    NEW_USER = "NEW_USER"
    RETURNING_USER = "RETURNING_USER"


class ProvisioningAction(str, Enum):
    ACTIVATE = "ACTIVATE"
    DEACTIVATE = "DEACTIVATE"
    DELETE = "DELETE"


@dataclass(frozen=True, slots=True)
class SubscriptionChange:
    subscription_id: str
    customer_id: str
    status: str
    current_period_end: datetime | None
    cancel_at_period_end: bool
    event_created_at: datetime
    event_id: str | None = None


@dataclass(frozen=True, slots=True)
class TransitionResult:
    account_id: UUID
    operation: LifecycleOperation
    applied: bool
    previous_state: LifecycleState | None
    new_state: LifecycleState | None
    signup_outcome: SignupOutcome | None = None
    noop_reason: str | None = None
    provisioning_actions: tuple[ProvisioningAction, ...] = field(default_factory=tuple)
