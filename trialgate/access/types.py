from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


class AccessType(str, Enum):
    SUPER_ADMIN = "super_admin"
    SUBSCRIPTION = "subscription"
    SUBSCRIPTION_TRIAL = "subscription_trial"
    TRIAL = "trial"
    EXPIRED = "expired"


class TrialStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CONVERTED_TO_PAID = "converted_to_paid"
    CANCELED = "canceled"
    NOT_ELIGIBLE = "not_eligible"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


LIVE_SUBSCRIPTION_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING})


@dataclass(frozen=True, slots=True)
class AccountFacts:
    account_id: UUID
    created_at: datetime


@dataclass(frozen=True, slots=True)
class TrialFacts:
    trial_start: datetime
    trial_end: datetime
    status: TrialStatus


@dataclass(frozen=True, slots=True)
class SubscriptionFacts:
    subscription_id: str
    status: SubscriptionStatus
    current_period_end: datetime | None
    cancel_at_period_end: bool


@dataclass(frozen=True, slots=True)
class DeletionFacts:
    identity_key: str
    deleted_at: datetime
    trial_was_used: bool
    ever_subscribed: bool


@dataclass(frozen=True, slots=True)
class AdminGrantFacts:
    granted_at: datetime
    expires_at: datetime
    revoked_at: datetime | None


@dataclass(frozen=True, slots=True)
class AccessFacts:
    account: AccountFacts
    trial: TrialFacts | None = None
    subscription: SubscriptionFacts | None = None
    deletion: DeletionFacts | None = None
    admin_grant: AdminGrantFacts | None = None


@dataclass(frozen=True, slots=True)
class AccessDecision:
    has_access: bool
    access_type: AccessType
    trial_seconds_remaining: int
    is_returning_user: bool
    can_provision_external_account: bool


@dataclass(frozen=True, slots=True)
class AccessStatus:
    account_id: UUID
    decision: AccessDecision
    trial: TrialFacts | None
    subscription: SubscriptionFacts | None
    evaluated_at: datetime
