from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from trialgate.access.admin_grants import grant_facts
from trialgate.access.rules import evaluate_access
from trialgate.access.types import (
    AccessDecision,
    AccessFacts,
    AccountFacts,
    AccessStatus,
    DeletionFacts,
    SubscriptionFacts,
    SubscriptionStatus,
    TrialFacts,
    TrialStatus,
)
from trialgate.audit.recorder import AuditRecorder
from trialgate.audit.threats import AuditCategory
from trialgate.db.repo.accounts_repo import AccountsRepo
from trialgate.db.repo.admin_grants_repo import AdminGrantsRepo
from trialgate.db.repo.deletion_ledger_repo import DeletionLedgerRepo
from trialgate.db.repo.subscriptions_repo import SubscriptionsRepo
from trialgate.db.repo.trials_repo import TrialRecordsRepo
from trialgate.lifecycle.errors import AccountNotFoundError


class AccessService:
    @staticmethod
    async def load_facts(session: AsyncSession, account_id: UUID) -> AccessFacts:
        account = await AccountsRepo.get_by_id(session, account_id)
        if account is None or account.status != "ACTIVE":
            raise AccountNotFoundError(str(account_id))

        trial = await TrialRecordsRepo.get_by_account_id(session, account_id)
        subscription = await SubscriptionsRepo.get_current_for_account(session, account_id)
        deletion = await DeletionLedgerRepo.get_by_identity_key(session, account.identity_key)
        admin_grant = await AdminGrantsRepo.get_by_account_id(session, account_id)

        return AccessFacts(
            account=AccountFacts(account_id=account.id, created_at=account.created_at),
            trial=(
                TrialFacts(
                    trial_start=trial.trial_start,
                    trial_end=trial.trial_end,
                    status=TrialStatus(trial.status),
                )
                if trial is not None
                else None
            ),
            subscription=(
                SubscriptionFacts(
                    subscription_id=subscription.subscription_id,
                    status=SubscriptionStatus(subscription.status),
                    current_period_end=subscription.current_period_end,
                    cancel_at_period_end=bool(subscription.cancel_at_period_end),
                )
                if subscription is not None
                else None
            ),
            deletion=(
                DeletionFacts(
                    identity_key=deletion.identity_key,
                    deleted_at=deletion.deleted_at,
                    trial_was_used=bool(deletion.trial_was_used),
                    ever_subscribed=bool(deletion.ever_subscribed),
                )
                if deletion is not None
                else None
            ),
            admin_grant=grant_facts(admin_grant),
        )

    @staticmethod
    async def get_access(
        session: AsyncSession,
        *,
        account_id: UUID,
        now_utc: datetime,
    ) -> AccessDecision:
        facts = await AccessService.load_facts(session, account_id)
        decision = evaluate_access(facts, now_utc=now_utc)
        AuditRecorder.log_only(
            category=AuditCategory.ACCESS_DECISION,
            account_id=account_id,
            details={
                "has_access": decision.has_access,
                "access_type": decision.access_type.value,
                "trial_seconds_remaining": decision.trial_seconds_remaining,
                "is_returning_user": decision.is_returning_user,
            },
        )
        return decision

    @staticmethod
    async def get_status(
        session: AsyncSession,
        *,
        account_id: UUID,
        now_utc: datetime,
    ) -> AccessStatus:
        facts = await AccessService.load_facts(session, account_id)
        return AccessStatus(
            account_id=account_id,
            decision=evaluate_access(facts, now_utc=now_utc),
            trial=facts.trial,
            subscription=facts.subscription,
            evaluated_at=now_utc,
        )
