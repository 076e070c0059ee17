from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError

from trialgate.access.identity import normalize_email
from trialgate.access.rules import evaluate_access, trial_window_end
from trialgate.access.service import AccessService
from trialgate.access.types import TrialStatus
from trialgate.audit.recorder import AuditRecorder
from trialgate.audit.threats import AuditCategory
from trialgate.db.repo.accounts_repo import AccountsRepo
from trialgate.db.repo.deletion_ledger_repo import DeletionLedgerRepo
from trialgate.db.repo.trials_repo import TrialRecordsRepo
from trialgate.db.session import SessionLocal
from trialgate.lifecycle.errors import InvalidTransitionError
from trialgate.lifecycle.locking import identity_lock_key
from trialgate.lifecycle.transitions import provisioning_actions_for
from trialgate.lifecycle.types import (
    LifecycleOperation,
    LifecycleState,
    SignupOutcome,
    TransitionResult,
)

from .common import run_transition


async def signup(
    *,
    email: str,
    account_id: UUID | None = None,
    now_utc: datetime,
) -> TransitionResult:
    stored_email = email.strip()
    identity_key = normalize_email(stored_email)
    resolved_account_id = account_id or uuid4()

    async def transition() -> tuple[TransitionResult, str]:
        try:
            async with SessionLocal.begin() as session:
                existing = await AccountsRepo.get_by_id(session, resolved_account_id)
                if existing is not None:
                    raise InvalidTransitionError("account_already_exists")

                ledger_entry = await DeletionLedgerRepo.get_by_identity_key(session, identity_key)
                is_returning_user = ledger_entry is not None
                new_state = (
                    LifecycleState.NO_TRIAL if is_returning_user else LifecycleState.TRIAL_ACTIVE
                )
                account = await AccountsRepo.create(
                    session,
                    account_id=resolved_account_id,
                    email=stored_email,
                    identity_key=identity_key,
                    lifecycle_state=new_state.value,
                    created_at=now_utc,
                )

                if ledger_entry is not None:
                    await AuditRecorder.record(
                        session,
                        category=AuditCategory.TRIAL_BLOCKED_RETURNING_USER,
                        now_utc=now_utc,
                        account_id=resolved_account_id,
                        identity_key=identity_key,
                        details={
                            "original_account_id": str(ledger_entry.original_account_id),
                            "deletion_count": ledger_entry.deletion_count,
                            "last_deleted_at": ledger_entry.deleted_at.isoformat(),
                        },
                    )
                else:
                    await TrialRecordsRepo.create(
                        session,
                        account_id=resolved_account_id,
                        trial_start=account.created_at,
                        trial_end=trial_window_end(account.created_at),
                        status=TrialStatus.ACTIVE.value,
                        now_utc=now_utc,
                    )
                    await AuditRecorder.record(
                        session,
                        category=AuditCategory.SIGNUP,
                        now_utc=now_utc,
                        account_id=resolved_account_id,
                        identity_key=identity_key,
                    )

                facts = await AccessService.load_facts(session, resolved_account_id)
                decision = evaluate_access(facts, now_utc=now_utc)
        except IntegrityError as exc:
            # Same account id submitted concurrently under a different identity key.
            raise InvalidTransitionError("account_already_exists") from exc

        result = TransitionResult(
            account_id=resolved_account_id,
            operation=LifecycleOperation.SIGNUP,
            applied=True,
            previous_state=None,
            new_state=new_state,
            signup_outcome=(
                SignupOutcome.RETURNING_USER if is_returning_user else SignupOutcome.NEW_USER
            ),
            provisioning_actions=provisioning_actions_for(None, decision),
        )
        return result, stored_email

    return await run_transition(
        operation=LifecycleOperation.SIGNUP,
        account_id=resolved_account_id,
        lock_keys=[identity_lock_key(identity_key)],
        now_utc=now_utc,
        transition=transition,
    )
