from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

import structlog
from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from trialgate.access.service import AccessService
from trialgate.access.types import AccessDecision, AccessStatus
from trialgate.db.session import SessionLocal
from trialgate.lifecycle.errors import (
    AccountNotFoundError,
    ConcurrentOperationInProgressError,
    HistoryRecordFailedError,
)
from trialgate.lifecycle.service import DEFAULT_DELETION_REASON, LifecycleService
from trialgate.lifecycle.types import SignupOutcome, TransitionResult

router = APIRouter(tags=["accounts"])
logger = structlog.get_logger(__name__)

SIGNUP_MESSAGES = {
    SignupOutcome.NEW_USER: "Welcome! Your 7-day trial has started.",
    SignupOutcome.RETURNING_USER: "Welcome back! Subscribe to regain access.",
}


class SignupRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    account_id: UUID | None = None


class TransitionResponse(BaseModel):
    account_id: UUID
    operation: str
    applied: bool
    previous_state: str | None = None
    new_state: str | None = None
    signup_outcome: str | None = None
    message: str | None = None
    noop_reason: str | None = None
    provisioning_actions: list[str]


class AccessDecisionResponse(BaseModel):
    has_access: bool
    access_type: str
    trial_seconds_remaining: int = Field(ge=0)
    is_returning_user: bool
    can_provision_external_account: bool


class TrialResponse(BaseModel):
    trial_start: datetime
    trial_end: datetime
    status: str


class SubscriptionResponse(BaseModel):
    subscription_id: str
    status: str
    current_period_end: datetime | None = None
    cancel_at_period_end: bool


class AccountStatusResponse(BaseModel):
    account_id: UUID
    access: AccessDecisionResponse
    trial: TrialResponse | None = None
    subscription: SubscriptionResponse | None = None
    evaluated_at: datetime


def _transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        account_id=result.account_id,
        operation=result.operation.value,
        applied=result.applied,
        previous_state=result.previous_state.value if result.previous_state is not None else None,
        new_state=result.new_state.value if result.new_state is not None else None,
        signup_outcome=result.signup_outcome.value if result.signup_outcome is not None else None,
        message=SIGNUP_MESSAGES.get(result.signup_outcome) if result.signup_outcome is not None else None,
        noop_reason=result.noop_reason,
        provisioning_actions=[action.value for action in result.provisioning_actions],
    )


def _decision_response(decision: AccessDecision) -> AccessDecisionResponse:
    return AccessDecisionResponse(
        has_access=decision.has_access,
        access_type=decision.access_type.value,
        trial_seconds_remaining=decision.trial_seconds_remaining,
        is_returning_user=decision.is_returning_user,
        can_provision_external_account=decision.can_provision_external_account,
    )


def _status_response(access_status: AccessStatus) -> AccountStatusResponse:
    trial = access_status.trial
    subscription = access_status.subscription
    return AccountStatusResponse(
        account_id=access_status.account_id,
        access=_decision_response(access_status.decision),
        trial=(
            TrialResponse(
                trial_start=trial.trial_start,
                trial_end=trial.trial_end,
                status=trial.status.value,
            )
            if trial is not None
            else None
        ),
        subscription=(
            SubscriptionResponse(
                subscription_id=subscription.subscription_id,
                status=subscription.status.value,
                current_period_end=subscription.current_period_end,
                cancel_at_period_end=subscription.cancel_at_period_end,
            )
            if subscription is not None
            else None
        ),
        evaluated_at=access_status.evaluated_at,
    )


def _retry_conflict(exc: ConcurrentOperationInProgressError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={"code": "retry", "lock_key": exc.lock_key},
    )


@router.post("/accounts", response_model=TransitionResponse)
async def create_account(payload: SignupRequest) -> JSONResponse:
    now_utc = datetime.now(timezone.utc)
    try:
        result = await LifecycleService.signup(
            email=payload.email,
            account_id=payload.account_id,
            now_utc=now_utc,
        )
    except ConcurrentOperationInProgressError as exc:
        raise _retry_conflict(exc) from exc

    response = _transition_response(result)
    return JSONResponse(
        status_code=status.HTTP_201_CREATED if result.applied else status.HTTP_200_OK,
        content=response.model_dump(mode="json"),
    )


@router.get("/accounts/{account_id}/access", response_model=AccessDecisionResponse)
async def get_account_access(account_id: UUID) -> AccessDecisionResponse:
    now_utc = datetime.now(timezone.utc)
    try:
        # Plain session without begin(): the access read path never commits.
        async with SessionLocal() as session:
            decision = await AccessService.get_access(
                session,
                account_id=account_id,
                now_utc=now_utc,
            )
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"code": "not_found"}) from exc
    return _decision_response(decision)


@router.get("/accounts/{account_id}/status", response_model=AccountStatusResponse)
async def get_account_status(account_id: UUID) -> AccountStatusResponse:
    now_utc = datetime.now(timezone.utc)
    try:
        async with SessionLocal() as session:
            access_status = await AccessService.get_status(
                session,
                account_id=account_id,
                now_utc=now_utc,
            )
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"code": "not_found"}) from exc
    return _status_response(access_status)


@router.delete("/accounts/{account_id}", response_model=TransitionResponse)
async def delete_account(
    account_id: UUID,
    reason: str = Query(default=DEFAULT_DELETION_REASON, min_length=1, max_length=128),
) -> TransitionResponse:
    now_utc = datetime.now(timezone.utc)
    try:
        result = await LifecycleService.delete_account(
            account_id,
            reason=reason,
            now_utc=now_utc,
        )
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"code": "not_found"}) from exc
    except ConcurrentOperationInProgressError as exc:
        raise _retry_conflict(exc) from exc
    except HistoryRecordFailedError as exc:
        logger.error("account_deletion_request_failed", account_id=str(account_id))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "history_not_recorded"},
        ) from exc

    return _transition_response(result)
