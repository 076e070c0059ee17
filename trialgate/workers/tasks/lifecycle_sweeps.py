from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from trialgate.core.config import get_settings
from trialgate.db.repo.accounts_repo import AccountsRepo
from trialgate.db.session import SessionLocal
from trialgate.lifecycle.errors import AccountNotFoundError, ConcurrentOperationInProgressError
from trialgate.lifecycle.service import LifecycleService
from trialgate.lifecycle.types import TransitionResult
from trialgate.workers.asyncio_runner import run_async_job
from trialgate.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)

ListCandidatesFn = Callable[[AsyncSession, datetime, UUID | None, int], Awaitable[list[UUID]]]
ApplyFn = Callable[[UUID, datetime], Awaitable[TransitionResult]]


def _clamp_batch_size(value: int) -> int:
    return max(1, min(5000, int(value)))


def _clamp_max_batches(value: int) -> int:
    return max(1, min(1000, int(value)))


def _clamp_schedule_seconds(value: int) -> int:
    return max(30, min(86400, int(value)))


async def _sweep(
    *,
    sweep_name: str,
    now_utc: datetime,
    list_candidates: ListCandidatesFn,
    apply_transition: ApplyFn,
) -> dict[str, int]:
    settings = get_settings()
    batch_size = _clamp_batch_size(settings.trial_expiry_batch_size)
    max_batches = _clamp_max_batches(settings.trial_expiry_max_batches)

    result = {"candidates": 0, "applied": 0, "noop": 0, "contended": 0, "missing": 0, "batches": 0}
    after_account_id: UUID | None = None
    for _ in range(max_batches):
        async with SessionLocal.begin() as session:
            account_ids = await list_candidates(session, now_utc, after_account_id, batch_size)
        result["batches"] += 1
        result["candidates"] += len(account_ids)

        # One transition per account; a contended account is picked up on the next tick.
        for account_id in account_ids:
            try:
                transition = await apply_transition(account_id, now_utc)
            except ConcurrentOperationInProgressError:
                result["contended"] += 1
                continue
            except AccountNotFoundError:
                result["missing"] += 1
                continue
            result["applied" if transition.applied else "noop"] += 1

        if len(account_ids) < batch_size:
            break
        after_account_id = account_ids[-1]

    logger.info(f"{sweep_name}_finished", **result)
    return result


async def expire_due_trials_async(*, now_utc: datetime | None = None) -> dict[str, int]:
    return await _sweep(
        sweep_name="trial_expiry_sweep",
        now_utc=now_utc or datetime.now(timezone.utc),
        list_candidates=lambda session, now, after, limit: AccountsRepo.list_due_trial_account_ids(
            session,
            now_utc=now,
            after_account_id=after,
            limit=limit,
        ),
        apply_transition=lambda account_id, now: LifecycleService.expire_trial(
            account_id,
            now_utc=now,
        ),
    )


async def expire_ended_subscriptions_async(*, now_utc: datetime | None = None) -> dict[str, int]:
    return await _sweep(
        sweep_name="subscription_period_sweep",
        now_utc=now_utc or datetime.now(timezone.utc),
        list_candidates=lambda session, now, after, limit: AccountsRepo.list_ended_period_account_ids(
            session,
            now_utc=now,
            after_account_id=after,
            limit=limit,
        ),
        apply_transition=lambda account_id, now: LifecycleService.expire_subscription_period(
            account_id,
            now_utc=now,
        ),
    )


@celery_app.task(name="trialgate.workers.tasks.lifecycle_sweeps.expire_due_trials")
def expire_due_trials() -> dict[str, int]:
    return run_async_job(expire_due_trials_async())


@celery_app.task(name="trialgate.workers.tasks.lifecycle_sweeps.expire_ended_subscriptions")
def expire_ended_subscriptions() -> dict[str, int]:
    return run_async_job(expire_ended_subscriptions_async())


celery_app.conf.beat_schedule = celery_app.conf.beat_schedule or {}
schedule_seconds = float(_clamp_schedule_seconds(get_settings().trial_expiry_schedule_seconds))
celery_app.conf.beat_schedule.update(
    {
        "lifecycle-trial-expiry": {
            "task": "trialgate.workers.tasks.lifecycle_sweeps.expire_due_trials",
            "schedule": schedule_seconds,
            "options": {"queue": "q_normal"},
        },
        "lifecycle-subscription-period-end": {
            "task": "trialgate.workers.tasks.lifecycle_sweeps.expire_ended_subscriptions",
            "schedule": schedule_seconds,
            "options": {"queue": "q_normal"},
        },
    }
)
