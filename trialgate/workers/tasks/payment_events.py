from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

import structlog
from celery import Task

from trialgate.audit.recorder import AuditRecorder
from trialgate.audit.threats import AuditCategory
from trialgate.core.config import get_settings
from trialgate.db.models.webhook_events import WebhookEvent
from trialgate.db.repo.subscriptions_repo import SubscriptionsRepo
from trialgate.db.repo.webhook_events_repo import WebhookEventsRepo
from trialgate.db.session import SessionLocal
from trialgate.lifecycle.errors import AccountNotFoundError
from trialgate.lifecycle.service import LifecycleService
from trialgate.lifecycle.types import SubscriptionChange
from trialgate.webhooks.payment_events import extract_account_hint, extract_subscription_change
from trialgate.workers.asyncio_runner import run_async_job
from trialgate.workers.celery_app import celery_app
from trialgate.workers.tasks.retry import retry_backoff_seconds

logger = structlog.get_logger(__name__)
settings = get_settings()
PROCESSING_TTL_SECONDS = max(1, int(settings.payment_event_processing_ttl_seconds))
TASK_MAX_RETRIES = max(0, int(settings.payment_event_task_max_retries))
TASK_RETRY_BACKOFF_MAX_SECONDS = max(1, int(settings.payment_event_task_retry_backoff_max_seconds))
RECOVERY_BATCH_SIZE = max(1, int(settings.payment_event_recovery_batch_size))
RECOVERY_SCHEDULE_SECONDS = max(30, int(settings.payment_event_recovery_schedule_seconds))
# Events younger than this are still expected to arrive through the direct enqueue.
RECOVERY_MIN_AGE = timedelta(seconds=60)
# The direct task plus two recovery rounds, each with the full retry budget.
MAX_PROCESSING_ATTEMPTS = 3 * (TASK_MAX_RETRIES + 1)

_CLAIM_CLAIMED = "claimed"
_CLAIM_RECLAIMED_STALE = "reclaimed_stale"
_CLAIM_DUPLICATE = "duplicate"


@dataclass(frozen=True, slots=True)
class PaymentEventSnapshot:
    event_id: str
    event_type: str
    payload: dict[str, object]
    event_created_at: datetime
    attempts: int


def _snapshot(event: WebhookEvent) -> PaymentEventSnapshot:
    return PaymentEventSnapshot(
        event_id=event.event_id,
        event_type=event.event_type,
        payload=dict(event.payload or {}),
        event_created_at=event.provider_created_at or event.received_at,
        attempts=int(event.attempts or 0),
    )


async def _claim_event(
    event_id: str,
    *,
    task_id: str | None,
) -> tuple[str, PaymentEventSnapshot | None]:
    async with SessionLocal.begin() as session:
        event = await WebhookEventsRepo.try_claim(
            session,
            event_id=event_id,
            processing_task_id=task_id,
            max_attempts=MAX_PROCESSING_ATTEMPTS,
        )
        if event is not None:
            return _CLAIM_CLAIMED, _snapshot(event)

        event = await WebhookEventsRepo.try_reclaim_stale(
            session,
            event_id=event_id,
            processing_task_id=task_id,
            processing_ttl_seconds=PROCESSING_TTL_SECONDS,
        )
        if event is not None:
            return _CLAIM_RECLAIMED_STALE, _snapshot(event)

    return _CLAIM_DUPLICATE, None


async def _finish_event(event_id: str, *, status: str, last_error: str | None = None) -> None:
    async with SessionLocal.begin() as session:
        await WebhookEventsRepo.set_status(
            session,
            event_id=event_id,
            status=status,
            last_error=last_error,
        )


async def _resolve_account_id(
    snapshot: PaymentEventSnapshot,
    change: SubscriptionChange,
) -> UUID | None:
    account_id = extract_account_hint(snapshot.event_type, snapshot.payload)
    if account_id is not None:
        return account_id
    async with SessionLocal.begin() as session:
        return await SubscriptionsRepo.find_account_id(
            session,
            subscription_id=change.subscription_id,
            customer_id=change.customer_id,
        )


async def process_payment_event_async(event_id: str, *, task_id: str | None = None) -> str:
    claim_outcome, snapshot = await _claim_event(event_id, task_id=task_id)
    if snapshot is None:
        logger.info("payment_event_duplicate", event_id=event_id)
        return "duplicate"
    if claim_outcome == _CLAIM_RECLAIMED_STALE:
        logger.warning(
            "payment_event_processing_reclaimed_stale",
            event_id=event_id,
            processing_ttl_seconds=PROCESSING_TTL_SECONDS,
        )

    change = extract_subscription_change(
        event_id=snapshot.event_id,
        event_type=snapshot.event_type,
        payload=snapshot.payload,
        event_created_at=snapshot.event_created_at,
    )
    if change is None:
        await _finish_event(event_id, status="IGNORED", last_error="unhandled_event")
        logger.info("payment_event_ignored", event_id=event_id, event_type=snapshot.event_type)
        return "ignored"

    now_utc = datetime.now(timezone.utc)
    account_id = await _resolve_account_id(snapshot, change)
    if account_id is None:
        await _finish_event(event_id, status="IGNORED", last_error="account_unresolved")
        await AuditRecorder.record_detached(
            category=AuditCategory.WEBHOOK_UNMATCHED,
            now_utc=now_utc,
            details={
                "event_id": event_id,
                "event_type": snapshot.event_type,
                "subscription_id": change.subscription_id,
                "customer_id": change.customer_id,
            },
        )
        return "ignored"

    try:
        result = await LifecycleService.apply_subscription(account_id, change, now_utc=now_utc)
    except AccountNotFoundError:
        await _finish_event(event_id, status="IGNORED", last_error="account_not_found")
        logger.warning("payment_event_account_missing", event_id=event_id, account_id=str(account_id))
        return "ignored"
    except Exception as exc:
        await _finish_event(event_id, status="FAILED", last_error=type(exc).__name__)
        logger.exception(
            "payment_event_processing_failed",
            event_id=event_id,
            account_id=str(account_id),
        )
        raise

    await _finish_event(
        event_id,
        status="PROCESSED",
        last_error=None if result.applied else result.noop_reason,
    )
    logger.info(
        "payment_event_processed",
        event_id=event_id,
        account_id=str(account_id),
        applied=result.applied,
        noop_reason=result.noop_reason,
    )
    return "processed" if result.applied else "noop"


@celery_app.task(
    name="trialgate.workers.tasks.payment_events.process_payment_event",
    bind=True,
    max_retries=TASK_MAX_RETRIES,
    acks_late=True,
    reject_on_worker_lost=True,
)
def process_payment_event(self: Task, event_id: str) -> str:
    task_id = str(self.request.id) if self.request.id is not None else None
    try:
        return run_async_job(process_payment_event_async(event_id, task_id=task_id))
    except Exception as exc:
        current_retries = max(0, int(getattr(self.request, "retries", 0)))
        if current_retries >= TASK_MAX_RETRIES:
            logger.exception(
                "payment_event_failed_final",
                event_id=event_id,
                task_id=task_id,
                retries=current_retries,
                max_retries=TASK_MAX_RETRIES,
            )
            run_async_job(
                AuditRecorder.record_detached(
                    category=AuditCategory.WEBHOOK_PROCESSING_FAILED,
                    now_utc=datetime.now(timezone.utc),
                    details={
                        "event_id": event_id,
                        "task_id": task_id,
                        "retries": current_retries,
                        "error_type": type(exc).__name__,
                    },
                )
            )
            raise

        next_retry_attempt = current_retries + 1
        retry_in_seconds = retry_backoff_seconds(
            next_retry_attempt=next_retry_attempt,
            backoff_max_seconds=TASK_RETRY_BACKOFF_MAX_SECONDS,
        )
        logger.warning(
            "payment_event_retry_scheduled",
            event_id=event_id,
            task_id=task_id,
            retry_attempt=next_retry_attempt,
            retry_in_seconds=retry_in_seconds,
            max_retries=TASK_MAX_RETRIES,
        )
        raise self.retry(
            exc=exc,
            countdown=retry_in_seconds,
            max_retries=TASK_MAX_RETRIES,
        )


async def recover_payment_events_async(*, now_utc: datetime | None = None) -> dict[str, int]:
    resolved_now = now_utc or datetime.now(timezone.utc)
    async with SessionLocal.begin() as session:
        event_ids = await WebhookEventsRepo.list_recoverable_event_ids(
            session,
            received_before_utc=resolved_now - RECOVERY_MIN_AGE,
            processing_ttl_seconds=PROCESSING_TTL_SECONDS,
            max_attempts=MAX_PROCESSING_ATTEMPTS,
            limit=RECOVERY_BATCH_SIZE,
        )

    enqueued = 0
    enqueue_failed = 0
    for event_id in event_ids:
        try:
            process_payment_event.delay(event_id=event_id)
            enqueued += 1
        except Exception as exc:
            enqueue_failed += 1
            logger.warning(
                "payment_event_recovery_enqueue_failed",
                event_id=event_id,
                error_type=type(exc).__name__,
            )

    result = {
        "candidates": len(event_ids),
        "enqueued": enqueued,
        "enqueue_failed": enqueue_failed,
    }
    logger.info("payment_event_recovery_finished", **result)
    return result


@celery_app.task(name="trialgate.workers.tasks.payment_events.recover_payment_events")
def recover_payment_events() -> dict[str, int]:
    return run_async_job(recover_payment_events_async())


celery_app.conf.beat_schedule = celery_app.conf.beat_schedule or {}
celery_app.conf.beat_schedule.update(
    {
        "payment-events-recovery": {
            "task": "trialgate.workers.tasks.payment_events.recover_payment_events",
            "schedule": float(RECOVERY_SCHEDULE_SECONDS),
            "options": {"queue": "q_high"},
        },
    }
)
