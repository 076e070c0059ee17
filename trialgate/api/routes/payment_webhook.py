from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import structlog
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from trialgate.audit.recorder import AuditRecorder
from trialgate.audit.threats import AuditCategory
from trialgate.core.config import get_settings
from trialgate.db.session import SessionLocal
from trialgate.services.internal_auth import extract_client_ip
from trialgate.webhooks.gate import WebhookGate
from trialgate.webhooks.signature import (
    InvalidWebhookPayloadError,
    InvalidWebhookSignatureError,
    verify_webhook_event,
)
from trialgate.workers.tasks.payment_events import process_payment_event

router = APIRouter(tags=["payments"])
logger = structlog.get_logger(__name__)
SIGNATURE_HEADER = "Stripe-Signature"


def _is_celery_task(task_obj: object) -> bool:
    return type(task_obj).__module__.startswith("celery.")


async def _enqueue_event(*, event_id: str, timeout_seconds: float) -> bool:
    def enqueue_call() -> object:
        return process_payment_event.delay(event_id=event_id)

    try:
        if _is_celery_task(process_payment_event):
            await asyncio.wait_for(
                asyncio.to_thread(enqueue_call),
                timeout=timeout_seconds,
            )
        else:
            enqueue_call()
        return True
    except asyncio.TimeoutError:
        logger.warning(
            "payment_webhook_enqueue_timeout",
            event_id=event_id,
            enqueue_timeout_seconds=timeout_seconds,
        )
        return False
    except Exception as exc:
        logger.warning(
            "payment_webhook_enqueue_failed",
            event_id=event_id,
            error_type=type(exc).__name__,
        )
        return False


async def _reject(
    request: Request,
    *,
    reason: str,
    error: str,
    now_utc: datetime,
) -> JSONResponse:
    client_ip = extract_client_ip(request)
    logger.warning("payment_webhook_rejected", reason=reason, client_ip=client_ip)
    await AuditRecorder.record_detached(
        category=AuditCategory.WEBHOOK_SIGNATURE_INVALID,
        now_utc=now_utc,
        details={"reason": reason, "error": error[:256], "client_ip": client_ip},
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"status": "rejected", "reason": reason},
    )


@router.post("/webhook/payments")
async def payment_webhook(request: Request) -> JSONResponse:
    settings = get_settings()
    now_utc = datetime.now(timezone.utc)
    raw_body = await request.body()

    try:
        event = verify_webhook_event(
            raw_body=raw_body,
            signature_header=request.headers.get(SIGNATURE_HEADER),
            secret=settings.stripe_webhook_secret,
            tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
        )
    except InvalidWebhookSignatureError as exc:
        return await _reject(request, reason="invalid_signature", error=str(exc), now_utc=now_utc)
    except InvalidWebhookPayloadError as exc:
        return await _reject(request, reason="invalid_payload", error=str(exc), now_utc=now_utc)

    async with SessionLocal.begin() as session:
        admission = await WebhookGate.admit(
            session,
            event_id=event.event_id,
            event_type=event.event_type,
            payload=event.payload,
            now_utc=now_utc,
            provider_created_at=event.created_at,
            dedup_window=timedelta(hours=max(1, int(settings.webhook_dedup_window_hours))),
        )

    if not admission.admitted:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "duplicate"},
        )

    enqueue_timeout_ms = max(1, int(settings.payment_event_enqueue_timeout_ms))
    enqueued = await _enqueue_event(
        event_id=event.event_id,
        timeout_seconds=enqueue_timeout_ms / 1000.0,
    )
    # The event row is already committed; the recovery sweep picks up anything not queued.
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={"status": "queued" if enqueued else "accepted"},
    )
