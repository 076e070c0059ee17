from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from sqlalchemy import select

from trialgate.core.config import get_settings
from trialgate.db.models.deletion_ledger import DeletionLedgerEntry
from trialgate.db.repo.webhook_events_repo import WebhookEventsRepo
from trialgate.db.session import SessionLocal
from trialgate.lifecycle.errors import ConcurrentOperationInProgressError
from trialgate.lifecycle.locking import get_account_locks
from trialgate.workers.tasks.payment_events import (
    MAX_PROCESSING_ATTEMPTS,
    PROCESSING_TTL_SECONDS,
    RECOVERY_MIN_AGE,
)

router = APIRouter(tags=["health"])

READINESS_LOCK_KEY = "health:readiness"
PAYMENT_EVENT_BACKLOG_LIMIT = 100


def _failed(error: str) -> dict[str, Any]:
    return {"status": "failed", "error": error}


async def _check_ledger() -> dict[str, Any]:
    # Every signup reads the deletion ledger before it may grant a trial.
    try:
        async with SessionLocal() as session:
            await session.execute(select(DeletionLedgerEntry.id).limit(1))
        return {"status": "ok"}
    except Exception as exc:
        return _failed(str(exc))


async def _check_account_locks() -> dict[str, Any]:
    backend = get_settings().account_lock_backend.strip().lower()
    try:
        async with get_account_locks().hold(READINESS_LOCK_KEY):
            pass
    except ConcurrentOperationInProgressError:
        # A concurrent probe holds the key; the backend itself answered.
        pass
    except Exception as exc:
        return {**_failed(str(exc)), "backend": backend}
    return {"status": "ok", "backend": backend}


async def _check_broker() -> dict[str, Any]:
    # Webhook intake and provisioning both enqueue through the broker.
    broker: Redis | None = None
    try:
        broker = Redis.from_url(get_settings().celery_broker_url)
        if await broker.ping() is not True:
            return _failed("broker did not answer ping")
        return {"status": "ok"}
    except Exception as exc:
        return _failed(str(exc))
    finally:
        if broker is not None:
            await broker.aclose()


async def _check_payment_event_backlog() -> dict[str, Any]:
    try:
        async with SessionLocal() as session:
            event_ids = await WebhookEventsRepo.list_recoverable_event_ids(
                session,
                received_before_utc=datetime.now(timezone.utc) - RECOVERY_MIN_AGE,
                processing_ttl_seconds=PROCESSING_TTL_SECONDS,
                max_attempts=MAX_PROCESSING_ATTEMPTS,
                limit=PAYMENT_EVENT_BACKLOG_LIMIT,
            )
    except Exception as exc:
        return _failed(str(exc))
    if len(event_ids) >= PAYMENT_EVENT_BACKLOG_LIMIT:
        return {**_failed("payment event backlog is not draining"), "pending": len(event_ids)}
    return {"status": "ok", "pending": len(event_ids)}


async def _readiness_checks() -> dict[str, dict[str, Any]]:
    ledger, locks, broker = await asyncio.gather(
        _check_ledger(),
        _check_account_locks(),
        _check_broker(),
    )
    return {"ledger": ledger, "account_locks": locks, "broker": broker}


def _respond(checks: dict[str, dict[str, Any]], *, ok: str, failed: str) -> JSONResponse:
    is_ok = all(check.get("status") == "ok" for check in checks.values())
    return JSONResponse(
        status_code=status.HTTP_200_OK if is_ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": ok if is_ok else failed, "checks": checks},
    )


@router.get("/live")
async def live() -> dict[str, str]:
    return {"status": "live"}


@router.get("/ready")
async def ready() -> JSONResponse:
    return _respond(await _readiness_checks(), ok="ready", failed="not_ready")


@router.get("/health")
async def health() -> JSONResponse:
    checks = await _readiness_checks()
    checks["payment_events"] = await _check_payment_event_backlog()
    return _respond(checks, ok="ok", failed="degraded")
