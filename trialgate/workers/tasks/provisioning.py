from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

import structlog
from celery import Task

from trialgate.core.config import get_settings
from trialgate.lifecycle.types import ProvisioningAction
from trialgate.provisioning.errors import (
    ExternalProvisioningFailedError,
    ProvisioningNotConfiguredError,
)
from trialgate.provisioning.service import ProvisioningOutcome, ProvisioningService
from trialgate.workers.asyncio_runner import run_async_job
from trialgate.workers.celery_app import celery_app
from trialgate.workers.tasks.retry import retry_backoff_seconds

logger = structlog.get_logger(__name__)
settings = get_settings()
TASK_MAX_RETRIES = max(0, int(settings.provisioning_task_max_retries))
TASK_RETRY_BACKOFF_MAX_SECONDS = max(1, int(settings.provisioning_task_retry_backoff_max_seconds))


async def run_provisioning_action_async(
    *,
    account_id: UUID,
    action: ProvisioningAction,
    email: str,
    operation_id: int | None,
) -> ProvisioningOutcome:
    return await ProvisioningService.run(
        account_id=account_id,
        action=action,
        email=email,
        now_utc=datetime.now(timezone.utc),
        operation_id=operation_id,
    )


@celery_app.task(
    name="trialgate.workers.tasks.provisioning.run_provisioning_action",
    bind=True,
    max_retries=TASK_MAX_RETRIES,
    acks_late=True,
    reject_on_worker_lost=True,
)
def run_provisioning_action(
    self: Task,
    account_id: str,
    action: str,
    email: str,
    operation_id: int | None = None,
) -> str:
    resolved_action = ProvisioningAction(action)
    try:
        outcome = run_async_job(
            run_provisioning_action_async(
                account_id=UUID(account_id),
                action=resolved_action,
                email=email,
                operation_id=operation_id,
            )
        )
        return "skipped" if outcome.skipped_reason is not None else "succeeded"
    except ProvisioningNotConfiguredError:
        logger.error(
            "provisioning_not_configured",
            account_id=account_id,
            action=resolved_action.value,
        )
        return "not_configured"
    except ExternalProvisioningFailedError as exc:
        current_retries = max(0, int(getattr(self.request, "retries", 0)))
        if current_retries >= TASK_MAX_RETRIES:
            logger.error(
                "provisioning_action_failed_final",
                account_id=account_id,
                action=resolved_action.value,
                retries=current_retries,
                max_retries=TASK_MAX_RETRIES,
            )
            return "failed"

        next_retry_attempt = current_retries + 1
        retry_in_seconds = retry_backoff_seconds(
            next_retry_attempt=next_retry_attempt,
            backoff_max_seconds=TASK_RETRY_BACKOFF_MAX_SECONDS,
        )
        logger.warning(
            "provisioning_action_retry_scheduled",
            account_id=account_id,
            action=resolved_action.value,
            retry_attempt=next_retry_attempt,
            retry_in_seconds=retry_in_seconds,
        )
        raise self.retry(
            exc=exc,
            countdown=retry_in_seconds,
            max_retries=TASK_MAX_RETRIES,
            kwargs={
                "account_id": account_id,
                "action": resolved_action.value,
                "email": email,
                "operation_id": exc.operation_id if exc.operation_id is not None else operation_id,
            },
        )
