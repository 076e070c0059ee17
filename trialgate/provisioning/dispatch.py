from __future__ import annotations

import asyncio
from collections.abc import Sequence
from uuid import UUID

import structlog

from trialgate.lifecycle.types import ProvisioningAction

logger = structlog.get_logger(__name__)
ENQUEUE_TIMEOUT_SECONDS = 0.5


def _is_celery_task(task_obj: object) -> bool:
    return type(task_obj).__module__.startswith("celery.")


async def schedule_provisioning(
    *,
    account_id: UUID,
    email: str,
    actions: Sequence[ProvisioningAction],
) -> int:
    """Enqueues external-account actions; failures are logged and never raised."""
    if not actions:
        return 0

    from trialgate.workers.tasks.provisioning import run_provisioning_action

    scheduled = 0
    for action in actions:

        def enqueue_call(action: ProvisioningAction = action) -> object:
            return run_provisioning_action.delay(
                account_id=str(account_id),
                action=action.value,
                email=email,
            )

        try:
            if _is_celery_task(run_provisioning_action):
                await asyncio.wait_for(
                    asyncio.to_thread(enqueue_call),
                    timeout=ENQUEUE_TIMEOUT_SECONDS,
                )
            else:
                enqueue_call()
            scheduled += 1
        except asyncio.TimeoutError:
            logger.warning(
                "provisioning_enqueue_timeout",
                account_id=str(account_id),
                action=action.value,
            )
        except Exception as exc:
            logger.warning(
                "provisioning_enqueue_failed",
                account_id=str(account_id),
                action=action.value,
                error_type=type(exc).__name__,
            )
    return scheduled
