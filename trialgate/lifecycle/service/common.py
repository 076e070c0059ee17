from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from uuid import UUID

import structlog

from trialgate.audit.recorder import AuditRecorder
from trialgate.audit.threats import AuditCategory
from trialgate.lifecycle.errors import ConcurrentOperationInProgressError, InvalidTransitionError
from trialgate.lifecycle.locking import AccountLocks, get_account_locks, hold_all
from trialgate.lifecycle.types import LifecycleOperation, TransitionResult
from trialgate.provisioning.dispatch import schedule_provisioning

logger = structlog.get_logger(__name__)

Transition = Callable[[], Awaitable[tuple[TransitionResult, str]]]


def current_locks() -> AccountLocks:
    return get_account_locks()


async def run_transition(
    *,
    operation: LifecycleOperation,
    account_id: UUID,
    lock_keys: Sequence[str],
    now_utc: datetime,
    transition: Transition,
) -> TransitionResult:
    try:
        async with hold_all(current_locks(), lock_keys):
            result, email = await transition()
    except ConcurrentOperationInProgressError as exc:
        await AuditRecorder.record_detached(
            category=AuditCategory.LOCK_CONTENDED,
            now_utc=now_utc,
            account_id=account_id,
            details={"operation": operation.value, "lock_key": exc.lock_key},
        )
        raise
    except InvalidTransitionError as exc:
        logger.info(
            "lifecycle_transition_noop",
            account_id=str(account_id),
            operation=operation.value,
            reason=exc.reason,
        )
        await AuditRecorder.record_detached(
            category=AuditCategory.INVALID_TRANSITION,
            now_utc=now_utc,
            account_id=account_id,
            details={"operation": operation.value, "reason": exc.reason},
        )
        return TransitionResult(
            account_id=account_id,
            operation=operation,
            applied=False,
            previous_state=None,
            new_state=None,
            noop_reason=exc.reason,
        )

    logger.info(
        "lifecycle_transition_applied",
        account_id=str(account_id),
        operation=operation.value,
        previous_state=result.previous_state.value if result.previous_state else None,
        new_state=result.new_state.value if result.new_state else None,
        provisioning_actions=[action.value for action in result.provisioning_actions],
    )
    # External calls happen only after every lock is released.
    if result.provisioning_actions:
        await schedule_provisioning(
            account_id=account_id,
            email=email,
            actions=result.provisioning_actions,
        )
    return result
