from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from trialgate.access.rules import evaluate_access
from trialgate.access.service import AccessService
from trialgate.audit.recorder import AuditRecorder
from trialgate.audit.threats import AuditCategory
from trialgate.core.config import get_settings
from trialgate.db.repo.accounts_repo import AccountsRepo
from trialgate.db.repo.provisioning_operations_repo import ProvisioningOperationsRepo
from trialgate.db.session import SessionLocal
from trialgate.lifecycle.types import ProvisioningAction
from trialgate.provisioning.client import WorkspaceClient
from trialgate.provisioning.errors import (
    ExternalProvisioningFailedError,
    ProvisioningNotConfiguredError,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ProvisioningOutcome:
    operation_id: int
    action: ProvisioningAction
    external_user_id: str | None
    skipped_reason: str | None = None


def build_workspace_client() -> WorkspaceClient:
    settings = get_settings()
    if not settings.workspace_api_username or not settings.workspace_api_password:
        raise ProvisioningNotConfiguredError("workspace API credentials are not configured")
    return WorkspaceClient(
        base_url=settings.workspace_api_url,
        username=settings.workspace_api_username,
        password=settings.workspace_api_password,
        timeout_seconds=settings.workspace_api_timeout_seconds,
    )


async def _call_workspace(
    client: WorkspaceClient,
    *,
    action: ProvisioningAction,
    email: str,
) -> str | None:
    if action == ProvisioningAction.ACTIVATE:
        return await client.activate(email)
    if action == ProvisioningAction.DEACTIVATE:
        return await client.deactivate(email)
    return await client.delete(email)


async def _skip_reason(
    session: AsyncSession,
    *,
    account_id: UUID,
    action: ProvisioningAction,
    now_utc: datetime,
) -> str | None:
    """Returns why ``action`` no longer matches local state, or None to run it.

    Tasks retry independently, so an ACTIVATE queued at signup can arrive
    after the DEACTIVATE or DELETE that followed it.
    """
    account = await AccountsRepo.get_by_id(session, account_id)
    is_active = account is not None and account.status == "ACTIVE"

    if action == ProvisioningAction.DELETE:
        return "account_not_deleted" if is_active else None
    if not is_active:
        return "account_not_active" if action == ProvisioningAction.ACTIVATE else None

    facts = await AccessService.load_facts(session, account_id)
    decision = evaluate_access(facts, now_utc=now_utc)
    if action == ProvisioningAction.ACTIVATE and not decision.can_provision_external_account:
        return "access_not_granted"
    if action == ProvisioningAction.DEACTIVATE and decision.has_access:
        return "access_regained"
    return None


class ProvisioningService:
    @staticmethod
    async def run(
        *,
        account_id: UUID,
        action: ProvisioningAction,
        email: str,
        now_utc: datetime,
        operation_id: int | None = None,
        client_factory: Callable[[], WorkspaceClient] = build_workspace_client,
    ) -> ProvisioningOutcome:
        async with SessionLocal() as session:
            skipped_reason = await _skip_reason(
                session,
                account_id=account_id,
                action=action,
                now_utc=now_utc,
            )

        async with SessionLocal.begin() as session:
            if operation_id is None:
                operation = await ProvisioningOperationsRepo.create(
                    session,
                    account_id=account_id,
                    action=action.value,
                    now_utc=now_utc,
                )
                operation_id = operation.id
            attempts = await ProvisioningOperationsRepo.mark_attempt(
                session,
                operation_id=operation_id,
                now_utc=now_utc,
            )
            if skipped_reason is not None:
                await ProvisioningOperationsRepo.mark_skipped(
                    session,
                    operation_id=operation_id,
                    reason=skipped_reason,
                    now_utc=now_utc,
                )

        if skipped_reason is not None:
            logger.info(
                "provisioning_action_skipped",
                account_id=str(account_id),
                action=action.value,
                operation_id=operation_id,
                reason=skipped_reason,
            )
            return ProvisioningOutcome(
                operation_id=operation_id,
                action=action,
                external_user_id=None,
                skipped_reason=skipped_reason,
            )

        try:
            async with client_factory() as client:
                external_user_id = await _call_workspace(client, action=action, email=email)
        except (ExternalProvisioningFailedError, ProvisioningNotConfiguredError) as exc:
            if isinstance(exc, ExternalProvisioningFailedError):
                exc.operation_id = operation_id
            async with SessionLocal.begin() as session:
                await ProvisioningOperationsRepo.mark_failed(
                    session,
                    operation_id=operation_id,
                    error=str(exc),
                    now_utc=now_utc,
                )
                await AuditRecorder.record(
                    session,
                    category=AuditCategory.PROVISIONING_FAILED,
                    now_utc=now_utc,
                    account_id=account_id,
                    details={
                        "operation_id": operation_id,
                        "action": action.value,
                        "attempts": attempts,
                        "error": str(exc),
                    },
                )
            logger.warning(
                "provisioning_action_failed",
                account_id=str(account_id),
                action=action.value,
                operation_id=operation_id,
                attempts=attempts,
                error_type=type(exc).__name__,
            )
            raise

        async with SessionLocal.begin() as session:
            await ProvisioningOperationsRepo.mark_succeeded(
                session,
                operation_id=operation_id,
                external_user_id=external_user_id,
                now_utc=now_utc,
            )
        logger.info(
            "provisioning_action_succeeded",
            account_id=str(account_id),
            action=action.value,
            operation_id=operation_id,
            external_user_id=external_user_id,
        )
        return ProvisioningOutcome(
            operation_id=operation_id,
            action=action,
            external_user_id=external_user_id,
        )
