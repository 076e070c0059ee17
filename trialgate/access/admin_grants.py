from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from trialgate.access.rules import is_admin_grant_active
from trialgate.access.types import AdminGrantFacts
from trialgate.audit.recorder import AuditRecorder
from trialgate.audit.threats import AuditCategory
from trialgate.db.models.super_admin_grants import SuperAdminGrant
from trialgate.db.repo.accounts_repo import AccountsRepo
from trialgate.db.repo.admin_grants_repo import AdminGrantsRepo
from trialgate.lifecycle.errors import AccountNotFoundError, AdminGrantDeniedError


def grant_facts(grant: SuperAdminGrant | None) -> AdminGrantFacts | None:
    if grant is None:
        return None
    return AdminGrantFacts(
        granted_at=grant.granted_at,
        expires_at=grant.expires_at,
        revoked_at=grant.revoked_at,
    )


async def _deny(
    *,
    reason: str,
    target_account_id: UUID,
    granted_by: UUID | None,
    now_utc: datetime,
) -> AdminGrantDeniedError:
    await AuditRecorder.record_detached(
        category=AuditCategory.ADMIN_GRANT_DENIED,
        now_utc=now_utc,
        account_id=target_account_id,
        details={
            "reason": reason,
            "granted_by": str(granted_by) if granted_by is not None else None,
        },
    )
    return AdminGrantDeniedError(reason)


async def grant_super_admin(
    session: AsyncSession,
    *,
    target_account_id: UUID,
    granted_by: UUID | None,
    expires_at: datetime,
    now_utc: datetime,
    allow_bootstrap: bool = False,
) -> SuperAdminGrant:
    if expires_at <= now_utc:
        raise await _deny(
            reason="expiry_not_in_future",
            target_account_id=target_account_id,
            granted_by=granted_by,
            now_utc=now_utc,
        )

    if granted_by is None:
        if not allow_bootstrap:
            raise await _deny(
                reason="granter_required",
                target_account_id=target_account_id,
                granted_by=None,
                now_utc=now_utc,
            )
    else:
        granter_grant = await AdminGrantsRepo.get_by_account_id(session, granted_by)
        if not is_admin_grant_active(grant_facts(granter_grant), now_utc=now_utc):
            raise await _deny(
                reason="granter_not_admin",
                target_account_id=target_account_id,
                granted_by=granted_by,
                now_utc=now_utc,
            )

    target = await AccountsRepo.get_by_id(session, target_account_id)
    if target is None or target.status != "ACTIVE":
        raise AccountNotFoundError(str(target_account_id))

    grant = await AdminGrantsRepo.upsert(
        session,
        account_id=target_account_id,
        granted_by=granted_by,
        granted_at=now_utc,
        expires_at=expires_at,
    )
    await AuditRecorder.record(
        session,
        category=AuditCategory.ADMIN_GRANTED,
        now_utc=now_utc,
        account_id=target_account_id,
        identity_key=target.identity_key,
        details={
            "granted_by": str(granted_by) if granted_by is not None else None,
            "expires_at": expires_at.isoformat(),
            "bootstrap": granted_by is None,
        },
    )
    return grant


async def revoke_super_admin(
    session: AsyncSession,
    *,
    account_id: UUID,
    revoked_by: UUID | None,
    now_utc: datetime,
) -> bool:
    grant = await AdminGrantsRepo.get_by_account_id(session, account_id)
    if grant is None or grant.revoked_at is not None:
        return False

    grant.revoked_at = now_utc
    await AuditRecorder.record(
        session,
        category=AuditCategory.ADMIN_REVOKED,
        now_utc=now_utc,
        account_id=account_id,
        details={"revoked_by": str(revoked_by) if revoked_by is not None else None},
    )
    return True
