from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

import structlog
from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from trialgate.access.admin_grants import grant_super_admin, revoke_super_admin
from trialgate.audit.monitor import build_threat_report
from trialgate.audit.threats import ThreatLevel
from trialgate.core.config import get_settings
from trialgate.db.session import SessionLocal
from trialgate.lifecycle.errors import AccountNotFoundError, AdminGrantDeniedError
from trialgate.services.internal_auth import (
    extract_client_ip,
    is_client_ip_allowed,
    is_internal_request_authenticated,
)

router = APIRouter(tags=["internal", "security"])
logger = structlog.get_logger(__name__)


class ThreatFeedItemResponse(BaseModel):
    audit_event_id: int
    category: str
    threat_level: str
    risk_score: int = Field(ge=0, le=100)
    recommended_action: str
    account_id: str | None = None
    identity_key: str | None = None
    details: dict[str, object]
    created_at: datetime


class ThreatReportResponse(BaseModel):
    system_status: str
    critical_threats_1h: int = Field(ge=0)
    high_threats_1h: int = Field(ge=0)
    feed: list[ThreatFeedItemResponse]
    generated_at: datetime


class AdminGrantRequest(BaseModel):
    account_id: UUID
    granted_by: UUID
    expires_at: datetime


class AdminGrantResponse(BaseModel):
    account_id: UUID
    granted_by: UUID | None = None
    granted_at: datetime
    expires_at: datetime


class AdminRevokeRequest(BaseModel):
    account_id: UUID
    revoked_by: UUID | None = None


class AdminRevokeResponse(BaseModel):
    account_id: UUID
    revoked: bool


def _assert_internal_access(request: Request) -> None:
    settings = get_settings()
    client_ip = extract_client_ip(
        request,
        trusted_proxies=getattr(settings, "internal_api_trusted_proxies", ""),
    )

    if not is_client_ip_allowed(client_ip=client_ip, allowlist=settings.internal_api_allowlist):
        logger.warning("internal_security_auth_failed", reason="ip_not_allowed", client_ip=client_ip)
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})

    if not is_internal_request_authenticated(
        request,
        expected_token=settings.internal_api_token,
    ):
        logger.warning(
            "internal_security_auth_failed",
            reason="invalid_credentials",
            client_ip=client_ip,
        )
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})


@router.get("/internal/security/threats", response_model=ThreatReportResponse)
async def get_threat_report(
    request: Request,
    min_level: ThreatLevel = Query(default=ThreatLevel.MEDIUM),
    limit: int = Query(default=200, ge=1, le=1000),
) -> ThreatReportResponse:
    _assert_internal_access(request)

    now_utc = datetime.now(timezone.utc)
    async with SessionLocal() as session:
        report = await build_threat_report(
            session,
            now_utc=now_utc,
            min_level=min_level,
            limit=limit,
        )

    return ThreatReportResponse(
        system_status=report.system_status.value,
        critical_threats_1h=report.critical_threats_1h,
        high_threats_1h=report.high_threats_1h,
        feed=[
            ThreatFeedItemResponse(
                audit_event_id=item.audit_event_id,
                category=item.category,
                threat_level=item.threat_level.value,
                risk_score=item.risk_score,
                recommended_action=item.recommended_action.value,
                account_id=item.account_id,
                identity_key=item.identity_key,
                details=item.details,
                created_at=item.created_at,
            )
            for item in report.feed
        ],
        generated_at=report.generated_at,
    )


@router.post("/internal/admin-grants", response_model=AdminGrantResponse)
async def create_admin_grant(payload: AdminGrantRequest, request: Request) -> AdminGrantResponse:
    _assert_internal_access(request)

    now_utc = datetime.now(timezone.utc)
    try:
        async with SessionLocal.begin() as session:
            grant = await grant_super_admin(
                session,
                target_account_id=payload.account_id,
                granted_by=payload.granted_by,
                expires_at=payload.expires_at,
                now_utc=now_utc,
            )
            response = AdminGrantResponse(
                account_id=grant.account_id,
                granted_by=grant.granted_by,
                granted_at=grant.granted_at,
                expires_at=grant.expires_at,
            )
    except AdminGrantDeniedError as exc:
        raise HTTPException(status_code=403, detail={"code": "E_GRANT_DENIED", "reason": exc.reason}) from exc
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"code": "not_found"}) from exc

    logger.info(
        "admin_grant_created",
        account_id=str(payload.account_id),
        granted_by=str(payload.granted_by),
    )
    return response


@router.post("/internal/admin-grants/revoke", response_model=AdminRevokeResponse)
async def revoke_admin_grant(payload: AdminRevokeRequest, request: Request) -> AdminRevokeResponse:
    _assert_internal_access(request)

    now_utc = datetime.now(timezone.utc)
    async with SessionLocal.begin() as session:
        revoked = await revoke_super_admin(
            session,
            account_id=payload.account_id,
            revoked_by=payload.revoked_by,
            now_utc=now_utc,
        )
    return AdminRevokeResponse(account_id=payload.account_id, revoked=revoked)
