from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from trialgate.audit.threats import (
    RecommendedAction,
    SystemThreatStatus,
    ThreatLevel,
    categories_at_or_above,
    classify,
    count_by_threat_level,
    parse_category,
    recommended_action,
    risk_score,
    summarize_threats,
)
from trialgate.db.repo.audit_events_repo import AuditEventsRepo

THREAT_FEED_WINDOW = timedelta(hours=24)
THREAT_STATUS_WINDOW = timedelta(hours=1)
THREAT_FEED_LIMIT = 200


@dataclass(frozen=True, slots=True)
class ThreatFeedItem:
    audit_event_id: int
    category: str
    threat_level: ThreatLevel
    risk_score: int
    recommended_action: RecommendedAction
    account_id: str | None
    identity_key: str | None
    details: dict[str, object]
    created_at: datetime


@dataclass(frozen=True, slots=True)
class ThreatReport:
    system_status: SystemThreatStatus
    critical_threats_1h: int
    high_threats_1h: int
    feed: list[ThreatFeedItem]
    generated_at: datetime


async def build_threat_report(
    session: AsyncSession,
    *,
    now_utc: datetime,
    min_level: ThreatLevel = ThreatLevel.MEDIUM,
    limit: int = THREAT_FEED_LIMIT,
) -> ThreatReport:
    counts_by_category = await AuditEventsRepo.count_by_category_since(
        session,
        since_utc=now_utc - THREAT_STATUS_WINDOW,
    )
    totals = count_by_threat_level(counts_by_category)

    events = await AuditEventsRepo.list_recent(
        session,
        categories=[category.value for category in categories_at_or_above(min_level)],
        since_utc=now_utc - THREAT_FEED_WINDOW,
        limit=limit,
    )
    feed: list[ThreatFeedItem] = []
    for event in events:
        category = parse_category(event.category)
        if category is None:
            continue
        feed.append(
            ThreatFeedItem(
                audit_event_id=int(event.id),
                category=category.value,
                threat_level=classify(category),
                risk_score=risk_score(category),
                recommended_action=recommended_action(category),
                account_id=str(event.account_id) if event.account_id is not None else None,
                identity_key=event.identity_key,
                details=dict(event.details or {}),
                created_at=event.created_at,
            )
        )
    # Highest risk first, newest first within the same score.
    feed.sort(key=lambda item: (-item.risk_score, -item.created_at.timestamp()))

    return ThreatReport(
        system_status=summarize_threats(
            critical_count=totals[ThreatLevel.CRITICAL],
            high_count=totals[ThreatLevel.HIGH],
        ),
        critical_threats_1h=totals[ThreatLevel.CRITICAL],
        high_threats_1h=totals[ThreatLevel.HIGH],
        feed=feed,
        generated_at=now_utc,
    )
