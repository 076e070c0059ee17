from __future__ import annotations

from collections.abc import Mapping
from enum import Enum


class AuditCategory(str, Enum):
    SIGNUP = "SIGNUP"
    TRIAL_BLOCKED_RETURNING_USER = "TRIAL_BLOCKED_RETURNING_USER"
    TRIAL_EXPIRED = "TRIAL_EXPIRED"
    SUBSCRIPTION_CHANGED = "SUBSCRIPTION_CHANGED"
    SUBSCRIPTION_PERIOD_ENDED = "SUBSCRIPTION_PERIOD_ENDED"
    DELETION_RECORDED = "DELETION_RECORDED"
    DELETION_HISTORY_FAILED = "DELETION_HISTORY_FAILED"
    ACCOUNT_REMOVED = "ACCOUNT_REMOVED"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    LOCK_CONTENDED = "LOCK_CONTENDED"
    WEBHOOK_REPLAY = "WEBHOOK_REPLAY"
    WEBHOOK_SIGNATURE_INVALID = "WEBHOOK_SIGNATURE_INVALID"
    WEBHOOK_UNMATCHED = "WEBHOOK_UNMATCHED"
    WEBHOOK_PROCESSING_FAILED = "WEBHOOK_PROCESSING_FAILED"
    PROVISIONING_FAILED = "PROVISIONING_FAILED"
    ADMIN_GRANTED = "ADMIN_GRANTED"
    ADMIN_REVOKED = "ADMIN_REVOKED"
    ADMIN_GRANT_DENIED = "ADMIN_GRANT_DENIED"
    ACCESS_DECISION = "ACCESS_DECISION"


class ThreatLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecommendedAction(str, Enum):
    BLOCK_SOURCE = "BLOCK_SOURCE"
    BLOCK_EMAIL_DOMAIN = "BLOCK_EMAIL_DOMAIN"
    INVESTIGATE = "INVESTIGATE"
    MONITOR = "MONITOR"


class SystemThreatStatus(str, Enum):
    NORMAL = "NORMAL"
    ELEVATED = "ELEVATED"
    HIGH_ALERT = "HIGH_ALERT"
    UNDER_ATTACK = "UNDER_ATTACK"


THREAT_LEVEL_RANKS: dict[ThreatLevel, int] = {
    ThreatLevel.LOW: 1,
    ThreatLevel.MEDIUM: 2,
    ThreatLevel.HIGH: 3,
    ThreatLevel.CRITICAL: 4,
}

THREAT_LEVELS: dict[AuditCategory, ThreatLevel] = {
    AuditCategory.WEBHOOK_REPLAY: ThreatLevel.CRITICAL,
    AuditCategory.TRIAL_BLOCKED_RETURNING_USER: ThreatLevel.HIGH,
    AuditCategory.DELETION_HISTORY_FAILED: ThreatLevel.CRITICAL,
    AuditCategory.WEBHOOK_SIGNATURE_INVALID: ThreatLevel.MEDIUM,
    AuditCategory.ADMIN_GRANT_DENIED: ThreatLevel.MEDIUM,
    AuditCategory.WEBHOOK_UNMATCHED: ThreatLevel.MEDIUM,
    AuditCategory.WEBHOOK_PROCESSING_FAILED: ThreatLevel.MEDIUM,
    AuditCategory.PROVISIONING_FAILED: ThreatLevel.MEDIUM,
}

RISK_SCORES: dict[AuditCategory, int] = {
    AuditCategory.WEBHOOK_REPLAY: 100,
    AuditCategory.TRIAL_BLOCKED_RETURNING_USER: 90,
    AuditCategory.DELETION_HISTORY_FAILED: 85,
    AuditCategory.WEBHOOK_SIGNATURE_INVALID: 60,
    AuditCategory.ADMIN_GRANT_DENIED: 60,
    AuditCategory.ADMIN_GRANTED: 50,
    AuditCategory.WEBHOOK_UNMATCHED: 45,
    AuditCategory.WEBHOOK_PROCESSING_FAILED: 45,
    AuditCategory.PROVISIONING_FAILED: 40,
}
DEFAULT_RISK_SCORE = 30

RECOMMENDED_ACTIONS: dict[AuditCategory, RecommendedAction] = {
    AuditCategory.WEBHOOK_REPLAY: RecommendedAction.BLOCK_SOURCE,
    AuditCategory.TRIAL_BLOCKED_RETURNING_USER: RecommendedAction.BLOCK_EMAIL_DOMAIN,
    AuditCategory.DELETION_HISTORY_FAILED: RecommendedAction.INVESTIGATE,
    AuditCategory.ADMIN_GRANT_DENIED: RecommendedAction.INVESTIGATE,
}

UNDER_ATTACK_CRITICAL_THRESHOLD = 5
ELEVATED_HIGH_THRESHOLD = 10


def classify(category: AuditCategory) -> ThreatLevel:
    return THREAT_LEVELS.get(category, ThreatLevel.LOW)


def risk_score(category: AuditCategory) -> int:
    return RISK_SCORES.get(category, DEFAULT_RISK_SCORE)


def recommended_action(category: AuditCategory) -> RecommendedAction:
    return RECOMMENDED_ACTIONS.get(category, RecommendedAction.MONITOR)


def categories_at_or_above(level: ThreatLevel) -> frozenset[AuditCategory]:
    minimum_rank = THREAT_LEVEL_RANKS[level]
    return frozenset(
        category
        for category in AuditCategory
        if THREAT_LEVEL_RANKS[classify(category)] >= minimum_rank
    )


def parse_category(raw_category: str) -> AuditCategory | None:
    try:
        return AuditCategory(raw_category)
    except ValueError:
        return None


def count_by_threat_level(counts_by_category: Mapping[str, int]) -> dict[ThreatLevel, int]:
    totals = {level: 0 for level in ThreatLevel}
    for raw_category, count in counts_by_category.items():
        category = parse_category(raw_category)
        level = classify(category) if category is not None else ThreatLevel.LOW
        totals[level] += int(count)
    return totals


def summarize_threats(*, critical_count: int, high_count: int) -> SystemThreatStatus:
    if critical_count > UNDER_ATTACK_CRITICAL_THRESHOLD:
        return SystemThreatStatus.UNDER_ATTACK
    if critical_count > 0:
        return SystemThreatStatus.HIGH_ALERT
    if high_count > ELEVATED_HIGH_THRESHOLD:
        return SystemThreatStatus.ELEVATED
    return SystemThreatStatus.NORMAL
