from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from trialgate.audit.recorder import AuditRecorder
from trialgate.audit.threats import AuditCategory
from trialgate.db.repo.webhook_events_repo import WebhookEventsRepo

logger = structlog.get_logger(__name__)
DEFAULT_DEDUP_WINDOW = timedelta(hours=24)


@dataclass(frozen=True, slots=True)
class WebhookAdmission:
    admitted: bool
    payload_hash: str
    duplicate_of: datetime | None = None
    webhook_event_id: int | None = None


def compute_payload_hash(event_type: str, payload: dict[str, object]) -> str:
    """sha256 of the canonical JSON of the event content.

    Envelope fields such as the provider event id are not part of ``payload``,
    so the same content redelivered under a fresh id hashes identically.
    """
    canonical = json.dumps(
        {"type": event_type, "payload": payload},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class WebhookGate:
    @staticmethod
    async def admit(
        session: AsyncSession,
        *,
        event_id: str,
        event_type: str,
        payload: dict[str, object],
        now_utc: datetime,
        provider_created_at: datetime | None = None,
        dedup_window: timedelta = DEFAULT_DEDUP_WINDOW,
    ) -> WebhookAdmission:
        payload_hash = compute_payload_hash(event_type, payload)
        await WebhookEventsRepo.purge_expired_matches(
            session,
            event_id=event_id,
            payload_hash=payload_hash,
            cutoff_utc=now_utc - dedup_window,
        )
        # Check and record in one statement; the unique constraints decide races.
        webhook_event_id = await WebhookEventsRepo.try_insert(
            session,
            event_id=event_id,
            event_type=event_type,
            payload_hash=payload_hash,
            payload=payload,
            provider_created_at=provider_created_at,
            received_at=now_utc,
        )
        if webhook_event_id is not None:
            logger.info(
                "webhook_event_admitted",
                event_id=event_id,
                event_type=event_type,
                webhook_event_id=webhook_event_id,
            )
            return WebhookAdmission(
                admitted=True,
                payload_hash=payload_hash,
                webhook_event_id=webhook_event_id,
            )

        first_seen = await WebhookEventsRepo.get_first_match(
            session,
            event_id=event_id,
            payload_hash=payload_hash,
        )
        duplicate_of = first_seen.received_at if first_seen is not None else None
        matched_on = (
            "event_id"
            if first_seen is not None and first_seen.event_id == event_id
            else "payload_hash"
        )
        logger.warning(
            "webhook_replay_rejected",
            event_id=event_id,
            event_type=event_type,
            matched_on=matched_on,
            duplicate_of=duplicate_of.isoformat() if duplicate_of is not None else None,
        )
        await AuditRecorder.record(
            session,
            category=AuditCategory.WEBHOOK_REPLAY,
            now_utc=now_utc,
            details={
                "event_id": event_id,
                "event_type": event_type,
                "payload_hash": payload_hash,
                "matched_on": matched_on,
                "duplicate_of": duplicate_of.isoformat() if duplicate_of is not None else None,
            },
        )
        return WebhookAdmission(
            admitted=False,
            payload_hash=payload_hash,
            duplicate_of=duplicate_of,
        )
