from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone

import stripe


class InvalidWebhookSignatureError(Exception):
    pass


class InvalidWebhookPayloadError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class VerifiedWebhookEvent:
    event_id: str
    event_type: str
    payload: dict[str, object]
    created_at: datetime | None


def verify_webhook_event(
    *,
    raw_body: bytes,
    signature_header: str | None,
    secret: str,
    tolerance_seconds: int,
) -> VerifiedWebhookEvent:
    if not secret or not signature_header:
        raise InvalidWebhookSignatureError("missing secret or signature")

    try:
        stripe.Webhook.construct_event(
            raw_body,
            signature_header,
            secret,
            tolerance=tolerance_seconds,
        )
    except stripe.SignatureVerificationError as exc:
        raise InvalidWebhookSignatureError(str(exc)) from exc
    except ValueError as exc:
        raise InvalidWebhookPayloadError(str(exc)) from exc

    # The signed body is re-read as plain JSON so the stored payload is a plain dict.
    try:
        event = json.loads(raw_body)
    except ValueError as exc:
        raise InvalidWebhookPayloadError(str(exc)) from exc
    if not isinstance(event, dict):
        raise InvalidWebhookPayloadError("event must be an object")

    event_id = event.get("id")
    event_type = event.get("type")
    payload = event.get("data")
    if not isinstance(event_id, str) or not event_id:
        raise InvalidWebhookPayloadError("missing event id")
    if not isinstance(event_type, str) or not event_type:
        raise InvalidWebhookPayloadError("missing event type")
    if not isinstance(payload, dict):
        raise InvalidWebhookPayloadError("missing event data")

    created = event.get("created")
    created_at = (
        datetime.fromtimestamp(created, tz=timezone.utc)
        if isinstance(created, int) and not isinstance(created, bool)
        else None
    )
    return VerifiedWebhookEvent(
        event_id=event_id,
        event_type=event_type,
        payload=payload,
        created_at=created_at,
    )
