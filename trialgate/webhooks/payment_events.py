from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from trialgate.lifecycle.types import SubscriptionChange

SUBSCRIPTION_EVENT_TYPES = frozenset(
    {
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
    }
)
CHECKOUT_COMPLETED_EVENT_TYPE = "checkout.session.completed"
HANDLED_EVENT_TYPES = SUBSCRIPTION_EVENT_TYPES | {CHECKOUT_COMPLETED_EVENT_TYPE}

# Provider statuses folded onto the four the access policy understands.
PROVIDER_STATUS_MAP = {
    "active": "active",
    "trialing": "trialing",
    "past_due": "past_due",
    "unpaid": "past_due",
    "incomplete": "past_due",
    "paused": "past_due",
    "canceled": "canceled",
    "incomplete_expired": "canceled",
}


def _epoch_to_datetime(value: object) -> datetime | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _current_period_end(subscription_object: dict[str, object]) -> datetime | None:
    period_end = _epoch_to_datetime(subscription_object.get("current_period_end"))
    if period_end is not None:
        return period_end

    # Newer API versions report the period on each subscription item.
    items = subscription_object.get("items")
    if isinstance(items, dict):
        item_rows = items.get("data")
        if isinstance(item_rows, list):
            item_ends = [
                item_end
                for item in item_rows
                if isinstance(item, dict)
                for item_end in [_epoch_to_datetime(item.get("current_period_end"))]
                if item_end is not None
            ]
            if item_ends:
                return max(item_ends)
    return None


def _as_str(value: object) -> str | None:
    if isinstance(value, str) and value:
        return value
    if isinstance(value, dict):
        nested_id = value.get("id")
        if isinstance(nested_id, str) and nested_id:
            return nested_id
    return None


def _parse_account_id(value: object) -> UUID | None:
    if not isinstance(value, str):
        return None
    try:
        return UUID(value)
    except ValueError:
        return None


def extract_account_hint(event_type: str, payload: dict[str, object]) -> UUID | None:
    event_object = payload.get("object")
    if not isinstance(event_object, dict):
        return None

    metadata = event_object.get("metadata")
    if isinstance(metadata, dict):
        account_id = _parse_account_id(metadata.get("account_id"))
        if account_id is not None:
            return account_id
    if event_type == CHECKOUT_COMPLETED_EVENT_TYPE:
        return _parse_account_id(event_object.get("client_reference_id"))
    return None


def extract_subscription_change(
    *,
    event_id: str,
    event_type: str,
    payload: dict[str, object],
    event_created_at: datetime,
) -> SubscriptionChange | None:
    event_object = payload.get("object")
    if event_type not in HANDLED_EVENT_TYPES or not isinstance(event_object, dict):
        return None

    if event_type == CHECKOUT_COMPLETED_EVENT_TYPE:
        if event_object.get("mode") != "subscription":
            return None
        if event_object.get("payment_status") not in ("paid", "no_payment_required"):
            return None
        subscription_id = _as_str(event_object.get("subscription"))
        customer_id = _as_str(event_object.get("customer"))
        if subscription_id is None or customer_id is None:
            return None
        return SubscriptionChange(
            subscription_id=subscription_id,
            customer_id=customer_id,
            status="active",
            current_period_end=None,
            cancel_at_period_end=False,
            event_created_at=event_created_at,
            event_id=event_id,
        )

    subscription_id = _as_str(event_object.get("id"))
    customer_id = _as_str(event_object.get("customer"))
    raw_status = event_object.get("status")
    if event_type == "customer.subscription.deleted":
        raw_status = "canceled"
    status = PROVIDER_STATUS_MAP.get(raw_status) if isinstance(raw_status, str) else None
    if subscription_id is None or customer_id is None or status is None:
        return None

    return SubscriptionChange(
        subscription_id=subscription_id,
        customer_id=customer_id,
        status=status,
        current_period_end=_current_period_end(event_object),
        cancel_at_period_end=bool(event_object.get("cancel_at_period_end")),
        event_created_at=event_created_at,
        event_id=event_id,
    )
