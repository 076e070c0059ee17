from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from trialgate.webhooks.payment_events import extract_account_hint, extract_subscription_change

CREATED = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
PERIOD_END = 1775044800


def _subscription_payload(**overrides) -> dict[str, object]:
    event_object: dict[str, object] = {
        "id": "sub_1",
        "customer": "cus_1",
        "status": "active",
        "current_period_end": PERIOD_END,
        "cancel_at_period_end": False,
    }
    event_object.update(overrides)
    return {"object": event_object}


def test_subscription_update_maps_to_change() -> None:
    change = extract_subscription_change(
        event_id="evt_1",
        event_type="customer.subscription.updated",
        payload=_subscription_payload(cancel_at_period_end=True),
        event_created_at=CREATED,
    )

    assert change is not None
    assert change.subscription_id == "sub_1"
    assert change.customer_id == "cus_1"
    assert change.status == "active"
    assert change.cancel_at_period_end is True
    assert change.current_period_end == datetime.fromtimestamp(PERIOD_END, tz=timezone.utc)
    assert change.event_id == "evt_1"


def test_subscription_deleted_is_always_canceled() -> None:
    change = extract_subscription_change(
        event_id="evt_2",
        event_type="customer.subscription.deleted",
        payload=_subscription_payload(status="active"),
        event_created_at=CREATED,
    )

    assert change is not None
    assert change.status == "canceled"


def test_provider_statuses_fold_onto_supported_ones() -> None:
    change = extract_subscription_change(
        event_id="evt_3",
        event_type="customer.subscription.updated",
        payload=_subscription_payload(status="unpaid"),
        event_created_at=CREATED,
    )
    assert change is not None
    assert change.status == "past_due"

    unknown = extract_subscription_change(
        event_id="evt_4",
        event_type="customer.subscription.updated",
        payload=_subscription_payload(status="mystery"),
        event_created_at=CREATED,
    )
    assert unknown is None


def test_period_end_falls_back_to_subscription_items() -> None:
    payload = _subscription_payload(current_period_end=None)
    payload["object"]["items"] = {  # type: ignore[index]
        "data": [{"current_period_end": PERIOD_END - 10}, {"current_period_end": PERIOD_END}]
    }

    change = extract_subscription_change(
        event_id="evt_5",
        event_type="customer.subscription.created",
        payload=payload,
        event_created_at=CREATED,
    )

    assert change is not None
    assert change.current_period_end == datetime.fromtimestamp(PERIOD_END, tz=timezone.utc)


def test_paid_checkout_completion_implies_active_subscription() -> None:
    change = extract_subscription_change(
        event_id="evt_6",
        event_type="checkout.session.completed",
        payload={
            "object": {
                "mode": "subscription",
                "payment_status": "paid",
                "subscription": "sub_9",
                "customer": {"id": "cus_9"},
            }
        },
        event_created_at=CREATED,
    )

    assert change is not None
    assert (change.subscription_id, change.customer_id, change.status) == ("sub_9", "cus_9", "active")
    assert change.current_period_end is None


def test_unpaid_or_one_off_checkout_is_ignored() -> None:
    for event_object in (
        {"mode": "subscription", "payment_status": "unpaid", "subscription": "sub_9", "customer": "cus_9"},
        {"mode": "payment", "payment_status": "paid", "customer": "cus_9"},
    ):
        assert (
            extract_subscription_change(
                event_id="evt_7",
                event_type="checkout.session.completed",
                payload={"object": event_object},
                event_created_at=CREATED,
            )
            is None
        )


def test_unhandled_event_type_yields_no_change() -> None:
    assert (
        extract_subscription_change(
            event_id="evt_8",
            event_type="invoice.paid",
            payload=_subscription_payload(),
            event_created_at=CREATED,
        )
        is None
    )


def test_account_hint_prefers_metadata_then_client_reference() -> None:
    account_id = uuid4()
    other_id = uuid4()

    assert extract_account_hint(
        "customer.subscription.updated",
        _subscription_payload(metadata={"account_id": str(account_id)}),
    ) == account_id
    assert extract_account_hint(
        "checkout.session.completed",
        {"object": {"client_reference_id": str(other_id), "metadata": {}}},
    ) == other_id
    assert extract_account_hint(
        "customer.subscription.updated",
        _subscription_payload(metadata={"account_id": "not-a-uuid"}),
    ) is None
    assert extract_account_hint("customer.subscription.updated", {"object": "nope"}) is None
