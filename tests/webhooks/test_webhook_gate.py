from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from tests.fakes import FakeSession, install_fake_store
from trialgate.db.repo.webhook_events_repo import TERMINAL_STATUSES, WebhookEventsRepo
from trialgate.webhooks.gate import WebhookGate, compute_payload_hash

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
PAYLOAD = {"object": {"id": "sub_1", "customer": "cus_1", "status": "active"}}


class _WebhookTable:
    def __init__(self) -> None:
        self.rows: list[SimpleNamespace] = []

    def _matches(self, row, *, event_id: str, payload_hash: str) -> bool:
        return row.event_id == event_id or row.payload_hash == payload_hash

    async def purge_expired_matches(self, session, *, event_id, payload_hash, cutoff_utc) -> int:
        keep = [
            row
            for row in self.rows
            if not (
                self._matches(row, event_id=event_id, payload_hash=payload_hash)
                and row.received_at < cutoff_utc
                and row.status in TERMINAL_STATUSES
            )
        ]
        purged = len(self.rows) - len(keep)
        self.rows = keep
        return purged

    async def try_insert(self, session, *, event_id, event_type, payload_hash, payload, provider_created_at, received_at):
        if any(self._matches(row, event_id=event_id, payload_hash=payload_hash) for row in self.rows):
            return None
        row = SimpleNamespace(
            id=len(self.rows) + 1,
            event_id=event_id,
            event_type=event_type,
            payload_hash=payload_hash,
            payload=payload,
            status="RECEIVED",
            provider_created_at=provider_created_at,
            received_at=received_at,
        )
        self.rows.append(row)
        return row.id

    async def get_first_match(self, session, *, event_id, payload_hash):
        matches = [row for row in self.rows if self._matches(row, event_id=event_id, payload_hash=payload_hash)]
        return matches[0] if matches else None


@pytest.fixture
def gate_env(monkeypatch):
    store = install_fake_store(monkeypatch)
    table = _WebhookTable()
    for name in ("purge_expired_matches", "try_insert", "get_first_match"):
        monkeypatch.setattr(WebhookEventsRepo, name, staticmethod(getattr(table, name)))
    return SimpleNamespace(store=store, table=table, session=FakeSession(store))


def test_payload_hash_is_canonical_and_ignores_envelope_id() -> None:
    reordered = {"object": {"status": "active", "customer": "cus_1", "id": "sub_1"}}

    assert compute_payload_hash("customer.subscription.updated", PAYLOAD) == compute_payload_hash(
        "customer.subscription.updated",
        reordered,
    )
    assert compute_payload_hash("customer.subscription.updated", PAYLOAD) != compute_payload_hash(
        "customer.subscription.created",
        PAYLOAD,
    )


@pytest.mark.asyncio
async def test_first_delivery_is_admitted(gate_env) -> None:
    admission = await WebhookGate.admit(
        gate_env.session,
        event_id="evt_1",
        event_type="customer.subscription.updated",
        payload=PAYLOAD,
        now_utc=NOW,
    )

    assert admission.admitted is True
    assert admission.webhook_event_id == 1
    assert gate_env.store.audit_categories() == []


@pytest.mark.asyncio
async def test_redelivery_with_same_event_id_is_a_replay(gate_env) -> None:
    await WebhookGate.admit(
        gate_env.session,
        event_id="evt_1",
        event_type="customer.subscription.updated",
        payload=PAYLOAD,
        now_utc=NOW,
    )

    admission = await WebhookGate.admit(
        gate_env.session,
        event_id="evt_1",
        event_type="customer.subscription.updated",
        payload=PAYLOAD,
        now_utc=NOW + timedelta(minutes=5),
    )

    assert admission.admitted is False
    assert admission.duplicate_of == NOW
    assert gate_env.store.audit_categories() == ["WEBHOOK_REPLAY"]
    assert gate_env.store.audit_events[0].details["matched_on"] == "event_id"


@pytest.mark.asyncio
async def test_same_content_under_fresh_event_id_is_a_replay(gate_env) -> None:
    await WebhookGate.admit(
        gate_env.session,
        event_id="evt_1",
        event_type="customer.subscription.updated",
        payload=PAYLOAD,
        now_utc=NOW,
    )

    admission = await WebhookGate.admit(
        gate_env.session,
        event_id="evt_2",
        event_type="customer.subscription.updated",
        payload=PAYLOAD,
        now_utc=NOW + timedelta(minutes=1),
    )

    assert admission.admitted is False
    assert gate_env.store.audit_events[0].details["matched_on"] == "payload_hash"
    assert len(gate_env.table.rows) == 1


@pytest.mark.asyncio
async def test_processed_event_outside_window_is_admitted_again(gate_env) -> None:
    await WebhookGate.admit(
        gate_env.session,
        event_id="evt_1",
        event_type="customer.subscription.updated",
        payload=PAYLOAD,
        now_utc=NOW,
    )
    gate_env.table.rows[0].status = "PROCESSED"

    admission = await WebhookGate.admit(
        gate_env.session,
        event_id="evt_1",
        event_type="customer.subscription.updated",
        payload=PAYLOAD,
        now_utc=NOW + timedelta(hours=25),
        dedup_window=timedelta(hours=24),
    )

    assert admission.admitted is True
    assert len(gate_env.table.rows) == 1
