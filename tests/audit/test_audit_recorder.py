from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from tests.fakes import FakeSession, FakeStore, install_fake_store
from trialgate.audit import recorder as recorder_module
from trialgate.audit.recorder import AuditRecorder
from trialgate.audit.threats import AuditCategory
from trialgate.db.repo.audit_events_repo import AuditEventsRepo

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_record_writes_row_in_callers_session(monkeypatch) -> None:
    store = install_fake_store(monkeypatch)
    account_id = uuid4()

    await AuditRecorder.record(
        FakeSession(store),
        category=AuditCategory.SIGNUP,
        now_utc=NOW,
        account_id=account_id,
        identity_key="ab@gmail.com",
        details={"source": "test"},
    )

    assert len(store.audit_events) == 1
    event = store.audit_events[0]
    assert event.category == "SIGNUP"
    assert event.account_id == account_id
    assert event.details == {"source": "test"}
    assert event.created_at == NOW


@pytest.mark.asyncio
async def test_record_swallows_database_errors(monkeypatch) -> None:
    store = install_fake_store(monkeypatch)

    async def _failing_create(session, **kwargs):
        raise OperationalError("INSERT", {}, Exception("db down"))

    monkeypatch.setattr(AuditEventsRepo, "create", _failing_create)

    await AuditRecorder.record(
        FakeSession(store),
        category=AuditCategory.WEBHOOK_REPLAY,
        now_utc=NOW,
    )

    assert store.audit_events == []


@pytest.mark.asyncio
async def test_record_detached_commits_in_its_own_transaction(monkeypatch) -> None:
    store = install_fake_store(monkeypatch)

    await AuditRecorder.record_detached(
        category=AuditCategory.LOCK_CONTENDED,
        now_utc=NOW,
        details={"lock_key": "account:x"},
    )

    assert store.audit_categories() == ["LOCK_CONTENDED"]
    assert store.commits == 1


def test_log_only_never_touches_the_database(monkeypatch) -> None:
    store = FakeStore()
    logged: list[dict[str, object]] = []

    class _Logger:
        def info(self, event: str, **kwargs: object) -> None:
            logged.append({"event": event, **kwargs})

        warning = info

    monkeypatch.setattr(recorder_module, "logger", _Logger())

    AuditRecorder.log_only(
        category=AuditCategory.ACCESS_DECISION,
        details={"has_access": True},
    )

    assert store.audit_events == []
    assert logged[0]["event"] == "audit_event"
    assert logged[0]["category"] == "ACCESS_DECISION"
    assert logged[0]["threat_level"] == "low"
