"""Cron-triggered endpoints under /internal/scheduled."""
from datetime import datetime, timedelta, timezone

import pytest

from careflow.core.config import settings
from careflow.db.enums import CarePlanStatus
from careflow.services import check_in_service

from helpers import make_sent_plan


@pytest.fixture
def internal_secret(monkeypatch):
    monkeypatch.setattr(settings, "INTERNAL_SECRET", "secret")
    return {"X-Internal-Secret": "secret"}


async def test_missing_header_is_rejected(client, internal_secret):
    response = await client.post("/internal/scheduled/complete")
    assert response.status_code == 422


async def test_unconfigured_secret_is_501(client, monkeypatch):
    monkeypatch.setattr(settings, "INTERNAL_SECRET", "")

    response = await client.post(
        "/internal/scheduled/complete", headers={"X-Internal-Secret": "anything"}
    )

    assert response.status_code == 501


async def test_wrong_secret_is_403(client, internal_secret):
    response = await client.post(
        "/internal/scheduled/complete", headers={"X-Internal-Secret": "nope"}
    )
    assert response.status_code == 403


async def test_dispatch_sends_due_check_ins(client, db, tenant, clinician, notifier, internal_secret):
    make_sent_plan(db, tenant, clinician, sent_at=datetime.now(timezone.utc) - timedelta(days=2))
    make_sent_plan(db, tenant, clinician, email="later@example.com")

    response = await client.post("/internal/scheduled/check-ins", headers=internal_secret)

    assert response.status_code == 200
    assert response.json() == {"sent": 1}
    assert [email for email, _, _ in notifier.check_ins] == ["maria@example.com"]

    response = await client.post("/internal/scheduled/check-ins", headers=internal_secret)
    assert response.json() == {"sent": 0}


async def test_completion_sweep(client, db, tenant, clinician, internal_secret, monkeypatch):
    monkeypatch.setattr(settings, "COMPLETION_POLICY", "check_in_response")
    answered, _, _, token = make_sent_plan(db, tenant, clinician)
    waiting, _, _, _ = make_sent_plan(db, tenant, clinician, email="other@example.com")
    check_in_service.record_response(db, token, "green")

    response = await client.post("/internal/scheduled/complete", headers=internal_secret)

    assert response.status_code == 200
    assert response.json() == {"completed": 1}
    db.refresh(answered)
    db.refresh(waiting)
    assert answered.status == CarePlanStatus.COMPLETED.value
    assert waiting.status == CarePlanStatus.SENT.value
