"""HTTP surface: auth, CSRF, error mapping and the main workflow routes."""
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from careflow.core.config import settings
from careflow.db.enums import AuditAction, CarePlanStatus, InterpreterReviewMode, Role
from careflow.db.models import AuditLog
from careflow.services import check_in_service

from helpers import (
    SOURCE_TEXT,
    FakeTextProcessor,
    auth_cookies,
    make_plan,
    make_sent_plan,
    make_tenant,
    make_user,
)


PATIENT_JSON = {"name": "Maria", "last_name": "Lopez", "email": "maria@example.com"}


# =============================================================================
# Auth & CSRF
# =============================================================================

async def test_requires_session(client):
    response = await client.get("/care-plans")
    assert response.status_code == 401


async def test_invalid_cookie(client):
    client.cookies.set("careflow_session", "garbage")
    response = await client.get("/care-plans")
    assert response.status_code == 401


async def test_revoked_session(client, db, clinician):
    cookies = auth_cookies(clinician)
    clinician.token_version += 1
    db.commit()
    for name, value in cookies.items():
        client.cookies.set(name, value)

    response = await client.get("/care-plans")

    assert response.status_code == 401
    assert response.json()["detail"] == "Session revoked"


async def test_mutations_require_csrf_header(client, clinician):
    for name, value in auth_cookies(clinician).items():
        client.cookies.set(name, value)

    response = await client.post(
        "/care-plans", json={"source_file_name": "d.pdf", "source_text": SOURCE_TEXT}
    )

    assert response.status_code == 403
    assert "CSRF" in response.json()["detail"]


async def test_me(client_for, clinician, tenant):
    response = await client_for(clinician).get("/auth/me")

    assert response.status_code == 200
    data = response.json()
    assert data["role"] == "clinician"
    assert data["tenant_id"] == str(tenant.id)
    assert data["tenant_name"] == "Riverside Clinic"


async def test_logout_clears_cookie(client_for, clinician):
    response = await client_for(clinician).post("/auth/logout")

    assert response.status_code == 200
    assert "careflow_session" in response.headers.get("set-cookie", "")


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# =============================================================================
# Workflow
# =============================================================================

async def test_upload_process_approve_send(client_for, clinician, interpreter, notifier):
    api = client_for(clinician)

    response = await api.post(
        "/care-plans", json={"source_file_name": "discharge.pdf", "source_text": SOURCE_TEXT}
    )
    assert response.status_code == 201
    plan_id = response.json()["id"]
    assert response.json()["status"] == "draft"
    assert response.json()["billing_eligibility"] == "not_sent"

    response = await api.post(f"/care-plans/{plan_id}/process", json={"target_language": "es"})
    assert response.status_code == 200
    assert response.json()["status"] == "pending_review"
    assert response.json()["back_translated_diagnosis"] == "Lung infection"

    response = await api.post(f"/care-plans/{plan_id}/approve", json={})
    assert response.json()["status"] == "interpreter_review"

    api = client_for(interpreter)
    response = await api.get("/interpreter/queue")
    assert [p["id"] for p in response.json()] == [plan_id]

    response = await api.post(
        f"/interpreter/care-plans/{plan_id}/approve",
        json={"edits": {"translated_warnings": "Llame al 911"}},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "interpreter_approved"
    assert response.json()["translated_warnings"] == "Llame al 911"

    api = client_for(clinician)
    response = await api.post(f"/care-plans/{plan_id}/approve")
    assert response.json()["status"] == "approved"

    response = await api.post(f"/care-plans/{plan_id}/send", json=PATIENT_JSON)
    assert response.status_code == 200
    body = response.json()
    assert body["notified"] is True
    assert body["care_plan"]["status"] == "sent"
    assert body["care_plan"]["billing_eligibility"] == "pending_contact"
    assert len(notifier.care_plans) == 1

    response = await api.get(f"/care-plans/{plan_id}/audit")
    assert [e["action"] for e in response.json()] == [
        "uploaded",
        "processed",
        "sent_to_interpreter",
        "interpreter_approved",
        "approved",
        "sent",
    ]


async def test_process_upstream_failure_is_502(client_for, db, tenant, clinician, processor):
    processor.fail_on = "translate"
    plan = make_plan(db, tenant, clinician)

    response = await client_for(clinician).post(
        f"/care-plans/{plan.id}/process", json={"target_language": "es"}
    )

    assert response.status_code == 502
    db.refresh(plan)
    assert plan.status == CarePlanStatus.DRAFT.value


async def test_wrong_state_is_409(client_for, db, tenant, clinician):
    plan = make_plan(db, tenant, clinician)

    response = await client_for(clinician).post(f"/care-plans/{plan.id}/approve")

    assert response.status_code == 409
    assert response.json()["error"] == "InvalidTransition"


async def test_role_cannot_transition_is_409(client_for, db, tenant, clinician, admin):
    plan = make_plan(db, tenant, clinician, status=CarePlanStatus.PENDING_REVIEW)

    response = await client_for(admin).post(f"/care-plans/{plan.id}/approve")

    assert response.status_code == 409


async def test_missing_justification_is_422(client_for, db):
    tenant = make_tenant(db, InterpreterReviewMode.OPTIONAL)
    clinician = make_user(db, tenant, Role.CLINICIAN)
    plan = make_plan(db, tenant, clinician, status=CarePlanStatus.PENDING_REVIEW)

    response = await client_for(clinician).post(
        f"/care-plans/{plan.id}/approve", json={"skip_interpreter_review": True}
    )

    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"


async def test_other_tenant_is_403(client_for, db, tenant, clinician):
    other = make_tenant(db, name="Lakeside Clinic")
    outsider = make_user(db, other, Role.ADMIN)
    plan = make_plan(db, tenant, clinician)

    response = await client_for(outsider).get(f"/care-plans/{plan.id}")

    assert response.status_code == 403


async def test_missing_plan_is_404(client_for, clinician):
    response = await client_for(clinician).get(f"/care-plans/{uuid.uuid4()}")
    assert response.status_code == 404


async def test_send_with_failed_notification_still_sends(client_for, db, tenant, clinician, notifier):
    notifier.fail = True
    plan = make_plan(db, tenant, clinician, status=CarePlanStatus.APPROVED)

    response = await client_for(clinician).post(f"/care-plans/{plan.id}/send", json=PATIENT_JSON)

    assert response.status_code == 200
    assert response.json()["notified"] is False
    assert response.json()["care_plan"]["status"] == "sent"


async def test_send_rejects_bad_email(client_for, db, tenant, clinician):
    plan = make_plan(db, tenant, clinician, status=CarePlanStatus.APPROVED)

    response = await client_for(clinician).post(
        f"/care-plans/{plan.id}/send", json={"name": "Maria", "email": "not-an-email"}
    )

    assert response.status_code == 422


async def test_request_changes_route(client_for, db, tenant, clinician, interpreter):
    plan = make_plan(db, tenant, clinician, status=CarePlanStatus.INTERPRETER_REVIEW)

    response = await client_for(interpreter).post(
        f"/interpreter/care-plans/{plan.id}/request-changes",
        json={"reason": "Dosage wording is unclear"},
    )

    assert response.status_code == 200
    assert response.json()["status"] == "pending_review"
    assert response.json()["changes_requested"] is True


async def test_delete_routes(client_for, db, tenant, clinician):
    draft = make_plan(db, tenant, clinician)
    sent = make_plan(db, tenant, clinician, status=CarePlanStatus.SENT)
    api = client_for(clinician)

    assert (await api.delete(f"/care-plans/{draft.id}")).status_code == 204
    assert (await api.get(f"/care-plans/{draft.id}")).status_code == 404
    assert (await api.delete(f"/care-plans/{sent.id}")).status_code == 409


async def test_list_filters_by_status(client_for, db, tenant, clinician):
    make_plan(db, tenant, clinician)
    pending = make_plan(db, tenant, clinician, status=CarePlanStatus.PENDING_REVIEW)

    response = await client_for(clinician).get("/care-plans", params={"status": "pending_review"})

    assert [p["id"] for p in response.json()] == [str(pending.id)]


# =============================================================================
# Patient portal
# =============================================================================

async def test_portal_view_hides_reviewer_fields(client, db, tenant, clinician):
    plan, _, _, token = make_sent_plan(db, tenant, clinician)

    response = await client.get(f"/patient/{token}")

    assert response.status_code == 200
    body = response.json()
    assert body["care_plan_id"] == str(plan.id)
    assert body["patient_name"] == "Maria Lopez"
    assert body["translated_diagnosis"] == "Infección pulmonar"
    assert "back_translated_diagnosis" not in body
    assert "interpreter_notes" not in body
    assert len(body["check_ins"]) == 1

    actions = db.execute(
        select(AuditLog.action).where(AuditLog.care_plan_id == plan.id)
    ).scalars().all()
    assert AuditAction.VIEWED.value in actions


async def test_portal_unknown_and_expired_look_the_same(client, db, tenant, clinician):
    plan, _, _, token = make_sent_plan(db, tenant, clinician)
    plan.access_token_expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    db.commit()

    expired = await client.get(f"/patient/{token}")
    unknown = await client.get(f"/patient/{'0' * 64}")

    assert expired.status_code == unknown.status_code == 404
    assert expired.json() == unknown.json()


async def test_portal_lockout_is_per_forwarded_client(client, db, tenant, clinician, monkeypatch):
    monkeypatch.setattr(settings, "TRUST_PROXY_HEADERS", True)
    _, _, _, token = make_sent_plan(db, tenant, clinician)
    attacker = {"X-Forwarded-For": "203.0.113.5, 10.0.0.2"}
    patient = {"X-Forwarded-For": "198.51.100.7, 10.0.0.2"}

    for _ in range(3):
        response = await client.get(f"/patient/{'0' * 64}", headers=attacker)
        assert response.status_code == 404

    locked = await client.get(f"/patient/{token}", headers=attacker)
    allowed = await client.get(f"/patient/{token}", headers=patient)

    assert locked.status_code == 404
    assert allowed.status_code == 200


async def test_portal_check_in_and_duplicate(client, db, tenant, clinician):
    _, _, check_in, token = make_sent_plan(db, tenant, clinician)

    response = await client.post(
        f"/patient/{token}/check-in", json={"response": "yellow", "notes": "Some dizziness"}
    )
    assert response.status_code == 200
    assert response.json()["id"] == str(check_in.id)
    assert response.json()["alert_created"] is True

    response = await client.post(
        f"/patient/{token}/check-in",
        json={"response": "green", "check_in_id": str(check_in.id)},
    )
    assert response.status_code == 409
    assert response.json()["error"] == "AlreadyResponded"


async def test_portal_rejects_unknown_response(client, db, tenant, clinician):
    _, _, _, token = make_sent_plan(db, tenant, clinician)

    response = await client.post(f"/patient/{token}/check-in", json={"response": "purple"})

    assert response.status_code == 422


# =============================================================================
# Follow-up
# =============================================================================

async def test_alert_resolution_is_idempotent(client_for, db, tenant, clinician, admin):
    _, _, check_in, token = make_sent_plan(db, tenant, clinician)
    check_in_service.record_response(db, token, "red")
    api = client_for(admin)

    alerts = (await api.get("/alerts")).json()
    assert [a["id"] for a in alerts] == [str(check_in.id)]
    assert alerts[0]["resolved"] is False

    first = await api.post(f"/alerts/{check_in.id}/resolve")
    second = await api.post(f"/alerts/{check_in.id}/resolve")

    assert first.status_code == second.status_code == 200
    assert first.json()["resolved"] is True
    assert first.json()["resolved_at"] == second.json()["resolved_at"]
    assert (await api.get("/alerts", params={"include_resolved": False})).json() == []


async def test_schedule_check_in_route(client_for, db, tenant, clinician):
    plan, patient, _, _ = make_sent_plan(db, tenant, clinician)
    when = (datetime.now(timezone.utc) + timedelta(days=7)).isoformat()

    response = await client_for(clinician).post(
        "/check-ins",
        json={
            "care_plan_id": str(plan.id),
            "patient_id": str(patient.id),
            "attempt_number": 2,
            "scheduled_for": when,
        },
    )

    assert response.status_code == 201
    assert response.json()["attempt_number"] == 2


async def test_billing_export(client_for, db, tenant, clinician, admin):
    make_sent_plan(db, tenant, clinician)

    response = await client_for(admin).get("/admin/exports/billing")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "attachment" in response.headers["content-disposition"]
    assert response.text.splitlines()[0].startswith("patient_name,sent_date")
    exported = db.execute(
        select(AuditLog).where(AuditLog.action == AuditAction.DATA_EXPORTED.value)
    ).scalars().all()
    assert len(exported) == 1
    assert exported[0].care_plan_id is None


async def test_clinician_cannot_export(client_for, clinician):
    response = await client_for(clinician).get("/admin/exports/billing")
    assert response.status_code == 403


async def test_analytics_route(client_for, db, tenant, clinician):
    make_sent_plan(db, tenant, clinician)

    response = await client_for(clinician).get("/analytics")

    assert response.status_code == 200
    assert response.json()["tcm"]["pending_contact"] == 1


async def test_tenant_settings(client_for, db, tenant, admin, clinician):
    api = client_for(admin)
    response = await api.patch(
        "/tenant/settings", json={"interpreter_review_mode": "optional", "contact_phone": "+15550199"}
    )

    assert response.status_code == 200
    assert response.json()["interpreter_review_mode"] == "optional"
    entry = db.execute(
        select(AuditLog).where(AuditLog.action == AuditAction.TENANT_SETTINGS_UPDATED.value)
    ).scalar_one()
    assert entry.details["changes"]["interpreter_review_mode"] == {
        "from": "required",
        "to": "optional",
    }

    response = await client_for(clinician).patch(
        "/tenant/settings", json={"interpreter_review_mode": "disabled"}
    )
    assert response.status_code == 403
