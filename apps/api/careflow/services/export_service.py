"""TCM billing export (CSV).

Cells that a spreadsheet would evaluate as a formula are prefixed with a
quote (CSV injection).
"""

from __future__ import annotations

import csv
import io
import json
from datetime import datetime
from typing import Any, Iterable, Iterator, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from careflow.core.permissions import Action
from careflow.db.enums import AuditAction
from careflow.db.models import AuditLog, Patient, User
from careflow.schemas.auth import UserSession
from careflow.services import analytics_service, billing_service, tenant_scope
from careflow.services.check_in_service import patient_display_name

CSV_DANGEROUS_PREFIXES = ("=", "+", "-", "@", "\t", "\r")

EXPORT_HEADERS = [
    "patient_name",
    "sent_date",
    "diagnosis",
    "approved_by",
    "approved_at",
    "sent_at",
    "first_contact_at",
    "response_at",
    "response_type",
    "audit_log_id",
    "suggested_cpt_code",
]


def _csv_safe(value: str) -> str:
    if value and value.startswith(CSV_DANGEROUS_PREFIXES):
        return f"'{value}"
    return value


def _serialize_csv_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)


def _write_csv_row(values: Sequence[Any]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([_csv_safe(_serialize_csv_value(value)) for value in values])
    return output.getvalue()


def build_rows(db: Session, tenant_id: UUID | None) -> Iterable[list[Any]]:
    """One row per delivered care plan."""
    pairs = analytics_service.delivered_plans_with_eligibility(db, tenant_id)
    plan_ids = [plan.id for plan, _ in pairs]
    tz = billing_service.reporting_timezone()

    sent_entries: dict[UUID, AuditLog] = {}
    if plan_ids:
        for entry in db.execute(
            select(AuditLog)
            .where(AuditLog.care_plan_id.in_(plan_ids), AuditLog.action == AuditAction.SENT.value)
            .order_by(AuditLog.created_at, AuditLog.id)
        ).scalars():
            sent_entries.setdefault(entry.care_plan_id, entry)

    for plan, eligibility in pairs:
        patient = db.get(Patient, plan.patient_id) if plan.patient_id else None
        approver = db.get(User, plan.approved_by_id) if plan.approved_by_id else None
        answered = sorted(
            (ci for ci in plan.check_ins if ci.responded_at is not None),
            key=lambda ci: ci.responded_at,
        )
        first_answer = answered[0] if answered else None
        first_contact = min(
            (ci.sent_at for ci in plan.check_ins if ci.sent_at is not None), default=None
        )
        sent_entry = sent_entries.get(plan.id)

        yield [
            patient_display_name(patient) if patient else "",
            billing_service.calendar_date(plan.sent_at, tz).isoformat() if plan.sent_at else "",
            (plan.diagnosis or "").replace("\n", " "),
            approver.display_name if approver else "",
            plan.approved_at,
            plan.sent_at,
            first_contact,
            first_answer.responded_at if first_answer else None,
            first_answer.response if first_answer else "",
            sent_entry.id if sent_entry else "",
            billing_service.eligibility_label(eligibility),
        ]


def stream_billing_csv(
    db: Session,
    session: UserSession,
    tenant_id: UUID | None = None,
) -> Iterator[str]:
    """Authorize, then yield the CSV line by line."""
    tenant_scope.require_permission(session, Action.EXPORT_DATA)
    scope = tenant_scope.effective_tenant_id(session, tenant_id)
    rows = list(build_rows(db, scope))

    def generate() -> Iterator[str]:
        yield _write_csv_row(EXPORT_HEADERS)
        for row in rows:
            yield _write_csv_row(row)

    return generate()
