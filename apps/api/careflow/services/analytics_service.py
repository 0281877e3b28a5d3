"""Tenant dashboard analytics: workflow counts, check-in response, TCM eligibility."""

import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from careflow.core.permissions import Action
from careflow.db.enums import (
    DELIVERED_STATUSES,
    ENGLISH,
    AuditAction,
    BillingEligibility,
    CarePlanStatus,
    CheckInResponse,
)
from careflow.db.models import AuditLog, CarePlan, CheckIn
from careflow.schemas.auth import UserSession
from careflow.services import billing_service, tenant_scope


def sent_timestamps(db: Session, plan_ids: list[uuid.UUID]) -> dict[uuid.UUID, Any]:
    """care_plan_id -> earliest `sent` audit timestamp, one query."""
    if not plan_ids:
        return {}
    rows = db.execute(
        select(AuditLog.care_plan_id, func.min(AuditLog.created_at))
        .where(
            AuditLog.care_plan_id.in_(plan_ids),
            AuditLog.action == AuditAction.SENT.value,
        )
        .group_by(AuditLog.care_plan_id)
    ).all()
    return {plan_id: sent_at for plan_id, sent_at in rows}


def delivered_plans_with_eligibility(
    db: Session, tenant_id: uuid.UUID | None
) -> list[tuple[CarePlan, BillingEligibility]]:
    """Sent/completed plans (check-ins loaded) paired with their eligibility."""
    query = (
        select(CarePlan)
        .options(selectinload(CarePlan.check_ins))
        .where(CarePlan.status.in_([s.value for s in DELIVERED_STATUSES]))
        .order_by(CarePlan.sent_at)
    )
    if tenant_id is not None:
        query = query.where(CarePlan.tenant_id == tenant_id)
    plans = list(db.execute(query).scalars().all())

    sent_at_by_plan = sent_timestamps(db, [p.id for p in plans])
    tz = billing_service.reporting_timezone()
    return [
        (
            plan,
            billing_service.compute_eligibility(
                plan.status,
                sent_at_by_plan.get(plan.id) or plan.sent_at,
                (ci.responded_at for ci in plan.check_ins),
                tz,
            ),
        )
        for plan in plans
    ]


def get_status_counts(db: Session, tenant_id: uuid.UUID | None) -> dict[str, int]:
    query = select(CarePlan.status, func.count(CarePlan.id)).group_by(CarePlan.status)
    if tenant_id is not None:
        query = query.where(CarePlan.tenant_id == tenant_id)
    counts = {status.value: 0 for status in CarePlanStatus}
    for status, count in db.execute(query).all():
        counts[status] = count
    return counts


def get_check_in_summary(db: Session, tenant_id: uuid.UUID | None) -> dict[str, Any]:
    query = select(CheckIn.response, func.count(CheckIn.id)).group_by(CheckIn.response)
    if tenant_id is not None:
        query = query.where(CheckIn.tenant_id == tenant_id)
    by_response = {response: count for response, count in db.execute(query).all()}

    total = sum(by_response.values())
    responded = total - by_response.get(None, 0)
    return {
        "total": total,
        "responded": responded,
        "response_rate": round(responded / total * 100) if total else 0,
        "green": by_response.get(CheckInResponse.GREEN.value, 0),
        "yellow": by_response.get(CheckInResponse.YELLOW.value, 0),
        "red": by_response.get(CheckInResponse.RED.value, 0),
    }


def get_analytics(
    db: Session,
    session: UserSession,
    tenant_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    """Dashboard payload for one tenant (super_admin: optionally all)."""
    tenant_scope.require_permission(session, Action.VIEW_ANALYTICS)
    scope = tenant_scope.effective_tenant_id(session, tenant_id)

    status_counts = get_status_counts(db, scope)
    delivered = status_counts[CarePlanStatus.SENT.value] + status_counts[CarePlanStatus.COMPLETED.value]

    base = select(func.count(CarePlan.id))
    if scope is not None:
        base = base.where(CarePlan.tenant_id == scope)
    uploaded = db.execute(base).scalar_one()
    simplified = db.execute(base.where(CarePlan.simplified_diagnosis.is_not(None))).scalar_one()
    translated = db.execute(
        base.where(
            CarePlan.translated_language.is_not(None),
            CarePlan.translated_language != ENGLISH,
        )
    ).scalar_one()

    eligibility_counts = {e: 0 for e in BillingEligibility}
    for _, eligibility in delivered_plans_with_eligibility(db, scope):
        eligibility_counts[eligibility] += 1

    return {
        "status_counts": status_counts,
        "pipeline": {
            "uploaded": uploaded,
            "simplified": simplified,
            "translated": translated,
            "sent_to_patient": delivered,
        },
        "check_ins": get_check_in_summary(db, scope),
        "tcm": {
            "total_patients_sent": delivered,
            "eligible_99495": eligibility_counts[BillingEligibility.CPT_99495],
            "eligible_99496": eligibility_counts[BillingEligibility.CPT_99496],
            "pending_contact": eligibility_counts[BillingEligibility.PENDING_CONTACT],
            "not_eligible": eligibility_counts[BillingEligibility.NOT_ELIGIBLE],
        },
    }
