"""Patient check-ins and the alerts they raise.

A check-in is answered at most once (first response wins, enforced with a
conditional UPDATE). Yellow/red answers raise an alert that staff resolve;
resolving is idempotent and never moves alert_resolved_at.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

import httpx
from fastapi import Request
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from careflow.core.errors import (
    AlreadyResponded,
    InvalidTransition,
    NotFound,
    UpstreamFailure,
    ValidationError,
)
from careflow.core.permissions import Action
from careflow.core.structured_logging import build_log_context
from careflow.db.enums import (
    ALERT_RESPONSES,
    DELIVERED_STATUSES,
    AuditAction,
    CarePlanStatus,
    CheckInResponse,
)
from careflow.db.models import CarePlan, CheckIn, Patient
from careflow.db.types import utcnow
from careflow.schemas.auth import UserSession
from careflow.services import access_token_service, audit_service, tenant_scope
from careflow.services.notification_service import Notifier

logger = logging.getLogger(__name__)


@dataclass
class AlertView:
    """A yellow/red check-in with the patient it belongs to."""

    check_in: CheckIn
    patient_name: str

    @property
    def resolved(self) -> bool:
        return self.check_in.alert_resolved


# =============================================================================
# Scheduling
# =============================================================================


def _next_attempt_number(db: Session, care_plan_id: UUID) -> int:
    highest = db.execute(
        select(func.max(CheckIn.attempt_number)).where(CheckIn.care_plan_id == care_plan_id)
    ).scalar_one_or_none()
    return (highest or 0) + 1


def schedule(
    db: Session,
    session: UserSession,
    care_plan_id: UUID,
    patient_id: UUID,
    attempt_number: int,
    scheduled_for: datetime,
    request: Request | None = None,
) -> CheckIn:
    """
    Add the next check-in attempt for a delivered plan.

    attempt_number must be exactly one past the highest existing attempt;
    the (plan, attempt) unique constraint rejects a concurrent duplicate.
    """
    plan = db.get(CarePlan, care_plan_id)
    if plan is None:
        raise NotFound("Care plan not found")
    tenant_scope.authorize(session, Action.SCHEDULE_CHECK_IN, plan.tenant_id)

    if CarePlanStatus(plan.status) not in DELIVERED_STATUSES:
        raise InvalidTransition("Check-ins can only be scheduled for sent care plans")
    if plan.patient_id != patient_id:
        raise ValidationError("Patient does not belong to this care plan")

    expected = _next_attempt_number(db, plan.id)
    if attempt_number != expected:
        raise ValidationError(f"Next check-in attempt must be {expected}")

    check_in = CheckIn(
        care_plan_id=plan.id,
        patient_id=patient_id,
        tenant_id=plan.tenant_id,
        attempt_number=attempt_number,
        scheduled_for=scheduled_for,
    )
    db.add(check_in)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ValidationError(f"Check-in attempt {attempt_number} already exists")

    audit_service.log_event(
        db,
        tenant_id=plan.tenant_id,
        action=AuditAction.CHECK_IN_SCHEDULED,
        care_plan_id=plan.id,
        actor_user_id=session.user_id,
        details={"attempt_number": attempt_number, "scheduled_for": scheduled_for.isoformat()},
        request=request,
    )
    db.commit()
    db.refresh(check_in)
    return check_in


# =============================================================================
# Patient responses
# =============================================================================


def _parse_response(response: str) -> CheckInResponse:
    try:
        return CheckInResponse(response)
    except ValueError:
        raise ValidationError("Response must be one of: green, yellow, red")


def _select_target(check_ins: list[CheckIn], now: datetime) -> CheckIn:
    """Earliest unanswered due check-in, else earliest unanswered one."""
    if not check_ins:
        raise NotFound("No check-in found for this care plan")
    open_check_ins = [ci for ci in check_ins if ci.response is None]
    if not open_check_ins:
        raise AlreadyResponded()
    due = [ci for ci in open_check_ins if ci.scheduled_for <= now]
    pool = due or open_check_ins
    return min(pool, key=lambda ci: (ci.scheduled_for, ci.attempt_number))


def _write_response(
    db: Session,
    plan: CarePlan,
    check_in: CheckIn,
    response: CheckInResponse,
    notes: str | None,
    now: datetime,
    request: Request | None,
) -> CheckIn:
    raises_alert = response in ALERT_RESPONSES
    result = db.execute(
        update(CheckIn)
        .where(CheckIn.id == check_in.id, CheckIn.response.is_(None))
        .values(
            response=response.value,
            responded_at=now,
            response_notes=(notes or "").strip() or None,
            alert_created=raises_alert,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise AlreadyResponded()

    audit_service.log_event(
        db,
        tenant_id=plan.tenant_id,
        action=AuditAction.CHECK_IN_RESPONDED,
        care_plan_id=plan.id,
        details={
            "check_in_id": str(check_in.id),
            "response": response.value,
            "attempt_number": check_in.attempt_number,
            "alert_created": raises_alert,
        },
        request=request,
    )
    db.commit()
    db.refresh(check_in)
    if raises_alert:
        logger.info(
            f"Check-in alert raised ({response.value})",
            extra=build_log_context(tenant_id=plan.tenant_id, check_in_id=check_in.id),
        )
    return check_in


def record_response(
    db: Session,
    token: str,
    response: str,
    notes: str | None = None,
    client_key: str | None = None,
    now: datetime | None = None,
    request: Request | None = None,
) -> CheckIn:
    """Patient answers their current check-in through the magic link."""
    now = now or utcnow()
    plan = access_token_service.validate(db, token, client_key=client_key, now=now)
    parsed = _parse_response(response)
    target = _select_target(list(plan.check_ins), now)
    return _write_response(db, plan, target, parsed, notes, now, request)


def record_response_for(
    db: Session,
    token: str,
    check_in_id: UUID,
    response: str,
    notes: str | None = None,
    client_key: str | None = None,
    now: datetime | None = None,
    request: Request | None = None,
) -> CheckIn:
    """Patient answers one specific check-in of their plan."""
    now = now or utcnow()
    plan = access_token_service.validate(db, token, client_key=client_key, now=now)
    parsed = _parse_response(response)
    check_in = db.get(CheckIn, check_in_id)
    if check_in is None or check_in.care_plan_id != plan.id:
        raise NotFound("Check-in not found")
    if check_in.response is not None:
        raise AlreadyResponded()
    return _write_response(db, plan, check_in, parsed, notes, now, request)


# =============================================================================
# Alerts
# =============================================================================


def resolve_alert(
    db: Session,
    session: UserSession,
    check_in_id: UUID,
    now: datetime | None = None,
    request: Request | None = None,
) -> CheckIn:
    """
    Mark an alert resolved.

    Already resolved: returns the check-in unchanged (no audit, no new timestamp).
    """
    check_in = db.get(CheckIn, check_in_id)
    if check_in is None:
        raise NotFound("Check-in not found")
    tenant_scope.authorize(session, Action.RESOLVE_ALERT, check_in.tenant_id)
    if not check_in.alert_created:
        raise InvalidTransition("This check-in has no alert")

    now = now or utcnow()
    result = db.execute(
        update(CheckIn)
        .where(CheckIn.id == check_in.id, CheckIn.alert_resolved_at.is_(None))
        .values(alert_resolved_at=now, alert_resolved_by_id=session.user_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        db.refresh(check_in)
        return check_in

    audit_service.log_event(
        db,
        tenant_id=check_in.tenant_id,
        action=AuditAction.ALERT_RESOLVED,
        care_plan_id=check_in.care_plan_id,
        actor_user_id=session.user_id,
        details={"check_in_id": str(check_in.id), "response": check_in.response},
        request=request,
    )
    db.commit()
    db.refresh(check_in)
    return check_in


def list_alerts(
    db: Session,
    session: UserSession,
    include_resolved: bool = True,
    tenant_id: UUID | None = None,
) -> list[AlertView]:
    """Tenant's yellow/red check-ins, newest response first."""
    tenant_scope.require_permission(session, Action.VIEW_ALERTS)
    query = (
        tenant_scope.scoped(select(CheckIn), CheckIn, session, tenant_id)
        .options(joinedload(CheckIn.patient))
        .where(CheckIn.alert_created.is_(True))
    )
    if not include_resolved:
        query = query.where(CheckIn.alert_resolved_at.is_(None))
    query = query.order_by(CheckIn.responded_at.desc())

    alerts = []
    for check_in in db.execute(query).scalars().all():
        alerts.append(
            AlertView(check_in=check_in, patient_name=patient_display_name(check_in.patient))
        )
    return alerts


# =============================================================================
# Dispatch (scheduled)
# =============================================================================


def get_due_check_ins(db: Session, now: datetime) -> list[CheckIn]:
    """Unsent, unanswered, due check-ins of sent plans whose link is still valid."""
    return list(
        db.execute(
            select(CheckIn)
            .join(CarePlan, CarePlan.id == CheckIn.care_plan_id)
            .options(joinedload(CheckIn.patient), joinedload(CheckIn.care_plan))
            .where(
                CheckIn.responded_at.is_(None),
                CheckIn.sent_at.is_(None),
                CheckIn.scheduled_for <= now,
                CarePlan.status == CarePlanStatus.SENT.value,
                CarePlan.access_token.is_not(None),
                CarePlan.access_token_expires_at > now,
            )
            .order_by(CheckIn.scheduled_for)
        ).scalars().all()
    )


async def dispatch_due_check_ins(
    db: Session,
    notifier: Notifier,
    now: datetime | None = None,
) -> int:
    """
    Send every due check-in notification and stamp sent_at.

    Failed deliveries stay unsent and are picked up by the next run.
    Returns the number sent.
    """
    now = now or utcnow()
    sent = 0
    for check_in in get_due_check_ins(db, now):
        plan = check_in.care_plan
        link = access_token_service.build_patient_link(plan.access_token)
        try:
            delivery = await notifier.send_check_in(
                check_in.patient, link, check_in.attempt_number
            )
        except (UpstreamFailure, httpx.HTTPError) as e:
            logger.warning(
                f"Check-in notification failed: {e.__class__.__name__}",
                extra=build_log_context(tenant_id=plan.tenant_id, check_in_id=check_in.id),
            )
            continue
        if not delivery.delivered:
            logger.warning(
                f"Check-in notification not delivered: {delivery.error}",
                extra=build_log_context(tenant_id=plan.tenant_id, check_in_id=check_in.id),
            )
            continue

        result = db.execute(
            update(CheckIn)
            .where(CheckIn.id == check_in.id, CheckIn.sent_at.is_(None))
            .values(sent_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            continue
        audit_service.log_event(
            db,
            tenant_id=plan.tenant_id,
            action=AuditAction.CHECK_IN_SENT,
            care_plan_id=plan.id,
            details={
                "check_in_id": str(check_in.id),
                "attempt_number": check_in.attempt_number,
                "sms_sent": delivery.sms_sent,
            },
        )
        db.commit()
        sent += 1

    logger.info(f"Check-in dispatch finished: {sent} sent")
    return sent


def patient_display_name(patient: Patient | None) -> str:
    if patient is None:
        return "Unknown"
    return " ".join(p for p in (patient.name, patient.last_name) if p)
