"""
Patient portal - magic-link access, no staff session.

Every token failure (unknown, expired, deleted plan, throttled) answers with
the same 404 body.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from careflow.core.deps import get_db
from careflow.core.rate_limit import PUBLIC_LIMIT, limiter
from careflow.db.enums import AuditAction
from careflow.db.models import CarePlan
from careflow.schemas.check_ins import CheckInRead, CheckInRespond, PatientPortalView
from careflow.services import access_token_service, audit_service, check_in_service

router = APIRouter(prefix="/patient", tags=["patient-portal"])


def _portal_view(plan: CarePlan) -> PatientPortalView:
    return PatientPortalView(
        care_plan_id=plan.id,
        status=plan.status,
        patient_name=check_in_service.patient_display_name(plan.patient) if plan.patient else None,
        language=plan.translated_language,
        simplified_diagnosis=plan.simplified_diagnosis,
        simplified_instructions=plan.simplified_instructions,
        simplified_warnings=plan.simplified_warnings,
        simplified_medications=plan.simplified_medications,
        simplified_appointments=plan.simplified_appointments,
        translated_diagnosis=plan.translated_diagnosis,
        translated_instructions=plan.translated_instructions,
        translated_warnings=plan.translated_warnings,
        translated_medications=plan.translated_medications,
        translated_appointments=plan.translated_appointments,
        check_ins=[CheckInRead.model_validate(ci) for ci in plan.check_ins],
    )


@router.get("/{token}", response_model=PatientPortalView)
@limiter.limit(PUBLIC_LIMIT)
def view_care_plan(
    request: Request,
    token: str,
    db: Session = Depends(get_db),
):
    """Patient opens their care plan."""
    plan = access_token_service.validate(
        db, token, client_key=audit_service.get_client_ip(request)
    )
    audit_service.log_event(
        db,
        tenant_id=plan.tenant_id,
        action=AuditAction.VIEWED,
        care_plan_id=plan.id,
        request=request,
    )
    db.commit()
    db.refresh(plan)
    return _portal_view(plan)


@router.post("/{token}/check-in", response_model=CheckInRead)
@limiter.limit(PUBLIC_LIMIT)
def respond_to_check_in(
    request: Request,
    token: str,
    data: CheckInRespond,
    db: Session = Depends(get_db),
):
    """
    Patient answers a check-in (green/yellow/red).

    Without check_in_id the earliest due unanswered check-in is used.
    A second answer to the same check-in returns 409.
    """
    client_key = audit_service.get_client_ip(request)
    if data.check_in_id is not None:
        check_in = check_in_service.record_response_for(
            db,
            token,
            data.check_in_id,
            data.response,
            notes=data.notes,
            client_key=client_key,
            request=request,
        )
    else:
        check_in = check_in_service.record_response(
            db,
            token,
            data.response,
            notes=data.notes,
            client_key=client_key,
            request=request,
        )
    return check_in
