"""Care plans router - upload, processing, approval, delivery and audit trail."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from careflow.core.deps import (
    get_current_session,
    get_db,
    get_notifier,
    get_text_processor,
    require_csrf_header,
)
from careflow.db.enums import CarePlanStatus
from careflow.db.models import CarePlan
from careflow.schemas.auth import UserSession
from careflow.schemas.care_plans import (
    ApproveRequest,
    AuditEntryRead,
    CarePlanCreate,
    CarePlanListItem,
    CarePlanRead,
    PatientDetails,
    ProcessRequest,
    SendResponse,
)
from careflow.services import audit_service, billing_service, care_plan_service
from careflow.services.notification_service import Notifier
from careflow.services.text_processing import TextProcessor

router = APIRouter(prefix="/care-plans", tags=["care-plans"])


def _to_read(db: Session, plan: CarePlan) -> CarePlanRead:
    data = CarePlanRead.model_validate(plan)
    data.billing_eligibility = billing_service.eligibility_for_plan(db, plan)
    return data


# =============================================================================
# Read
# =============================================================================

@router.get("", response_model=list[CarePlanListItem])
def list_care_plans(
    status: CarePlanStatus | None = Query(None),
    tenant_id: UUID | None = Query(None, description="super_admin only"),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """List care plans visible to the caller, newest first."""
    return care_plan_service.list_plans(db, session, status=status, tenant_id=tenant_id)


@router.get("/{plan_id}", response_model=CarePlanRead)
def get_care_plan(
    plan_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    plan = care_plan_service.get_plan(db, session, plan_id)
    return _to_read(db, plan)


@router.get("/{plan_id}/audit", response_model=list[AuditEntryRead])
def get_audit_trail(
    plan_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Chronological audit trail for one care plan."""
    plan = care_plan_service.get_plan(db, session, plan_id)
    return audit_service.list_plan_trail(db, session, plan)


# =============================================================================
# Workflow
# =============================================================================

@router.post(
    "",
    response_model=CarePlanRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_care_plan(
    request: Request,
    data: CarePlanCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Register an uploaded discharge document as a draft care plan."""
    plan = care_plan_service.create_from_upload(
        db,
        session,
        file_name=data.source_file_name,
        source_text=data.source_text,
        extracted=data.extracted,
        request=request,
    )
    return _to_read(db, plan)


@router.post(
    "/{plan_id}/process",
    response_model=CarePlanRead,
    dependencies=[Depends(require_csrf_header)],
)
async def process_care_plan(
    request: Request,
    plan_id: UUID,
    data: ProcessRequest,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    processor: TextProcessor = Depends(get_text_processor),
):
    """
    Simplify and translate a draft.

    Upstream failures return 502 and leave the plan in draft.
    """
    plan = await care_plan_service.process(
        db, session, plan_id, data.target_language, processor, request=request
    )
    return _to_read(db, plan)


@router.post(
    "/{plan_id}/approve",
    response_model=CarePlanRead,
    dependencies=[Depends(require_csrf_header)],
)
def approve_care_plan(
    request: Request,
    plan_id: UUID,
    data: ApproveRequest | None = None,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Clinician approval; routes to interpreter review per tenant policy."""
    data = data or ApproveRequest()
    plan = care_plan_service.approve(
        db,
        session,
        plan_id,
        skip_interpreter_review=data.skip_interpreter_review,
        override_justification=data.override_justification,
        request=request,
    )
    return _to_read(db, plan)


@router.post(
    "/{plan_id}/send",
    response_model=SendResponse,
    dependencies=[Depends(require_csrf_header)],
)
async def send_care_plan(
    request: Request,
    plan_id: UUID,
    data: PatientDetails,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Deliver an approved plan to the patient.

    The plan is sent even when the e-mail/SMS fails; `notified` says which.
    """
    result = await care_plan_service.send(
        db, session, plan_id, data, notifier, request=request
    )
    return SendResponse(
        care_plan=_to_read(db, result.care_plan),
        notified=result.notified,
        email_sent=result.email_sent,
        sms_sent=result.sms_sent,
    )


@router.post(
    "/{plan_id}/complete",
    response_model=CarePlanRead,
    dependencies=[Depends(require_csrf_header)],
)
def complete_care_plan(
    request: Request,
    plan_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    plan = care_plan_service.mark_completed(db, session, plan_id, request=request)
    return _to_read(db, plan)


@router.delete(
    "/{plan_id}",
    status_code=204,
    dependencies=[Depends(require_csrf_header)],
)
def delete_care_plan(
    request: Request,
    plan_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Delete a plan that has not been sent. Sent or completed plans are kept."""
    care_plan_service.delete(db, session, plan_id, request=request)
