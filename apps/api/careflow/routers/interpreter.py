"""Interpreter review queue."""

from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from careflow.core.deps import get_current_session, get_db, require_csrf_header
from careflow.schemas.auth import UserSession
from careflow.schemas.care_plans import (
    CarePlanListItem,
    CarePlanRead,
    InterpreterApproveRequest,
    RequestChangesRequest,
)
from careflow.services import care_plan_service

router = APIRouter(prefix="/interpreter", tags=["interpreter"])


@router.get("/queue", response_model=list[CarePlanListItem])
def get_queue(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Plans awaiting review in the caller's qualified languages."""
    return care_plan_service.interpreter_queue(db, session)


@router.get("/reviewed", response_model=list[CarePlanListItem])
def get_reviewed(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return care_plan_service.interpreter_reviewed(db, session)


@router.post(
    "/care-plans/{plan_id}/approve",
    response_model=CarePlanRead,
    dependencies=[Depends(require_csrf_header)],
)
def approve_translation(
    request: Request,
    plan_id: UUID,
    data: InterpreterApproveRequest | None = None,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Approve the translation, optionally with edits."""
    data = data or InterpreterApproveRequest()
    plan = care_plan_service.interpreter_approve(
        db, session, plan_id, edits=data.edits, notes=data.notes, request=request
    )
    return CarePlanRead.model_validate(plan)


@router.post(
    "/care-plans/{plan_id}/request-changes",
    response_model=CarePlanRead,
    dependencies=[Depends(require_csrf_header)],
)
def request_changes(
    request: Request,
    plan_id: UUID,
    data: RequestChangesRequest,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Send the plan back to the clinician with a reason."""
    plan = care_plan_service.interpreter_request_changes(
        db, session, plan_id, data.reason, request=request
    )
    return CarePlanRead.model_validate(plan)
