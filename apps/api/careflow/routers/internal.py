"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from careflow.core.deps import get_db, get_notifier, verify_internal_secret
from careflow.services import care_plan_service, check_in_service
from careflow.services.notification_service import Notifier

router = APIRouter(
    prefix="/internal/scheduled",
    tags=["internal"],
    dependencies=[Depends(verify_internal_secret)],
)


class CheckInDispatchResponse(BaseModel):
    sent: int


class CompletionSweepResponse(BaseModel):
    completed: int


@router.post("/check-ins", response_model=CheckInDispatchResponse)
async def dispatch_check_ins(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """Send notifications for every due check-in."""
    sent = await check_in_service.dispatch_due_check_ins(db, notifier)
    return CheckInDispatchResponse(sent=sent)


@router.post("/complete", response_model=CompletionSweepResponse)
def complete_due_plans(db: Session = Depends(get_db)):
    """Complete sent plans the completion policy marks eligible."""
    return CompletionSweepResponse(completed=care_plan_service.complete_due_plans(db))
