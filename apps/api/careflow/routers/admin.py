"""Staff follow-up: alerts, check-in scheduling and billing export."""

from datetime import datetime, timezone
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from careflow.core.deps import get_current_session, get_db, require_csrf_header
from careflow.core.rate_limit import limiter
from careflow.db.enums import AuditAction
from careflow.schemas.auth import UserSession
from careflow.schemas.check_ins import AlertRead, CheckInCreate, CheckInRead
from careflow.services import audit_service, check_in_service, export_service, tenant_scope
from careflow.services.check_in_service import AlertView

router = APIRouter(tags=["follow-up"])


def _alert_read(alert: AlertView) -> AlertRead:
    check_in = alert.check_in
    return AlertRead(
        id=check_in.id,
        care_plan_id=check_in.care_plan_id,
        patient_name=alert.patient_name,
        response=check_in.response,
        response_notes=check_in.response_notes,
        responded_at=check_in.responded_at,
        resolved=alert.resolved,
        resolved_at=check_in.alert_resolved_at,
        resolved_by_id=check_in.alert_resolved_by_id,
    )


# =============================================================================
# Alerts
# =============================================================================

@router.get("/alerts", response_model=list[AlertRead])
def list_alerts(
    include_resolved: bool = Query(True),
    tenant_id: UUID | None = Query(None, description="super_admin only"),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Yellow/red check-ins, newest response first."""
    alerts = check_in_service.list_alerts(
        db, session, include_resolved=include_resolved, tenant_id=tenant_id
    )
    return [_alert_read(a) for a in alerts]


@router.post(
    "/alerts/{check_in_id}/resolve",
    response_model=AlertRead,
    dependencies=[Depends(require_csrf_header)],
)
def resolve_alert(
    request: Request,
    check_in_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Resolve an alert. Resolving twice is a no-op."""
    check_in = check_in_service.resolve_alert(db, session, check_in_id, request=request)
    return _alert_read(
        AlertView(
            check_in=check_in,
            patient_name=check_in_service.patient_display_name(check_in.patient),
        )
    )


# =============================================================================
# Check-ins
# =============================================================================

@router.post(
    "/check-ins",
    response_model=CheckInRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def schedule_check_in(
    request: Request,
    data: CheckInCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Schedule the next follow-up attempt for a sent care plan."""
    return check_in_service.schedule(
        db,
        session,
        care_plan_id=data.care_plan_id,
        patient_id=data.patient_id,
        attempt_number=data.attempt_number,
        scheduled_for=data.scheduled_for,
        request=request,
    )


# =============================================================================
# Export
# =============================================================================

@router.get("/admin/exports/billing", response_class=StreamingResponse)
@limiter.limit("5/minute")
def export_billing(
    request: Request,
    tenant_id: UUID | None = Query(None, description="super_admin only"),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> StreamingResponse:
    """TCM billing export (CSV), one row per sent care plan."""
    content = export_service.stream_billing_csv(db, session, tenant_id=tenant_id)
    audit_service.log_event(
        db,
        tenant_id=tenant_scope.effective_tenant_id(session, tenant_id),
        action=AuditAction.DATA_EXPORTED,
        actor_user_id=session.user_id,
        details={"export": "billing_csv"},
        request=request,
    )
    db.commit()

    filename = f"tcm_billing_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}.csv"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return StreamingResponse(content, media_type="text/csv", headers=headers)
