"""Tenant settings router."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from careflow.core.deps import get_current_session, get_db, require_csrf_header
from careflow.schemas.auth import UserSession
from careflow.schemas.tenants import TenantSettingsRead, TenantSettingsUpdate
from careflow.services import tenant_service

router = APIRouter(prefix="/tenant", tags=["tenant"])


@router.get("/settings", response_model=TenantSettingsRead)
def get_settings(
    tenant_id: UUID | None = Query(None, description="super_admin only"),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return tenant_service.get_settings(db, session, tenant_id=tenant_id)


@router.patch(
    "/settings",
    response_model=TenantSettingsRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_settings(
    request: Request,
    data: TenantSettingsUpdate,
    tenant_id: UUID | None = Query(None, description="super_admin only"),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Update interpreter review mode and clinic contact details."""
    return tenant_service.update_settings(
        db,
        session,
        interpreter_review_mode=data.interpreter_review_mode,
        contact_email=data.contact_email,
        contact_phone=data.contact_phone,
        tenant_id=tenant_id,
        request=request,
    )
