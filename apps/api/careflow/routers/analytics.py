"""Analytics router - dashboard counts and TCM summary."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from careflow.core.deps import get_current_session, get_db
from careflow.schemas.auth import UserSession
from careflow.schemas.tenants import AnalyticsResponse
from careflow.services import analytics_service

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("", response_model=AnalyticsResponse)
def get_analytics(
    tenant_id: UUID | None = Query(None, description="super_admin only"),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return analytics_service.get_analytics(db, session, tenant_id=tenant_id)
