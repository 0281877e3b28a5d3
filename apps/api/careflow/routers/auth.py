"""Session router. Sign-in happens upstream; this serves the session it issues."""

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from careflow.core.deps import COOKIE_NAME, get_current_session, get_db, require_csrf_header
from careflow.db.models import Tenant
from careflow.schemas.auth import MeResponse, UserSession

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me", response_model=MeResponse)
def get_me(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> MeResponse:
    """Current user, role, tenant and interpreter languages."""
    tenant = db.get(Tenant, session.tenant_id) if session.tenant_id else None
    return MeResponse(
        user_id=session.user_id,
        email=session.email,
        display_name=session.display_name,
        role=session.role,
        tenant_id=session.tenant_id,
        tenant_name=tenant.name if tenant else None,
        languages=session.languages,
    )


@router.post("/logout", dependencies=[Depends(require_csrf_header)])
def logout(
    response: Response,
    session: UserSession = Depends(get_current_session),
):
    """Clear the session cookie."""
    response.delete_cookie(COOKIE_NAME, path="/")
    return {"status": "logged_out"}
