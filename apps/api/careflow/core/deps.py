"""FastAPI dependencies for authentication, authorization, and database access."""

from typing import Generator

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from careflow.core.config import settings
from careflow.core.security import InvalidSession, decode_session_token
from careflow.db.session import SessionLocal


# Cookie and header names
COOKIE_NAME = "careflow_session"
CSRF_HEADER = "X-Requested-With"
CSRF_HEADER_VALUE = "XMLHttpRequest"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    request: Request,
    db: Session = Depends(get_db)
):
    """
    Get authenticated user from session cookie.

    Validates:
    - Session cookie exists
    - JWT is valid and not expired
    - User exists and is active
    - Token version matches (for revocation support)

    Raises:
        HTTPException 401: Authentication failed
    """
    # Import here to avoid circular imports
    from careflow.db.models import User

    token = request.cookies.get(COOKIE_NAME)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = decode_session_token(token)
    except InvalidSession:
        raise HTTPException(status_code=401, detail="Invalid session")

    user = db.get(User, payload.sub)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account disabled")

    # Token version check (revocation support)
    if user.token_version != payload.token_version:
        raise HTTPException(status_code=401, detail="Session revoked")

    return user


def get_current_session(
    request: Request,
    db: Session = Depends(get_db)
):
    """
    Get full session context: user_id, tenant_id, role.

    This is the PRIMARY auth dependency for most endpoints.
    Role and tenant come from the user row, not the token, so role changes
    apply immediately.

    Raises:
        HTTPException 401: Not authenticated
        HTTPException 403: No tenant or unknown role
    """
    from careflow.db.enums import Role
    from careflow.schemas.auth import UserSession

    user = get_current_user(request, db)

    # Validate role is a known enum value - return 403 not 500
    if not Role.has_value(user.role):
        raise HTTPException(
            status_code=403,
            detail=f"Unknown role '{user.role}'. Contact administrator."
        )
    role = Role(user.role)

    if role != Role.SUPER_ADMIN and user.tenant_id is None:
        raise HTTPException(status_code=403, detail="No tenant membership")

    return UserSession(
        user_id=user.id,
        tenant_id=user.tenant_id,
        role=role,
        email=user.email,
        display_name=user.display_name,
        languages=list(user.languages or []),
    )


def require_csrf_header(request: Request) -> None:
    """
    Verify CSRF header on mutations.

    Apply to state-changing endpoints (POST, PATCH, DELETE).

    Raises:
        HTTPException 403: Missing or invalid CSRF header
    """
    if request.headers.get(CSRF_HEADER) != CSRF_HEADER_VALUE:
        raise HTTPException(
            status_code=403,
            detail=f"Missing CSRF header. Include '{CSRF_HEADER}: {CSRF_HEADER_VALUE}'"
        )


def verify_internal_secret(x_internal_secret: str = Header(...)) -> None:
    """Verify the internal secret header for cron-triggered endpoints."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if x_internal_secret != expected:
        raise HTTPException(status_code=403, detail="Invalid internal secret")


# =============================================================================
# Collaborators (overridden in tests)
# =============================================================================

def get_text_processor():
    """Text-processing collaborator used by care plan processing."""
    from careflow.services.text_processing import OpenAITextProcessor
    return OpenAITextProcessor()


def get_notifier():
    """Outbound notification collaborator (e-mail + SMS)."""
    from careflow.services.notification_service import HttpNotifier
    return HttpNotifier()
