"""Staff session tokens (HS256 JWT carried in the careflow_session cookie)."""

from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt
from pydantic import ValidationError as PydanticValidationError

from careflow.core.config import settings
from careflow.schemas.auth import TokenPayload

ALGORITHM = "HS256"


class InvalidSession(Exception):
    """Signature, expiry or claim shape is wrong."""


def create_session_token(
    user_id: UUID,
    tenant_id: UUID | None,
    role: str,
    token_version: int,
) -> str:
    """
    Sign a session for a staff user.

    Signs with JWT_SECRET only; JWT_SECRET_PREVIOUS is accepted on decode
    while a rotation is in progress. tenant_id is None for super_admin.
    """
    issued_at = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "tenant_id": str(tenant_id) if tenant_id else None,
        "role": role,
        "token_version": token_version,
        "iat": issued_at,
        "exp": issued_at + timedelta(hours=settings.JWT_EXPIRES_HOURS),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=ALGORITHM)


def decode_session_token(token: str) -> TokenPayload:
    """
    Verify a session token against each configured secret.

    Raises:
        InvalidSession: no secret verifies it, or the claims are malformed
    """
    for secret in settings.jwt_secrets:
        try:
            claims = jwt.decode(token, secret, algorithms=[ALGORITHM])
        except jwt.InvalidTokenError:
            continue
        try:
            return TokenPayload.model_validate(claims)
        except PydanticValidationError as e:
            raise InvalidSession("Malformed session claims") from e
    raise InvalidSession("Session signature or expiry invalid")
