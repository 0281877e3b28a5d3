"""Authentication-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel

from careflow.db.enums import Role


class TokenPayload(BaseModel):
    """Decoded JWT payload structure."""
    sub: UUID  # user_id
    tenant_id: UUID | None
    role: str
    token_version: int


class UserSession(BaseModel):
    """
    Full session context for authenticated requests.

    This is returned by get_current_session dependency
    and contains all information needed for authorization.
    """
    user_id: UUID
    tenant_id: UUID | None  # None only for super_admin
    role: Role  # Validated enum
    email: str
    display_name: str
    languages: list[str] = []  # Interpreter qualifications

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.SUPER_ADMIN


class MeResponse(BaseModel):
    """Response schema for GET /auth/me endpoint."""
    user_id: UUID
    email: str
    display_name: str
    role: Role
    tenant_id: UUID | None
    tenant_name: str | None
    languages: list[str]
