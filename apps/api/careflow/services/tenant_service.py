"""Tenant provisioning, staff accounts and tenant settings."""

import logging
import re
from uuid import UUID

from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from careflow.core.errors import NotFound, ValidationError
from careflow.core.permissions import Action
from careflow.db.enums import SUPPORTED_LANGUAGES, AuditAction, InterpreterReviewMode, Role
from careflow.db.models import Tenant, User
from careflow.schemas.auth import UserSession
from careflow.services import audit_service, tenant_scope

logger = logging.getLogger(__name__)


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug[:100] or "tenant"


# =============================================================================
# Tenants
# =============================================================================


def create_tenant(
    db: Session,
    name: str,
    slug: str | None = None,
    interpreter_review_mode: InterpreterReviewMode = InterpreterReviewMode.REQUIRED,
    is_demo: bool = False,
) -> Tenant:
    """Create a tenant. Raises ValidationError on a duplicate slug."""
    name = name.strip()
    if not name:
        raise ValidationError("Tenant name is required")
    tenant = Tenant(
        name=name,
        slug=slug or slugify(name),
        interpreter_review_mode=InterpreterReviewMode(interpreter_review_mode).value,
        is_demo=is_demo,
    )
    db.add(tenant)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError(f"Tenant slug '{tenant.slug}' already exists")
    db.refresh(tenant)
    logger.info(f"Created tenant {tenant.id} ({tenant.slug})")
    return tenant


def get_tenant(db: Session, tenant_id: UUID) -> Tenant:
    tenant = db.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFound("Tenant not found")
    return tenant


def get_tenant_by_slug(db: Session, slug: str) -> Tenant | None:
    return db.execute(select(Tenant).where(Tenant.slug == slug)).scalar_one_or_none()


# =============================================================================
# Staff accounts
# =============================================================================


def create_user(
    db: Session,
    email: str,
    display_name: str,
    role: Role,
    tenant_id: UUID | None = None,
    languages: list[str] | None = None,
) -> User:
    """
    Create a staff account.

    Every role except super_admin belongs to exactly one tenant; only
    interpreters carry qualified languages.
    """
    role = Role(role)
    if role == Role.SUPER_ADMIN and tenant_id is not None:
        raise ValidationError("super_admin accounts do not belong to a tenant")
    if role != Role.SUPER_ADMIN and tenant_id is None:
        raise ValidationError(f"{role.value} accounts must belong to a tenant")
    if tenant_id is not None:
        get_tenant(db, tenant_id)

    languages = list(dict.fromkeys(languages or []))
    unknown = [code for code in languages if code not in SUPPORTED_LANGUAGES]
    if unknown:
        raise ValidationError(f"Unsupported language(s): {', '.join(unknown)}")
    if languages and role != Role.INTERPRETER:
        raise ValidationError("Only interpreters have qualified languages")

    user = User(
        email=email.strip().lower(),
        display_name=display_name.strip(),
        role=role.value,
        tenant_id=tenant_id,
        languages=languages,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError(f"User '{email}' already exists")
    db.refresh(user)
    return user


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.execute(
        select(User).where(func.lower(User.email) == email.strip().lower())
    ).scalar_one_or_none()


# =============================================================================
# Settings
# =============================================================================


def get_settings(db: Session, session: UserSession, tenant_id: UUID | None = None) -> Tenant:
    scope = tenant_scope.effective_tenant_id(session, tenant_id)
    if scope is None:
        raise ValidationError("tenant_id is required")
    tenant = get_tenant(db, scope)
    tenant_scope.authorize(session, Action.MANAGE_TENANT_SETTINGS, tenant.id)
    return tenant


def update_settings(
    db: Session,
    session: UserSession,
    interpreter_review_mode: InterpreterReviewMode | None = None,
    contact_email: str | None = None,
    contact_phone: str | None = None,
    tenant_id: UUID | None = None,
    request: Request | None = None,
) -> Tenant:
    """Update tenant settings; audited as a tenant-level event."""
    tenant = get_settings(db, session, tenant_id)

    changes: dict[str, dict[str, str | None]] = {}
    if interpreter_review_mode is not None:
        new_mode = InterpreterReviewMode(interpreter_review_mode).value
        if new_mode != tenant.interpreter_review_mode:
            changes["interpreter_review_mode"] = {
                "from": tenant.interpreter_review_mode,
                "to": new_mode,
            }
            tenant.interpreter_review_mode = new_mode
    if contact_email is not None and contact_email != tenant.contact_email:
        changes["contact_email"] = {"from": tenant.contact_email, "to": contact_email}
        tenant.contact_email = contact_email
    if contact_phone is not None and contact_phone != tenant.contact_phone:
        changes["contact_phone"] = {"from": tenant.contact_phone, "to": contact_phone}
        tenant.contact_phone = contact_phone

    if changes:
        audit_service.log_event(
            db,
            tenant_id=tenant.id,
            action=AuditAction.TENANT_SETTINGS_UPDATED,
            actor_user_id=session.user_id,
            details={"changes": changes},
            request=request,
        )
        db.commit()
        db.refresh(tenant)
    return tenant
