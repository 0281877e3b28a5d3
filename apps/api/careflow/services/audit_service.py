"""Audit trail service - append-only care plan and tenant event log.

Security guidelines:
- NEVER log access tokens
- Use IDs instead of patient names in details where possible
- IP: Trust X-Forwarded-For only behind a configured proxy
"""

from typing import Any
from uuid import UUID

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from careflow.core.config import settings
from careflow.core.permissions import Action
from careflow.db.enums import AuditAction
from careflow.db.models import AuditLog, CarePlan
from careflow.schemas.auth import UserSession
from careflow.services import tenant_scope


def get_client_ip(request: Request | None) -> str | None:
    """
    Extract client IP from request.

    Only trusts X-Forwarded-For when TRUST_PROXY_HEADERS=True (behind reverse proxy).
    """
    if not request:
        return None

    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # X-Forwarded-For: client, proxy1, proxy2 - take first
            return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return None


def get_user_agent(request: Request | None) -> str | None:
    """Extract user agent from request."""
    if not request:
        return None
    ua = request.headers.get("user-agent", "")
    # Truncate to 500 chars (DB limit)
    return ua[:500] if ua else None


def log_event(
    db: Session,
    tenant_id: UUID | None,
    action: AuditAction,
    care_plan_id: UUID | None = None,
    actor_user_id: UUID | None = None,
    details: dict[str, Any] | None = None,
    request: Request | None = None,
) -> AuditLog:
    """
    Append an audit entry to the current transaction.

    Does not commit: the caller's state change and this entry land together.

    Args:
        db: Database session
        tenant_id: Tenant context
        action: What happened (AuditAction)
        care_plan_id: Plan affected, None for tenant-level events
        actor_user_id: Staff user, None for patient and system events
        details: Additional context (JSON-serializable)
        request: FastAPI request for IP/user-agent extraction
    """
    entry = AuditLog(
        tenant_id=tenant_id,
        care_plan_id=care_plan_id,
        actor_user_id=actor_user_id,
        action=action.value,
        details=details,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    db.add(entry)
    db.flush()
    return entry


def list_for_plan(db: Session, care_plan_id: UUID) -> list[AuditLog]:
    """All entries for a plan, oldest first."""
    return list(
        db.execute(
            select(AuditLog)
            .where(AuditLog.care_plan_id == care_plan_id)
            .order_by(AuditLog.created_at, AuditLog.id)
        ).scalars().all()
    )


def list_plan_trail(db: Session, session: UserSession, plan: CarePlan) -> list[AuditLog]:
    """Tenant-checked audit trail for one plan."""
    tenant_scope.authorize(session, Action.VIEW_AUDIT_LOG, plan.tenant_id)
    return list_for_plan(db, plan.id)


def first_entry(db: Session, care_plan_id: UUID, action: AuditAction) -> AuditLog | None:
    """Earliest entry of one kind for a plan."""
    return db.execute(
        select(AuditLog)
        .where(AuditLog.care_plan_id == care_plan_id, AuditLog.action == action.value)
        .order_by(AuditLog.created_at, AuditLog.id)
        .limit(1)
    ).scalar_one_or_none()
