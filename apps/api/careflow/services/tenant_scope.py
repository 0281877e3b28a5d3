"""Tenant isolation and role checks.

Every service read or write passes through authorize() or scoped() before
touching tenant data. super_admin is exempt from tenant equality only.
"""

import logging
from uuid import UUID

from sqlalchemy import Select

from careflow.core.errors import Forbidden, InvalidTransition
from careflow.core.permissions import WORKFLOW_ACTIONS, Action, has_permission
from careflow.core.structured_logging import build_log_context
from careflow.db.enums import Role
from careflow.schemas.auth import UserSession

logger = logging.getLogger(__name__)


def authorize(
    session: UserSession,
    action: Action,
    tenant_id: UUID | None,
    language: str | None = None,
) -> None:
    """
    Gate an action on a tenant-owned entity.

    Raises:
        InvalidTransition: role may not perform this workflow transition
        Forbidden: role lacks a non-workflow permission, tenant mismatch,
            or interpreter not qualified for the plan's language
    """
    if not has_permission(session.role, action):
        logger.info(
            "Role check failed",
            extra=build_log_context(user_id=session.user_id, action=action.value),
        )
        if action in WORKFLOW_ACTIONS:
            raise InvalidTransition(
                f"Role '{session.role.value}' cannot perform '{action.value}'"
            )
        raise Forbidden(f"Role '{session.role.value}' cannot perform '{action.value}'")

    if not session.is_super_admin and session.tenant_id != tenant_id:
        logger.warning(
            "Cross-tenant access denied",
            extra=build_log_context(
                user_id=session.user_id, tenant_id=session.tenant_id, action=action.value
            ),
        )
        raise Forbidden()

    if session.role == Role.INTERPRETER and not is_language_qualified(session, language):
        raise Forbidden(f"Not qualified to review '{language}'")


def is_language_qualified(session: UserSession, language: str | None) -> bool:
    return bool(language) and language in session.languages


def require_permission(session: UserSession, action: Action) -> None:
    """Role-only check for tenant-wide operations (lists, reports)."""
    if not has_permission(session.role, action):
        raise Forbidden(f"Role '{session.role.value}' cannot perform '{action.value}'")
    if not session.is_super_admin and session.tenant_id is None:
        raise Forbidden()


def effective_tenant_id(session: UserSession, tenant_id: UUID | None = None) -> UUID | None:
    """
    Tenant a tenant-wide operation runs against.

    Regular users are pinned to their own tenant; super_admin may pick one
    (None means all tenants).
    """
    if session.is_super_admin:
        return tenant_id
    if tenant_id is not None and tenant_id != session.tenant_id:
        raise Forbidden()
    return session.tenant_id


def scoped(query: Select, model, session: UserSession, tenant_id: UUID | None = None) -> Select:
    """Add the tenant filter for `model` to a select."""
    scope = effective_tenant_id(session, tenant_id)
    if scope is None:
        return query
    return query.where(model.tenant_id == scope)
