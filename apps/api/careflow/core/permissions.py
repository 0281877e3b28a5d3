"""Permission registry: which role may perform which action.

Tenant equality and interpreter language qualification are checked
separately in careflow.services.tenant_scope; this table is tenant-agnostic.

super_admin: always has all permissions (immutable)
"""

from enum import Enum

from careflow.db.enums import Role


class Action(str, Enum):
    """Permission keys checked by tenant_scope.authorize."""

    # Care plan workflow
    UPLOAD_CARE_PLAN = "upload_care_plan"
    PROCESS_CARE_PLAN = "process_care_plan"
    APPROVE_CARE_PLAN = "approve_care_plan"
    SEND_CARE_PLAN = "send_care_plan"
    COMPLETE_CARE_PLAN = "complete_care_plan"
    DELETE_CARE_PLAN = "delete_care_plan"
    INTERPRETER_REVIEW = "interpreter_review"

    # Reads
    VIEW_CARE_PLANS = "view_care_plans"
    VIEW_ALL_CARE_PLANS = "view_all_care_plans"
    VIEW_AUDIT_LOG = "view_audit_log"

    # Follow-up
    SCHEDULE_CHECK_IN = "schedule_check_in"
    VIEW_ALERTS = "view_alerts"
    RESOLVE_ALERT = "resolve_alert"

    # Reporting & tenant
    VIEW_ANALYTICS = "view_analytics"
    EXPORT_DATA = "export_data"
    MANAGE_TENANT_SETTINGS = "manage_tenant_settings"


# Transitions: a role missing one of these is an InvalidTransition, not Forbidden
WORKFLOW_ACTIONS = frozenset({
    Action.PROCESS_CARE_PLAN,
    Action.APPROVE_CARE_PLAN,
    Action.SEND_CARE_PLAN,
    Action.COMPLETE_CARE_PLAN,
    Action.DELETE_CARE_PLAN,
    Action.INTERPRETER_REVIEW,
})


# =============================================================================
# Default Role Permissions
# =============================================================================

ROLE_PERMISSIONS: dict[Role, frozenset[Action]] = {
    Role.CLINICIAN: frozenset({
        Action.UPLOAD_CARE_PLAN,
        Action.PROCESS_CARE_PLAN,
        Action.APPROVE_CARE_PLAN,
        Action.SEND_CARE_PLAN,
        Action.COMPLETE_CARE_PLAN,
        Action.DELETE_CARE_PLAN,
        Action.VIEW_CARE_PLANS,
        Action.VIEW_AUDIT_LOG,
        Action.SCHEDULE_CHECK_IN,
        Action.VIEW_ALERTS,
        Action.RESOLVE_ALERT,
        Action.VIEW_ANALYTICS,
    }),
    Role.ADMIN: frozenset({
        Action.UPLOAD_CARE_PLAN,
        Action.COMPLETE_CARE_PLAN,
        Action.DELETE_CARE_PLAN,
        Action.VIEW_CARE_PLANS,
        Action.VIEW_ALL_CARE_PLANS,
        Action.VIEW_AUDIT_LOG,
        Action.SCHEDULE_CHECK_IN,
        Action.VIEW_ALERTS,
        Action.RESOLVE_ALERT,
        Action.VIEW_ANALYTICS,
        Action.EXPORT_DATA,
        Action.MANAGE_TENANT_SETTINGS,
    }),
    Role.INTERPRETER: frozenset({
        Action.INTERPRETER_REVIEW,
        Action.VIEW_CARE_PLANS,
    }),
    Role.SUPER_ADMIN: frozenset(Action),  # All permissions
}


def has_permission(role: Role | str, action: Action) -> bool:
    """Static (role, action) lookup."""
    try:
        role = Role(role)
    except ValueError:
        return False
    return action in ROLE_PERMISSIONS.get(role, frozenset())
