"""Structured logging helpers (PHI-safe)."""

from typing import Any


def build_log_context(
    *,
    user_id: Any = None,
    tenant_id: Any = None,
    care_plan_id: Any = None,
    check_in_id: Any = None,
    action: str | None = None,
) -> dict[str, Any]:
    """Return a PHI-safe log context dict (identifiers only, never names or tokens)."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = str(user_id)
    if tenant_id:
        context["tenant_id"] = str(tenant_id)
    if care_plan_id:
        context["care_plan_id"] = str(care_plan_id)
    if check_in_id:
        context["check_in_id"] = str(check_in_id)
    if action:
        context["action"] = action
    return context
