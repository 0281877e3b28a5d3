"""Care plan transition table.

Pure data + one lookup function; no persistence or authorization here.
Every (state, action) pair not listed is rejected.
"""

from dataclasses import dataclass
from enum import Enum

from careflow.core.policies import get_review_rule
from careflow.db.enums import (
    DELETABLE_STATUSES,
    ENGLISH,
    CarePlanStatus,
    InterpreterReviewMode,
)

S = CarePlanStatus


class Transition(str, Enum):
    """Workflow actions that move a care plan."""

    PROCESS = "process"
    APPROVE = "approve"
    INTERPRETER_APPROVE = "interpreter_approve"
    INTERPRETER_REQUEST_CHANGES = "interpreter_request_changes"
    SEND = "send"
    COMPLETE = "complete"
    DELETE = "delete"


@dataclass(frozen=True)
class TransitionOk:
    new_status: CarePlanStatus | None  # None for DELETE (row goes away)
    interpreter_review_skipped: bool = False


@dataclass(frozen=True)
class TransitionErr:
    reason: str
    # True when the state is right but the caller's input is not
    is_validation: bool = False


TransitionResult = TransitionOk | TransitionErr


# (source state, action) -> target state. APPROVE from pending_review is
# resolved by the interpreter review rule table.
TRANSITIONS: dict[tuple[CarePlanStatus, Transition], CarePlanStatus | None] = {
    (S.DRAFT, Transition.PROCESS): S.PENDING_REVIEW,
    (S.PENDING_REVIEW, Transition.APPROVE): None,
    (S.INTERPRETER_APPROVED, Transition.APPROVE): S.APPROVED,
    (S.INTERPRETER_REVIEW, Transition.INTERPRETER_APPROVE): S.INTERPRETER_APPROVED,
    (S.INTERPRETER_REVIEW, Transition.INTERPRETER_REQUEST_CHANGES): S.PENDING_REVIEW,
    (S.APPROVED, Transition.SEND): S.SENT,
    (S.SENT, Transition.COMPLETE): S.COMPLETED,
}


def source_states(action: Transition) -> frozenset[CarePlanStatus]:
    """States from which an action is legal."""
    if action == Transition.DELETE:
        return DELETABLE_STATUSES
    return frozenset(state for state, act in TRANSITIONS if act == action)


def transition(
    current: CarePlanStatus | str,
    action: Transition,
    *,
    target_language: str | None = None,
    review_mode: InterpreterReviewMode | str = InterpreterReviewMode.REQUIRED,
    skip_interpreter_review: bool | None = None,
    override_justification: str | None = None,
) -> TransitionResult:
    """
    Resolve the next status for (current, action).

    Only APPROVE from pending_review consults context: English plans go
    straight to approved, everything else follows the tenant review mode.
    """
    current = CarePlanStatus(current)

    if action == Transition.DELETE:
        if current in DELETABLE_STATUSES:
            return TransitionOk(new_status=None)
        return TransitionErr(f"Cannot delete a care plan in '{current.value}'")

    if (current, action) not in TRANSITIONS:
        return TransitionErr(f"Cannot {action.value} a care plan in '{current.value}'")

    if not (current == S.PENDING_REVIEW and action == Transition.APPROVE):
        return TransitionOk(new_status=TRANSITIONS[(current, action)])

    if target_language == ENGLISH:
        return TransitionOk(new_status=S.APPROVED)

    rule = get_review_rule(review_mode)
    if not skip_interpreter_review:
        return TransitionOk(new_status=rule.default_target)

    if not rule.skip_allowed:
        return TransitionErr(
            "Interpreter review is required for non-English care plans",
            is_validation=True,
        )
    if rule.skip_requires_justification and not (override_justification or "").strip():
        return TransitionErr(
            "A justification is required to skip interpreter review",
            is_validation=True,
        )
    return TransitionOk(
        new_status=S.APPROVED,
        interpreter_review_skipped=rule.default_target != S.APPROVED,
    )
