"""Tenant workflow policies: interpreter review routing and completion."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from careflow.db.enums import CarePlanStatus, CompletionPolicy, InterpreterReviewMode


# =============================================================================
# Interpreter review
# =============================================================================

@dataclass(frozen=True)
class InterpreterReviewRule:
    """Where a non-English plan goes on approval from pending_review."""

    default_target: CarePlanStatus
    skip_allowed: bool
    skip_requires_justification: bool


INTERPRETER_REVIEW_RULES: dict[InterpreterReviewMode, InterpreterReviewRule] = {
    InterpreterReviewMode.DISABLED: InterpreterReviewRule(
        default_target=CarePlanStatus.APPROVED,
        skip_allowed=True,
        skip_requires_justification=False,
    ),
    InterpreterReviewMode.OPTIONAL: InterpreterReviewRule(
        default_target=CarePlanStatus.INTERPRETER_REVIEW,
        skip_allowed=True,
        skip_requires_justification=True,
    ),
    InterpreterReviewMode.REQUIRED: InterpreterReviewRule(
        default_target=CarePlanStatus.INTERPRETER_REVIEW,
        skip_allowed=False,
        skip_requires_justification=False,
    ),
}


def get_review_rule(mode: InterpreterReviewMode | str) -> InterpreterReviewRule:
    """Fetch the rule for a tenant's review mode or raise KeyError."""
    return INTERPRETER_REVIEW_RULES[InterpreterReviewMode(mode)]


# =============================================================================
# Completion (sent -> completed)
# =============================================================================

@dataclass(frozen=True)
class CompletionFacts:
    """Plan facts a completion rule may look at."""

    sent_at: datetime | None
    has_response: bool
    now: datetime
    window_days: int
    requested_by_user: bool


COMPLETION_RULES: dict[CompletionPolicy, Callable[[CompletionFacts], bool]] = {
    # Only an explicit staff request completes; the sweep never does
    CompletionPolicy.MANUAL: lambda f: f.requested_by_user,
    CompletionPolicy.CHECK_IN_RESPONSE: lambda f: f.has_response,
    CompletionPolicy.ELAPSED: lambda f: (
        f.sent_at is not None and f.now >= f.sent_at + timedelta(days=f.window_days)
    ),
}


def completion_allowed(policy: CompletionPolicy | str, facts: CompletionFacts) -> bool:
    """Apply the configured completion policy."""
    return COMPLETION_RULES[CompletionPolicy(policy)](facts)
