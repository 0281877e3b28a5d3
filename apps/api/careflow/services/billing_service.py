"""TCM billing eligibility (CPT 99495 / 99496) from workflow timestamps.

S = when the plan was sent (its `sent` audit entry)
R = earliest check-in response

Days are calendar days in the reporting timezone: a response one minute
after midnight on day 8 counts as day 8.
"""

from datetime import date, datetime, tzinfo
from typing import Iterable
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from careflow.core.config import settings
from careflow.db.enums import DELIVERED_STATUSES, AuditAction, BillingEligibility, CarePlanStatus
from careflow.db.models import CarePlan
from careflow.services import audit_service

CPT_99496_MAX_DAYS = 7
CPT_99495_MAX_DAYS = 14


def reporting_timezone() -> tzinfo:
    return ZoneInfo(settings.REPORTING_TIMEZONE)


def calendar_date(value: datetime, tz: tzinfo) -> date:
    return value.astimezone(tz).date()


def first_response_at(responded_ats: Iterable[datetime | None]) -> datetime | None:
    answered = [r for r in responded_ats if r is not None]
    return min(answered) if answered else None


def contact_days(sent_at: datetime, responded_at: datetime, tz: tzinfo | None = None) -> int:
    """Calendar-day difference between send and first contact."""
    tz = tz or reporting_timezone()
    return (calendar_date(responded_at, tz) - calendar_date(sent_at, tz)).days


def compute_eligibility(
    status: CarePlanStatus | str,
    sent_at: datetime | None,
    responded_ats: Iterable[datetime | None],
    tz: tzinfo | None = None,
) -> BillingEligibility:
    """Pure calculator; see module docstring for S and R."""
    if CarePlanStatus(status) not in DELIVERED_STATUSES or sent_at is None:
        return BillingEligibility.NOT_SENT

    first_response = first_response_at(responded_ats)
    if first_response is None:
        return BillingEligibility.PENDING_CONTACT

    days = contact_days(sent_at, first_response, tz)
    if days <= CPT_99496_MAX_DAYS:
        return BillingEligibility.CPT_99496
    if days <= CPT_99495_MAX_DAYS:
        return BillingEligibility.CPT_99495
    return BillingEligibility.NOT_ELIGIBLE


def sent_timestamp(db: Session, plan: CarePlan) -> datetime | None:
    """S: the `sent` audit entry, else the plan's own sent_at."""
    entry = audit_service.first_entry(db, plan.id, AuditAction.SENT)
    if entry is not None:
        return entry.created_at
    return plan.sent_at


def eligibility_for_plan(db: Session, plan: CarePlan) -> BillingEligibility:
    if CarePlanStatus(plan.status) not in DELIVERED_STATUSES:
        return BillingEligibility.NOT_SENT
    return compute_eligibility(
        plan.status,
        sent_timestamp(db, plan),
        (ci.responded_at for ci in plan.check_ins),
    )


def eligibility_label(eligibility: BillingEligibility) -> str:
    """Human label used in exports."""
    return {
        BillingEligibility.NOT_SENT: "Not Sent",
        BillingEligibility.PENDING_CONTACT: "Pending Contact",
        BillingEligibility.CPT_99496: "99496",
        BillingEligibility.CPT_99495: "99495",
        BillingEligibility.NOT_ELIGIBLE: "Not Eligible",
    }[eligibility]
