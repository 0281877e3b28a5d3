"""Care plan workflow service.

Every transition follows the same steps:
1. Load the plan (NotFound)
2. tenant_scope.authorize (Forbidden / InvalidTransition for the role)
3. care_plan_states.transition for the source state and policy
4. Operation-specific input checks (ValidationError)
5. Compare-and-swap UPDATE on (id, status) + one audit row, one commit

A CAS that matches no row means another request moved the plan first;
the transaction is rolled back and the caller gets InvalidTransition.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import httpx
from fastapi import Request
from sqlalchemy import delete as sa_delete
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from careflow.core.care_plan_states import Transition, TransitionErr, transition
from careflow.core.config import settings
from careflow.core.errors import InvalidTransition, NotFound, UpstreamFailure, ValidationError
from careflow.core.permissions import Action
from careflow.core.policies import CompletionFacts, completion_allowed
from careflow.core.structured_logging import build_log_context
from careflow.db.enums import (
    ENGLISH,
    SUPPORTED_LANGUAGES,
    AuditAction,
    CarePlanStatus,
    Role,
)
from careflow.db.models import CarePlan, CheckIn
from careflow.db.types import utcnow
from careflow.schemas.auth import UserSession
from careflow.schemas.care_plans import InterpreterEdits, PatientDetails, PlanSections
from careflow.services import access_token_service, audit_service, patient_service, tenant_scope
from careflow.services.notification_service import DeliveryResult, Notifier
from careflow.services.text_processing import TextProcessor

logger = logging.getLogger(__name__)

MIN_SOURCE_TEXT_LENGTH = 20


@dataclass
class SendResult:
    """Outcome of send: the transition committed; notification may have failed."""

    care_plan: CarePlan
    sent: bool
    notified: bool
    email_sent: bool = False
    sms_sent: bool = False


# =============================================================================
# Helpers
# =============================================================================


def _load_plan(db: Session, plan_id: UUID) -> CarePlan:
    plan = db.get(CarePlan, plan_id)
    if plan is None:
        raise NotFound("Care plan not found")
    return plan


def _check_transition(plan: CarePlan, action: Transition, **context: Any):
    result = transition(plan.status, action, **context)
    if isinstance(result, TransitionErr):
        if result.is_validation:
            raise ValidationError(result.reason)
        raise InvalidTransition(result.reason)
    return result


def _compare_and_swap(
    db: Session,
    plan: CarePlan,
    expected: CarePlanStatus | str,
    new_status: CarePlanStatus,
    now: datetime,
    **values: Any,
) -> None:
    """UPDATE ... WHERE id = :id AND status = :expected, else roll back."""
    expected = CarePlanStatus(expected)
    result = db.execute(
        update(CarePlan)
        .where(CarePlan.id == plan.id, CarePlan.status == expected.value)
        .values(status=new_status.value, updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        logger.info(
            "Care plan transition lost a concurrent race",
            extra=build_log_context(care_plan_id=plan.id, action=new_status.value),
        )
        raise InvalidTransition(
            f"Care plan is no longer in '{expected.value}'"
        )


def _commit(db: Session, plan: CarePlan | None = None) -> None:
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    if plan is not None:
        db.refresh(plan)


def _sections_from_plan(plan: CarePlan) -> PlanSections | None:
    if not (plan.diagnosis or plan.instructions or plan.warnings):
        return None
    return PlanSections.model_validate(
        {
            "diagnosis": plan.diagnosis or "",
            "instructions": plan.instructions or "",
            "warnings": plan.warnings or "",
            "medications": plan.medications or [],
            "appointments": plan.appointments or [],
        }
    )


def _dump_list(items) -> list[dict]:
    return [item.model_dump() for item in items]


# =============================================================================
# Create & read
# =============================================================================


def create_from_upload(
    db: Session,
    session: UserSession,
    file_name: str,
    source_text: str,
    extracted: PlanSections | None = None,
    request: Request | None = None,
) -> CarePlan:
    """Create a draft plan in the caller's tenant from an uploaded document."""
    tenant_scope.require_permission(session, Action.UPLOAD_CARE_PLAN)
    if session.tenant_id is None:
        raise ValidationError("Care plans must be uploaded within a tenant")

    text = (source_text or "").strip()
    if len(text) < MIN_SOURCE_TEXT_LENGTH:
        raise ValidationError("Could not extract sufficient text from document")

    plan = CarePlan(
        tenant_id=session.tenant_id,
        clinician_id=session.user_id,
        status=CarePlanStatus.DRAFT.value,
        source_file_name=file_name,
        source_content=text,
    )
    if extracted is not None:
        plan.diagnosis = extracted.diagnosis
        plan.instructions = extracted.instructions
        plan.warnings = extracted.warnings
        plan.medications = _dump_list(extracted.medications)
        plan.appointments = _dump_list(extracted.appointments)

    db.add(plan)
    db.flush()
    audit_service.log_event(
        db,
        tenant_id=plan.tenant_id,
        action=AuditAction.UPLOADED,
        care_plan_id=plan.id,
        actor_user_id=session.user_id,
        details={"file_name": file_name},
        request=request,
    )
    _commit(db, plan)
    logger.info(
        "Care plan uploaded",
        extra=build_log_context(user_id=session.user_id, tenant_id=plan.tenant_id, care_plan_id=plan.id),
    )
    return plan


def get_plan(db: Session, session: UserSession, plan_id: UUID) -> CarePlan:
    """Tenant-checked single plan (interpreters: qualified languages only)."""
    plan = _load_plan(db, plan_id)
    tenant_scope.authorize(
        session, Action.VIEW_CARE_PLANS, plan.tenant_id, language=plan.translated_language
    )
    return plan


def list_plans(
    db: Session,
    session: UserSession,
    status: CarePlanStatus | None = None,
    tenant_id: UUID | None = None,
) -> list[CarePlan]:
    """
    Plans visible to the caller.

    Clinicians see their own plans, admins their tenant's, interpreters
    plans in their languages, super_admin any tenant (or all).
    """
    tenant_scope.require_permission(session, Action.VIEW_CARE_PLANS)
    query = tenant_scope.scoped(select(CarePlan), CarePlan, session, tenant_id)

    if session.role == Role.CLINICIAN:
        query = query.where(CarePlan.clinician_id == session.user_id)
    elif session.role == Role.INTERPRETER:
        query = query.where(CarePlan.translated_language.in_(session.languages or [""]))

    if status is not None:
        query = query.where(CarePlan.status == CarePlanStatus(status).value)

    query = query.order_by(CarePlan.created_at.desc())
    return list(db.execute(query).scalars().all())


def interpreter_queue(db: Session, session: UserSession) -> list[CarePlan]:
    """Plans awaiting review in languages the interpreter covers, oldest first."""
    tenant_scope.require_permission(session, Action.INTERPRETER_REVIEW)
    query = tenant_scope.scoped(select(CarePlan), CarePlan, session).where(
        CarePlan.status == CarePlanStatus.INTERPRETER_REVIEW.value
    )
    if not session.is_super_admin:
        query = query.where(CarePlan.translated_language.in_(session.languages or [""]))
    return list(db.execute(query.order_by(CarePlan.updated_at)).scalars().all())


def interpreter_reviewed(db: Session, session: UserSession) -> list[CarePlan]:
    """Plans this interpreter has approved or sent back, newest first."""
    tenant_scope.require_permission(session, Action.INTERPRETER_REVIEW)
    query = (
        tenant_scope.scoped(select(CarePlan), CarePlan, session)
        .where(CarePlan.interpreter_reviewed_by_id == session.user_id)
        .order_by(CarePlan.interpreter_reviewed_at.desc())
    )
    return list(db.execute(query).scalars().all())


# =============================================================================
# Transitions
# =============================================================================


async def process(
    db: Session,
    session: UserSession,
    plan_id: UUID,
    target_language: str,
    processor: TextProcessor,
    request: Request | None = None,
) -> CarePlan:
    """
    draft -> pending_review.

    Simplifies (and translates unless English) through the text processor.
    Nothing is written unless every collaborator call succeeds.
    """
    plan = _load_plan(db, plan_id)
    tenant_scope.authorize(session, Action.PROCESS_CARE_PLAN, plan.tenant_id)
    _check_transition(plan, Transition.PROCESS)

    if target_language not in SUPPORTED_LANGUAGES:
        raise ValidationError(f"Unsupported language '{target_language}'")

    expected = plan.status
    extracted = _sections_from_plan(plan)
    try:
        if extracted is None:
            extracted = await processor.extract(plan.source_content or "")
        simplified = await processor.simplify(extracted)
        if target_language == ENGLISH:
            translated, back = simplified, None
        else:
            translation = await processor.translate(
                simplified, SUPPORTED_LANGUAGES[target_language]
            )
            translated, back = translation.sections, translation.back_translation
    except UpstreamFailure:
        db.rollback()
        logger.warning(
            "Text processing failed, care plan stays in draft",
            extra=build_log_context(care_plan_id=plan_id, tenant_id=plan.tenant_id),
        )
        raise

    now = utcnow()
    _compare_and_swap(
        db,
        plan,
        expected,
        CarePlanStatus.PENDING_REVIEW,
        now,
        diagnosis=extracted.diagnosis,
        instructions=extracted.instructions,
        warnings=extracted.warnings,
        medications=_dump_list(extracted.medications),
        appointments=_dump_list(extracted.appointments),
        simplified_diagnosis=simplified.diagnosis,
        simplified_instructions=simplified.instructions,
        simplified_warnings=simplified.warnings,
        simplified_medications=_dump_list(simplified.medications),
        simplified_appointments=_dump_list(simplified.appointments),
        translated_language=target_language,
        translated_diagnosis=translated.diagnosis,
        translated_instructions=translated.instructions,
        translated_warnings=translated.warnings,
        translated_medications=_dump_list(translated.medications),
        translated_appointments=_dump_list(translated.appointments),
        back_translated_diagnosis=back.diagnosis if back else None,
        back_translated_instructions=back.instructions if back else None,
        back_translated_warnings=back.warnings if back else None,
    )
    audit_service.log_event(
        db,
        tenant_id=plan.tenant_id,
        action=AuditAction.PROCESSED,
        care_plan_id=plan.id,
        actor_user_id=session.user_id,
        details={"language": target_language},
        request=request,
    )
    _commit(db, plan)
    return plan


def approve(
    db: Session,
    session: UserSession,
    plan_id: UUID,
    skip_interpreter_review: bool | None = None,
    override_justification: str | None = None,
    request: Request | None = None,
) -> CarePlan:
    """
    pending_review -> approved | interpreter_review, interpreter_approved -> approved.

    Routing for non-English plans comes from the tenant's interpreter review
    mode; see careflow.core.policies.
    """
    plan = _load_plan(db, plan_id)
    tenant_scope.authorize(session, Action.APPROVE_CARE_PLAN, plan.tenant_id)
    expected = CarePlanStatus(plan.status)
    result = _check_transition(
        plan,
        Transition.APPROVE,
        target_language=plan.translated_language,
        review_mode=plan.tenant.interpreter_review_mode,
        skip_interpreter_review=skip_interpreter_review,
        override_justification=override_justification,
    )

    now = utcnow()
    if result.new_status == CarePlanStatus.INTERPRETER_REVIEW:
        _compare_and_swap(db, plan, expected, result.new_status, now)
        action = AuditAction.SENT_TO_INTERPRETER
        details: dict[str, Any] = {"language": plan.translated_language}
    else:
        _compare_and_swap(
            db, plan, expected, result.new_status, now,
            approved_by_id=session.user_id,
            approved_at=now,
        )
        action = AuditAction.APPROVED
        details = {
            "approved_by": session.display_name,
            "final": expected == CarePlanStatus.INTERPRETER_APPROVED,
        }
        if result.interpreter_review_skipped:
            details["interpreter_review_skipped"] = True
            details["override_justification"] = override_justification

    audit_service.log_event(
        db,
        tenant_id=plan.tenant_id,
        action=action,
        care_plan_id=plan.id,
        actor_user_id=session.user_id,
        details=details,
        request=request,
    )
    _commit(db, plan)
    return plan


def interpreter_approve(
    db: Session,
    session: UserSession,
    plan_id: UUID,
    edits: InterpreterEdits | None = None,
    notes: str | None = None,
    request: Request | None = None,
) -> CarePlan:
    """interpreter_review -> interpreter_approved, applying the interpreter's edits."""
    plan = _load_plan(db, plan_id)
    tenant_scope.authorize(
        session, Action.INTERPRETER_REVIEW, plan.tenant_id, language=plan.translated_language
    )
    expected = plan.status
    result = _check_transition(plan, Transition.INTERPRETER_APPROVE)

    values: dict[str, Any] = {}
    if edits is not None:
        for field_name, value in edits.model_dump(exclude_none=True).items():
            values[field_name] = value

    now = utcnow()
    _compare_and_swap(
        db, plan, expected, result.new_status, now,
        interpreter_reviewed_by_id=session.user_id,
        interpreter_reviewed_at=now,
        interpreter_notes=(notes or "").strip() or None,
        **values,
    )
    audit_service.log_event(
        db,
        tenant_id=plan.tenant_id,
        action=AuditAction.INTERPRETER_APPROVED,
        care_plan_id=plan.id,
        actor_user_id=session.user_id,
        details={
            "language": plan.translated_language,
            "edited_fields": sorted(values),
            "has_notes": bool((notes or "").strip()),
        },
        request=request,
    )
    _commit(db, plan)
    return plan


def interpreter_request_changes(
    db: Session,
    session: UserSession,
    plan_id: UUID,
    reason: str,
    request: Request | None = None,
) -> CarePlan:
    """interpreter_review -> pending_review, carrying the reason in interpreter_notes."""
    plan = _load_plan(db, plan_id)
    tenant_scope.authorize(
        session, Action.INTERPRETER_REVIEW, plan.tenant_id, language=plan.translated_language
    )
    expected = plan.status
    result = _check_transition(plan, Transition.INTERPRETER_REQUEST_CHANGES)

    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required when requesting changes")

    now = utcnow()
    _compare_and_swap(
        db, plan, expected, result.new_status, now,
        interpreter_reviewed_by_id=session.user_id,
        interpreter_reviewed_at=now,
        interpreter_notes=reason,
    )
    audit_service.log_event(
        db,
        tenant_id=plan.tenant_id,
        action=AuditAction.INTERPRETER_CHANGES_REQUESTED,
        care_plan_id=plan.id,
        actor_user_id=session.user_id,
        details={"reason": reason},
        request=request,
    )
    _commit(db, plan)
    return plan


async def send(
    db: Session,
    session: UserSession,
    plan_id: UUID,
    patient_details: PatientDetails,
    notifier: Notifier,
    request: Request | None = None,
) -> SendResult:
    """
    approved -> sent, then notify the patient.

    The transition (patient, token, first check-in, audit) commits first.
    A notification failure afterwards is reported in the result and audited;
    it never rolls the transition back and is not retried.
    """
    plan = _load_plan(db, plan_id)
    tenant_scope.authorize(session, Action.SEND_CARE_PLAN, plan.tenant_id)
    _check_transition(plan, Transition.SEND)

    patient = patient_service.resolve_or_create(
        db, plan.tenant_id, patient_details, default_language=plan.translated_language
    )
    # resolve_or_create may roll back on a concurrent insert; re-check the state
    result = _check_transition(plan, Transition.SEND)
    expected = plan.status

    now = utcnow()
    token, expires_at = access_token_service.issue(now)
    first_check_in_at = now + timedelta(hours=settings.CHECK_IN_FIRST_DELAY_HOURS)

    _compare_and_swap(
        db, plan, expected, result.new_status, now,
        patient_id=patient.id,
        access_token=token,
        access_token_expires_at=expires_at,
        sent_at=now,
    )
    db.add(
        CheckIn(
            care_plan_id=plan.id,
            patient_id=patient.id,
            tenant_id=plan.tenant_id,
            attempt_number=1,
            scheduled_for=first_check_in_at,
        )
    )
    audit_service.log_event(
        db,
        tenant_id=plan.tenant_id,
        action=AuditAction.SENT,
        care_plan_id=plan.id,
        actor_user_id=session.user_id,
        details={
            "patient_id": str(patient.id),
            "check_in_scheduled_for": first_check_in_at.isoformat(),
        },
        request=request,
    )
    _commit(db, plan)

    delivery = await _notify_care_plan(notifier, patient, token)
    if not delivery.delivered:
        logger.warning(
            "Care plan sent but patient notification failed",
            extra=build_log_context(care_plan_id=plan.id, tenant_id=plan.tenant_id),
        )
        audit_service.log_event(
            db,
            tenant_id=plan.tenant_id,
            action=AuditAction.NOTIFICATION_FAILED,
            care_plan_id=plan.id,
            details={"kind": "care_plan", "error": delivery.error},
        )
        _commit(db, plan)

    return SendResult(
        care_plan=plan,
        sent=True,
        notified=delivery.delivered,
        email_sent=delivery.email_sent,
        sms_sent=delivery.sms_sent,
    )


async def _notify_care_plan(notifier: Notifier, patient, token: str) -> DeliveryResult:
    link = access_token_service.build_patient_link(token)
    try:
        return await notifier.send_care_plan(patient, link)
    except (UpstreamFailure, httpx.HTTPError) as e:
        return DeliveryResult(email_sent=False, error=str(e) or e.__class__.__name__)


def _completion_facts(plan: CarePlan, now: datetime, requested_by_user: bool) -> CompletionFacts:
    return CompletionFacts(
        sent_at=plan.sent_at,
        has_response=any(ci.responded_at is not None for ci in plan.check_ins),
        now=now,
        window_days=settings.COMPLETION_WINDOW_DAYS,
        requested_by_user=requested_by_user,
    )


def mark_completed(
    db: Session,
    session: UserSession,
    plan_id: UUID,
    now: datetime | None = None,
    request: Request | None = None,
) -> CarePlan:
    """sent -> completed when the configured completion policy allows it."""
    plan = _load_plan(db, plan_id)
    tenant_scope.authorize(session, Action.COMPLETE_CARE_PLAN, plan.tenant_id)
    expected = plan.status
    result = _check_transition(plan, Transition.COMPLETE)

    now = now or utcnow()
    if not completion_allowed(settings.COMPLETION_POLICY, _completion_facts(plan, now, True)):
        raise InvalidTransition("Care plan is not yet eligible for completion")

    _compare_and_swap(db, plan, expected, result.new_status, now, completed_at=now)
    audit_service.log_event(
        db,
        tenant_id=plan.tenant_id,
        action=AuditAction.COMPLETED,
        care_plan_id=plan.id,
        actor_user_id=session.user_id,
        details={"policy": settings.COMPLETION_POLICY},
        request=request,
    )
    _commit(db, plan)
    return plan


def complete_due_plans(db: Session, now: datetime | None = None) -> int:
    """
    System sweep: complete every sent plan the policy marks eligible.

    Runs across all tenants with no actor. Returns the number completed.
    """
    now = now or utcnow()
    plans = db.execute(
        select(CarePlan).where(CarePlan.status == CarePlanStatus.SENT.value)
    ).scalars().all()

    completed = 0
    for plan in plans:
        if not completion_allowed(
            settings.COMPLETION_POLICY, _completion_facts(plan, now, False)
        ):
            continue
        try:
            _compare_and_swap(
                db, plan, CarePlanStatus.SENT, CarePlanStatus.COMPLETED, now, completed_at=now
            )
        except InvalidTransition:
            continue
        audit_service.log_event(
            db,
            tenant_id=plan.tenant_id,
            action=AuditAction.COMPLETED,
            care_plan_id=plan.id,
            details={"policy": settings.COMPLETION_POLICY, "automatic": True},
        )
        _commit(db)
        completed += 1

    logger.info(f"Completion sweep finished: {completed} care plan(s) completed")
    return completed


def delete(
    db: Session,
    session: UserSession,
    plan_id: UUID,
    request: Request | None = None,
) -> None:
    """
    Hard-delete a plan that has not reached the patient.

    Audit entries are never rewritten: the plan's earlier entries keep
    their care_plan_id and the `deleted` entry carries it too.
    """
    plan = _load_plan(db, plan_id)
    tenant_scope.authorize(session, Action.DELETE_CARE_PLAN, plan.tenant_id)
    _check_transition(plan, Transition.DELETE)

    tenant_id = plan.tenant_id
    status = plan.status
    file_name = plan.source_file_name

    result = db.execute(
        sa_delete(CarePlan)
        .where(CarePlan.id == plan.id, CarePlan.status == status)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise InvalidTransition(f"Care plan is no longer in '{status}'")

    audit_service.log_event(
        db,
        tenant_id=tenant_id,
        action=AuditAction.DELETED,
        care_plan_id=plan_id,
        actor_user_id=session.user_id,
        details={
            "care_plan_id": str(plan_id),
            "status": status,
            "file_name": file_name,
        },
        request=request,
    )
    db.expunge(plan)
    _commit(db)
    logger.info(
        "Care plan deleted",
        extra=build_log_context(user_id=session.user_id, tenant_id=tenant_id, care_plan_id=plan_id),
    )
