"""Factories and fake collaborators shared by the test modules."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from careflow.core.deps import COOKIE_NAME
from careflow.core.errors import UpstreamFailure
from careflow.core.security import create_session_token
from careflow.db.enums import CarePlanStatus, InterpreterReviewMode, Role
from careflow.db.models import CarePlan, CheckIn, Patient, Tenant, User
from careflow.schemas.auth import UserSession
from careflow.schemas.care_plans import BackTranslation, PatientDetails, PlanSections
from careflow.services import access_token_service
from careflow.services.notification_service import DeliveryResult
from careflow.services.text_processing import TranslationResult

SOURCE_TEXT = (
    "Discharge summary. Diagnosis: community acquired pneumonia. "
    "Take amoxicillin 500mg three times daily for 7 days."
)

PATIENT = PatientDetails(
    name="Maria", last_name="Lopez", email="Maria@Example.com", phone="+15550100"
)

CSRF_HEADERS = {"X-Requested-With": "XMLHttpRequest"}


# =============================================================================
# Factories
# =============================================================================

def make_tenant(
    db: Session,
    mode: InterpreterReviewMode = InterpreterReviewMode.REQUIRED,
    name: str = "Riverside Clinic",
) -> Tenant:
    tenant = Tenant(
        name=name,
        slug=f"clinic-{uuid.uuid4().hex[:8]}",
        interpreter_review_mode=mode.value,
    )
    db.add(tenant)
    db.commit()
    return tenant


def make_user(
    db: Session,
    tenant: Tenant | None,
    role: Role,
    languages: list[str] | None = None,
) -> User:
    user = User(
        email=f"{role.value}-{uuid.uuid4().hex[:8]}@test.com",
        display_name=f"Test {role.value.replace('_', ' ').title()}",
        role=role.value,
        tenant_id=tenant.id if tenant else None,
        languages=languages or [],
    )
    db.add(user)
    db.commit()
    return user


def session_for(user: User) -> UserSession:
    return UserSession(
        user_id=user.id,
        tenant_id=user.tenant_id,
        role=Role(user.role),
        email=user.email,
        display_name=user.display_name,
        languages=list(user.languages or []),
    )


def make_plan(
    db: Session,
    tenant: Tenant,
    clinician: User,
    status: CarePlanStatus = CarePlanStatus.DRAFT,
    language: str | None = None,
) -> CarePlan:
    """Plan row placed directly in a state (no workflow history)."""
    plan = CarePlan(
        tenant_id=tenant.id,
        clinician_id=clinician.id,
        status=status.value,
        source_file_name="discharge.pdf",
        source_content=SOURCE_TEXT,
        diagnosis="Pneumonia",
        instructions="Rest and drink fluids",
        warnings="Return if short of breath",
        medications=[],
        appointments=[],
    )
    if status != CarePlanStatus.DRAFT:
        plan.simplified_diagnosis = "Lung infection"
        plan.simplified_instructions = "Rest. Drink water."
        plan.simplified_warnings = "Come back if you cannot breathe well."
        plan.translated_language = language or "es"
        plan.translated_diagnosis = "Infección pulmonar"
        plan.translated_instructions = "Descanse. Beba agua."
        plan.translated_warnings = "Regrese si no puede respirar bien."
    db.add(plan)
    db.commit()
    return plan


def make_sent_plan(
    db: Session,
    tenant: Tenant,
    clinician: User,
    sent_at: datetime | None = None,
    scheduled_for: datetime | None = None,
    email: str = "maria@example.com",
) -> tuple[CarePlan, Patient, CheckIn, str]:
    """Sent plan with a patient, a valid token and check-in attempt 1."""
    sent_at = sent_at or datetime.now(timezone.utc)
    patient = Patient(
        tenant_id=tenant.id,
        name="Maria",
        last_name="Lopez",
        email=email,
        preferred_language="es",
    )
    db.add(patient)
    db.flush()

    plan = make_plan(db, tenant, clinician, status=CarePlanStatus.APPROVED)
    token, _ = access_token_service.issue(sent_at)
    plan.status = CarePlanStatus.SENT.value
    plan.patient_id = patient.id
    plan.access_token = token
    plan.access_token_expires_at = datetime.now(timezone.utc) + timedelta(days=30)
    plan.sent_at = sent_at
    check_in = CheckIn(
        care_plan_id=plan.id,
        patient_id=patient.id,
        tenant_id=tenant.id,
        attempt_number=1,
        scheduled_for=scheduled_for or sent_at + timedelta(hours=24),
    )
    db.add(check_in)
    db.commit()
    return plan, patient, check_in, token


def auth_cookies(user: User) -> dict[str, str]:
    token = create_session_token(
        user_id=user.id,
        tenant_id=user.tenant_id,
        role=user.role,
        token_version=user.token_version,
    )
    return {COOKIE_NAME: token}


# =============================================================================
# Collaborators
# =============================================================================

@dataclass
class FakeTextProcessor:
    """Deterministic stand-in for the LLM text processor."""

    fail_on: str | None = None  # "extract" | "simplify" | "translate"
    calls: list[str] = field(default_factory=list)

    def _maybe_fail(self, step: str) -> None:
        self.calls.append(step)
        if self.fail_on == step:
            raise UpstreamFailure("Text processing service unavailable")

    async def extract(self, source_text: str) -> PlanSections:
        self._maybe_fail("extract")
        return PlanSections(
            diagnosis="Pneumonia",
            instructions="Take amoxicillin 500mg three times daily",
            warnings="Return if fever above 39C",
            medications=[{"name": "Amoxicillin", "dose": "500mg", "frequency": "3x daily"}],
        )

    async def simplify(self, sections: PlanSections) -> PlanSections:
        self._maybe_fail("simplify")
        return PlanSections(
            diagnosis="Lung infection",
            instructions="Take your medicine three times a day",
            warnings="Come back if you have a high fever",
            medications=sections.medications,
            appointments=sections.appointments,
        )

    async def translate(self, sections: PlanSections, language_name: str) -> TranslationResult:
        self._maybe_fail("translate")
        return TranslationResult(
            sections=PlanSections(
                diagnosis="Infección pulmonar",
                instructions="Tome su medicina tres veces al día",
                warnings="Regrese si tiene fiebre alta",
                medications=sections.medications,
            ),
            back_translation=BackTranslation(
                diagnosis="Lung infection",
                instructions="Take your medicine three times a day",
                warnings="Come back if you have a high fever",
            ),
        )


@dataclass
class FakeNotifier:
    """Records outbound notifications instead of sending them."""

    fail: bool = False
    raise_upstream: bool = False
    care_plans: list[tuple[str, str]] = field(default_factory=list)
    check_ins: list[tuple[str, str, int]] = field(default_factory=list)

    async def send_care_plan(self, patient, link: str) -> DeliveryResult:
        if self.raise_upstream:
            raise UpstreamFailure("Email provider unavailable")
        if self.fail:
            return DeliveryResult(email_sent=False, error="Email provider rejected the message")
        self.care_plans.append((patient.email, link))
        return DeliveryResult(email_sent=True)

    async def send_check_in(self, patient, link: str, attempt: int) -> DeliveryResult:
        if self.raise_upstream:
            raise UpstreamFailure("Email provider unavailable")
        if self.fail:
            return DeliveryResult(email_sent=False, error="Email provider rejected the message")
        self.check_ins.append((patient.email, link, attempt))
        return DeliveryResult(email_sent=True)
