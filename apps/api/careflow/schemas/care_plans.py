"""Care plan request/response schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from careflow.db.enums import BillingEligibility, CarePlanStatus


# =============================================================================
# Content sections (text-processing contract)
# =============================================================================

class Medication(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    dose: str | None = None
    frequency: str | None = None
    instructions: str | None = None


class Appointment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    date: str | None = None
    time: str | None = None
    provider: str | None = None
    location: str | None = None
    purpose: str | None = None


class PlanSections(BaseModel):
    """Structured discharge content at one stage (extracted, simplified, translated)."""

    model_config = ConfigDict(extra="ignore")

    diagnosis: str = ""
    instructions: str = ""
    warnings: str = ""
    medications: list[Medication] = []
    appointments: list[Appointment] = []


class BackTranslation(BaseModel):
    """English rendering of translated text, for reviewers only."""

    model_config = ConfigDict(extra="ignore")

    diagnosis: str | None = None
    instructions: str | None = None
    warnings: str | None = None


# =============================================================================
# Requests
# =============================================================================

class CarePlanCreate(BaseModel):
    """Uploaded discharge document (text already extracted)."""
    source_file_name: str = Field(..., min_length=1, max_length=255)
    source_text: str
    extracted: PlanSections | None = None


class ProcessRequest(BaseModel):
    target_language: str = Field(..., min_length=2, max_length=10)


class ApproveRequest(BaseModel):
    skip_interpreter_review: bool | None = None
    override_justification: str | None = Field(None, max_length=2000)


class PatientDetails(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    last_name: str | None = Field(None, max_length=100)
    email: EmailStr
    phone: str | None = Field(None, max_length=50)
    year_of_birth: int | None = Field(None, ge=1900, le=2100)
    preferred_language: str | None = Field(None, max_length=10)


class InterpreterEdits(BaseModel):
    """Fields an interpreter may overwrite; omitted fields keep their value."""
    simplified_diagnosis: str | None = None
    simplified_instructions: str | None = None
    simplified_warnings: str | None = None
    translated_diagnosis: str | None = None
    translated_instructions: str | None = None
    translated_warnings: str | None = None
    translated_medications: list[Medication] | None = None
    translated_appointments: list[Appointment] | None = None


class InterpreterApproveRequest(BaseModel):
    edits: InterpreterEdits = InterpreterEdits()
    notes: str | None = Field(None, max_length=4000)


class RequestChangesRequest(BaseModel):
    reason: str = Field(..., max_length=4000)


# =============================================================================
# Responses
# =============================================================================

class CarePlanListItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    clinician_id: UUID
    patient_id: UUID | None
    status: CarePlanStatus
    source_file_name: str | None
    translated_language: str | None
    changes_requested: bool
    created_at: datetime
    updated_at: datetime


class CarePlanRead(CarePlanListItem):
    """Staff view: every stage of the content plus review metadata."""

    diagnosis: str | None
    instructions: str | None
    warnings: str | None
    medications: list | None
    appointments: list | None
    simplified_diagnosis: str | None
    simplified_instructions: str | None
    simplified_warnings: str | None
    simplified_medications: list | None
    simplified_appointments: list | None
    translated_diagnosis: str | None
    translated_instructions: str | None
    translated_warnings: str | None
    translated_medications: list | None
    translated_appointments: list | None
    back_translated_diagnosis: str | None
    back_translated_instructions: str | None
    back_translated_warnings: str | None
    interpreter_reviewed_by_id: UUID | None
    interpreter_reviewed_at: datetime | None
    interpreter_notes: str | None
    approved_by_id: UUID | None
    approved_at: datetime | None
    sent_at: datetime | None
    completed_at: datetime | None
    billing_eligibility: BillingEligibility | None = None


class SendResponse(BaseModel):
    care_plan: CarePlanRead
    notified: bool
    email_sent: bool
    sms_sent: bool


class AuditEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    actor_user_id: UUID | None
    details: dict | None
    created_at: datetime
