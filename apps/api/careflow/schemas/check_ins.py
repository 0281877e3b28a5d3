"""Check-in, alert and patient portal schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from careflow.db.enums import CarePlanStatus, CheckInResponse


class CheckInCreate(BaseModel):
    care_plan_id: UUID
    patient_id: UUID
    attempt_number: int = Field(..., ge=1)
    scheduled_for: datetime


class CheckInRespond(BaseModel):
    response: CheckInResponse
    notes: str | None = Field(None, max_length=2000)
    check_in_id: UUID | None = None  # Defaults to the current due check-in


class CheckInRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    care_plan_id: UUID
    attempt_number: int
    scheduled_for: datetime
    sent_at: datetime | None
    response: CheckInResponse | None
    responded_at: datetime | None
    alert_created: bool
    alert_resolved_at: datetime | None


class AlertRead(BaseModel):
    id: UUID
    care_plan_id: UUID
    patient_name: str
    response: CheckInResponse
    response_notes: str | None
    responded_at: datetime | None
    resolved: bool
    resolved_at: datetime | None
    resolved_by_id: UUID | None


class PatientPortalView(BaseModel):
    """What the patient sees. Never back-translations or interpreter notes."""

    care_plan_id: UUID
    status: CarePlanStatus
    patient_name: str | None
    language: str | None
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
    check_ins: list[CheckInRead]
