"""Tenant settings and analytics schemas."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from careflow.db.enums import InterpreterReviewMode


class TenantSettingsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    slug: str
    is_demo: bool
    interpreter_review_mode: InterpreterReviewMode
    contact_email: str | None
    contact_phone: str | None


class TenantSettingsUpdate(BaseModel):
    interpreter_review_mode: InterpreterReviewMode | None = None
    contact_email: str | None = Field(None, max_length=255)
    contact_phone: str | None = Field(None, max_length=50)


class PipelineCounts(BaseModel):
    uploaded: int
    simplified: int
    translated: int
    sent_to_patient: int


class CheckInSummary(BaseModel):
    total: int
    responded: int
    response_rate: int
    green: int
    yellow: int
    red: int


class TcmSummary(BaseModel):
    total_patients_sent: int
    eligible_99495: int
    eligible_99496: int
    pending_contact: int
    not_eligible: int


class AnalyticsResponse(BaseModel):
    status_counts: dict[str, int]
    pipeline: PipelineCounts
    check_ins: CheckInSummary
    tcm: TcmSummary
