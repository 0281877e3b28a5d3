"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from careflow.db.base import Base
from careflow.db.enums import CarePlanStatus, InterpreterReviewMode
from careflow.db.types import JsonType, utcnow


# =============================================================================
# Tenants & Users
# =============================================================================


class Tenant(Base):
    """
    A clinic in the multi-tenant system.

    All domain entities belong to a tenant
    and must be scoped by tenant_id in all queries.
    """

    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    is_demo: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    interpreter_review_mode: Mapped[str] = mapped_column(
        String(20),
        default=InterpreterReviewMode.REQUIRED.value,
        nullable=False,
    )
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class User(Base):
    """
    Staff account (clinician, interpreter, admin) or platform super admin.

    Every non-super_admin user belongs to exactly one tenant.
    """

    __tablename__ = "users"
    __table_args__ = (Index("idx_users_tenant_role", "tenant_id", "role"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    tenant_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True
    )
    # Language codes an interpreter is qualified to review (e.g. ["es", "fr"])
    languages: Mapped[list[str]] = mapped_column(JsonType, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    token_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    tenant: Mapped[Tenant | None] = relationship()


class Patient(Base):
    """Care plan recipient. Matched per tenant by e-mail."""

    __tablename__ = "patients"
    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_patients_tenant_email"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    year_of_birth: Mapped[int | None] = mapped_column(Integer, nullable=True)
    preferred_language: Mapped[str] = mapped_column(String(10), default="en", nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


# =============================================================================
# Care Plans
# =============================================================================


class CarePlan(Base):
    """
    Discharge-document-derived care plan (aggregate root).

    status moves only through careflow.services.care_plan_service.
    tenant_id is immutable and equals the clinician's and patient's tenant.
    """

    __tablename__ = "care_plans"
    __table_args__ = (
        Index("idx_care_plans_tenant_status", "tenant_id", "status"),
        Index("idx_care_plans_tenant_clinician", "tenant_id", "clinician_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    clinician_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    patient_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(30), default=CarePlanStatus.DRAFT.value, nullable=False
    )

    # Source document
    source_file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source_content: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Extracted sections
    diagnosis: Mapped[str | None] = mapped_column(Text, nullable=True)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    warnings: Mapped[str | None] = mapped_column(Text, nullable=True)
    medications: Mapped[list | None] = mapped_column(JsonType, nullable=True)
    appointments: Mapped[list | None] = mapped_column(JsonType, nullable=True)

    # Simplified (plain-language English)
    simplified_diagnosis: Mapped[str | None] = mapped_column(Text, nullable=True)
    simplified_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    simplified_warnings: Mapped[str | None] = mapped_column(Text, nullable=True)
    simplified_medications: Mapped[list | None] = mapped_column(JsonType, nullable=True)
    simplified_appointments: Mapped[list | None] = mapped_column(JsonType, nullable=True)

    # Translated
    translated_language: Mapped[str | None] = mapped_column(String(10), nullable=True)
    translated_diagnosis: Mapped[str | None] = mapped_column(Text, nullable=True)
    translated_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    translated_warnings: Mapped[str | None] = mapped_column(Text, nullable=True)
    translated_medications: Mapped[list | None] = mapped_column(JsonType, nullable=True)
    translated_appointments: Mapped[list | None] = mapped_column(JsonType, nullable=True)

    # Back-translation (reviewers only, never shown to the patient)
    back_translated_diagnosis: Mapped[str | None] = mapped_column(Text, nullable=True)
    back_translated_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    back_translated_warnings: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Interpreter review
    interpreter_reviewed_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    interpreter_reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    interpreter_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Approval
    approved_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Patient magic link
    access_token: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    access_token_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    # Relationships
    tenant: Mapped[Tenant] = relationship()
    clinician: Mapped[User] = relationship(foreign_keys=[clinician_id])
    patient: Mapped[Patient | None] = relationship()
    approved_by: Mapped[User | None] = relationship(foreign_keys=[approved_by_id])
    interpreter_reviewed_by: Mapped[User | None] = relationship(
        foreign_keys=[interpreter_reviewed_by_id]
    )
    check_ins: Mapped[list[CheckIn]] = relationship(
        back_populates="care_plan",
        order_by="CheckIn.attempt_number",
        cascade="all, delete-orphan",
    )

    @property
    def changes_requested(self) -> bool:
        """Back in pending_review carrying an interpreter's reason."""
        return self.status == CarePlanStatus.PENDING_REVIEW.value and bool(
            (self.interpreter_notes or "").strip()
        )


# =============================================================================
# Check-ins
# =============================================================================


class CheckIn(Base):
    """
    Scheduled traffic-light check-in for a sent care plan.

    Answered at most once. A yellow/red answer raises an alert that staff
    resolve exactly once (alert_resolved_at never goes back to NULL).
    """

    __tablename__ = "check_ins"
    __table_args__ = (
        UniqueConstraint("care_plan_id", "attempt_number", name="uq_check_ins_plan_attempt"),
        Index("idx_check_ins_tenant_alert", "tenant_id", "alert_created"),
        Index("idx_check_ins_due", "scheduled_for", "sent_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    care_plan_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("care_plans.id", ondelete="CASCADE"), nullable=False
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )

    # Scheduling
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    scheduled_for: Mapped[datetime] = mapped_column(nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Response
    response: Mapped[str | None] = mapped_column(String(10), nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    response_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Alert tracking
    alert_created: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    alert_resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    alert_resolved_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    care_plan: Mapped[CarePlan] = relationship(back_populates="check_ins")
    patient: Mapped[Patient] = relationship()

    @property
    def alert_resolved(self) -> bool:
        return self.alert_resolved_at is not None


# =============================================================================
# Audit
# =============================================================================


class AuditLog(Base):
    """
    Append-only audit trail.

    care_plan_id is a plain column (no foreign key) so entries outlive a
    deleted plan; it is NULL for tenant-level events (settings, exports).
    actor_user_id is NULL for patient-originated and system events.
    Ordered by (created_at, id).
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_tenant_created", "tenant_id", "created_at"),
        Index("idx_audit_plan_created", "care_plan_id", "created_at"),
    )

    # Autoincrement keeps insertion order for entries written in the same clock tick
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    tenant_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True
    )
    care_plan_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    actor_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # AuditAction
    details: Mapped[dict | None] = mapped_column(JsonType, nullable=True)

    # Request metadata
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)  # IPv6 max length
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    actor: Mapped[User | None] = relationship()
