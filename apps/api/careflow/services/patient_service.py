"""Patient resolution (match by tenant + e-mail, else create)."""

import logging
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from careflow.db.enums import ENGLISH
from careflow.db.models import Patient
from careflow.schemas.care_plans import PatientDetails

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_by_email(db: Session, tenant_id: UUID, email: str) -> Patient | None:
    return db.execute(
        select(Patient).where(
            Patient.tenant_id == tenant_id,
            func.lower(Patient.email) == normalize_email(email),
        )
    ).scalar_one_or_none()


def resolve_or_create(
    db: Session,
    tenant_id: UUID,
    details: PatientDetails,
    default_language: str | None = None,
) -> Patient:
    """
    Existing patient of this tenant with the same e-mail, else a new one.

    A concurrent create of the same patient loses on the unique constraint;
    the transaction is rolled back and the winner's row is returned.
    """
    existing = get_by_email(db, tenant_id, details.email)
    if existing:
        if details.phone and not existing.phone:
            existing.phone = details.phone
        return existing

    patient = Patient(
        tenant_id=tenant_id,
        name=details.name.strip(),
        last_name=details.last_name.strip() if details.last_name else None,
        email=normalize_email(details.email),
        phone=details.phone,
        year_of_birth=details.year_of_birth,
        preferred_language=details.preferred_language or default_language or ENGLISH,
    )
    db.add(patient)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.info(f"Patient created concurrently in tenant {tenant_id}, reusing it")
        existing = get_by_email(db, tenant_id, details.email)
        if existing is None:
            raise
        return existing
    return patient
