"""Enum definitions for application constants."""

from enum import Enum


class Role(str, Enum):
    """
    User roles.

    - SUPER_ADMIN: Platform operator, no tenant, exempt from tenant checks
    - ADMIN: Clinic administrator (settings, alerts, exports)
    - CLINICIAN: Uploads, approves and sends care plans
    - INTERPRETER: Reviews machine translations for qualified languages
    """
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    CLINICIAN = "clinician"
    INTERPRETER = "interpreter"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_


class CarePlanStatus(str, Enum):
    """
    Care plan workflow position.

    draft -> pending_review -> [interpreter_review -> interpreter_approved ->]
    approved -> sent -> completed
    """
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    INTERPRETER_REVIEW = "interpreter_review"
    INTERPRETER_APPROVED = "interpreter_approved"
    APPROVED = "approved"
    SENT = "sent"
    COMPLETED = "completed"


# Statuses after patient contact: never deleted, check-ins allowed
DELIVERED_STATUSES = frozenset({CarePlanStatus.SENT, CarePlanStatus.COMPLETED})
DELETABLE_STATUSES = frozenset(set(CarePlanStatus) - DELIVERED_STATUSES)


class InterpreterReviewMode(str, Enum):
    """Tenant policy for human review of machine translations."""
    DISABLED = "disabled"
    OPTIONAL = "optional"
    REQUIRED = "required"


class CheckInResponse(str, Enum):
    """Traffic-light check-in answers."""
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


ALERT_RESPONSES = frozenset({CheckInResponse.YELLOW, CheckInResponse.RED})


class CompletionPolicy(str, Enum):
    """What allows a sent care plan to be marked completed."""
    MANUAL = "manual"
    CHECK_IN_RESPONSE = "check_in_response"
    ELAPSED = "elapsed"


class BillingEligibility(str, Enum):
    """TCM billing eligibility derived from workflow timestamps."""
    NOT_SENT = "not_sent"
    PENDING_CONTACT = "pending_contact"
    CPT_99496 = "99496"
    CPT_99495 = "99495"
    NOT_ELIGIBLE = "not_eligible"


class AuditAction(str, Enum):
    """
    Audit trail action tags.

    Care plan transitions, patient portal events and tenant-level events.
    """
    # Workflow
    UPLOADED = "uploaded"
    PROCESSED = "processed"
    SENT_TO_INTERPRETER = "sent_to_interpreter"
    INTERPRETER_APPROVED = "interpreter_approved"
    INTERPRETER_CHANGES_REQUESTED = "interpreter_changes_requested"
    APPROVED = "approved"
    SENT = "sent"
    COMPLETED = "completed"
    DELETED = "deleted"

    # Patient portal
    VIEWED = "viewed"
    CHECK_IN_SCHEDULED = "check_in_scheduled"
    CHECK_IN_SENT = "check_in_sent"
    CHECK_IN_RESPONDED = "check_in_responded"

    # Staff follow-up
    ALERT_RESOLVED = "alert_resolved"
    NOTIFICATION_FAILED = "notification_failed"

    # Tenant
    TENANT_SETTINGS_UPDATED = "tenant_settings_updated"
    DATA_EXPORTED = "data_exported"


# Languages the text processor can target (code -> display name)
SUPPORTED_LANGUAGES: dict[str, str] = {
    "en": "English",
    "es": "Spanish",
    "zh": "Chinese (Simplified)",
    "zh-TW": "Chinese (Traditional)",
    "vi": "Vietnamese",
    "tl": "Tagalog",
    "ko": "Korean",
    "ru": "Russian",
    "ar": "Arabic",
    "fr": "French",
    "pt": "Portuguese",
    "hi": "Hindi",
    "ur": "Urdu",
    "fa": "Farsi",
    "pl": "Polish",
    "ht": "Haitian Creole",
    "ja": "Japanese",
    "bn": "Bengali",
    "pa": "Punjabi",
    "th": "Thai",
    "so": "Somali",
    "sw": "Swahili",
    "de": "German",
    "it": "Italian",
    "el": "Greek",
    "tr": "Turkish",
    "he": "Hebrew",
    "uk": "Ukrainian",
}

ENGLISH = "en"
