"""Outbound patient notifications: e-mail via Resend, SMS via Twilio.

E-mail is the required channel; SMS is attempted only when the patient has a
phone number and Twilio is configured. Delivery never raises: callers get a
DeliveryResult and decide what a failure means for them.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from careflow.core.config import settings
from careflow.db.models import Patient
from careflow.services.http_service import DEFAULT_RETRY_STATUSES, request_with_retries

logger = logging.getLogger(__name__)

RESEND_SEND_URL = "https://api.resend.com/emails"
TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"
NOTIFY_MAX_ATTEMPTS = 3
NOTIFY_TIMEOUT_SECONDS = 20.0


@dataclass
class DeliveryResult:
    email_sent: bool
    sms_sent: bool = False
    error: str | None = None

    @property
    def delivered(self) -> bool:
        return self.email_sent


class Notifier(Protocol):
    """Contract the care plan and check-in services consume."""

    async def send_care_plan(self, patient: Patient, link: str) -> DeliveryResult: ...

    async def send_check_in(self, patient: Patient, link: str, attempt: int) -> DeliveryResult: ...


# =============================================================================
# Templates
# =============================================================================

def _email_html(greeting_name: str, paragraphs: list[str], button_label: str, link: str) -> str:
    body = "".join(f"<p>{p}</p>" for p in paragraphs)
    return (
        "<!DOCTYPE html><html><body style=\"font-family: sans-serif; max-width: 600px; margin: 0 auto;\">"
        f"<h2>Hi {html.escape(greeting_name)},</h2>{body}"
        f"<p style=\"text-align: center;\"><a href=\"{html.escape(link, quote=True)}\">{button_label}</a></p>"
        "<p style=\"color: #64748b; font-size: 12px;\">"
        "This message was sent on behalf of your healthcare provider. Please do not reply.</p>"
        "</body></html>"
    )


def care_plan_email(patient: Patient, link: str) -> tuple[str, str]:
    subject = f"{patient.name}, your care instructions are ready"
    content = _email_html(
        patient.name,
        [
            "Your care instructions from your recent hospital visit are now ready.",
            "They have been simplified and translated for you.",
        ],
        "View My Care Plan",
        link,
    )
    return subject, content


def check_in_email(patient: Patient, link: str, attempt: int) -> tuple[str, str]:
    if attempt == 1:
        subject = f"{patient.name}, how are you feeling today?"
    else:
        subject = f"{patient.name}, we haven't heard from you"
    content = _email_html(
        patient.name,
        [
            "We're checking in to see how you're doing after your recent hospital visit.",
            "Please take a moment to let us know how you're feeling.",
        ],
        "Check In Now",
        link,
    )
    return subject, content


# =============================================================================
# HTTP notifier
# =============================================================================

class HttpNotifier:
    """Resend (e-mail) + Twilio (SMS) over httpx."""

    def __init__(
        self,
        resend_api_key: str | None = None,
        email_from: str | None = None,
        twilio_sid: str | None = None,
        twilio_token: str | None = None,
        twilio_from: str | None = None,
    ):
        self.resend_api_key = resend_api_key if resend_api_key is not None else settings.RESEND_API_KEY
        self.email_from = email_from or settings.EMAIL_FROM
        self.twilio_sid = twilio_sid if twilio_sid is not None else settings.TWILIO_ACCOUNT_SID
        self.twilio_token = twilio_token if twilio_token is not None else settings.TWILIO_AUTH_TOKEN
        self.twilio_from = twilio_from if twilio_from is not None else settings.TWILIO_FROM_NUMBER

    @property
    def sms_enabled(self) -> bool:
        return bool(self.twilio_sid and self.twilio_token and self.twilio_from)

    async def send_care_plan(self, patient: Patient, link: str) -> DeliveryResult:
        subject, content = care_plan_email(patient, link)
        sms_body = f"Hi {patient.name}, your care plan is ready. Access it here: {link}"
        return await self._deliver(patient, subject, content, sms_body)

    async def send_check_in(self, patient: Patient, link: str, attempt: int) -> DeliveryResult:
        subject, content = check_in_email(patient, link, attempt)
        sms_body = f"Hi {patient.name}, how are you feeling? Please complete your check-in: {link}"
        return await self._deliver(patient, subject, content, sms_body)

    async def _deliver(
        self, patient: Patient, subject: str, content: str, sms_body: str
    ) -> DeliveryResult:
        email_sent, error = await self._send_email(patient.email, subject, content)
        sms_sent = False
        if patient.phone and self.sms_enabled:
            sms_sent = await self._send_sms(patient.phone, sms_body)
        return DeliveryResult(email_sent=email_sent, sms_sent=sms_sent, error=error)

    async def _send_email(self, to: str, subject: str, content: str) -> tuple[bool, str | None]:
        if not self.resend_api_key:
            logger.warning("RESEND_API_KEY not configured, skipping e-mail")
            return False, "Email not configured"

        headers = {
            "Authorization": f"Bearer {self.resend_api_key}",
            "Content-Type": "application/json",
        }
        payload = {"from": self.email_from, "to": [to], "subject": subject, "html": content}

        try:
            async with httpx.AsyncClient(timeout=NOTIFY_TIMEOUT_SECONDS) as client:

                async def request_fn() -> httpx.Response:
                    return await client.post(RESEND_SEND_URL, headers=headers, json=payload)

                response = await request_with_retries(
                    request_fn,
                    max_attempts=NOTIFY_MAX_ATTEMPTS,
                    retry_statuses=DEFAULT_RETRY_STATUSES,
                )
        except httpx.TimeoutException:
            logger.warning("Resend timeout")
            return False, "Connection timeout"
        except httpx.HTTPError as e:
            logger.warning(f"Resend connection error: {e.__class__.__name__}")
            return False, f"Connection error: {e.__class__.__name__}"

        if 200 <= response.status_code < 300:
            return True, None
        logger.warning(f"Resend rejected e-mail with status {response.status_code}")
        return False, f"Email provider returned {response.status_code}"

    async def _send_sms(self, to: str, body: str) -> bool:
        url = TWILIO_MESSAGES_URL.format(sid=self.twilio_sid)
        data = {"To": to, "From": self.twilio_from, "Body": body}
        try:
            async with httpx.AsyncClient(
                timeout=NOTIFY_TIMEOUT_SECONDS, auth=(self.twilio_sid, self.twilio_token)
            ) as client:

                async def request_fn() -> httpx.Response:
                    return await client.post(url, data=data)

                response = await request_with_retries(request_fn, max_attempts=NOTIFY_MAX_ATTEMPTS)
        except httpx.HTTPError as e:
            logger.warning(f"Twilio connection error: {e.__class__.__name__}")
            return False
        if 200 <= response.status_code < 300:
            return True
        logger.warning(f"Twilio rejected SMS with status {response.status_code}")
        return False
