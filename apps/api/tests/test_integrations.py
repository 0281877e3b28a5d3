"""Outbound integrations: retry helper, text processor, notifier."""
import json

import httpx
import pytest

from careflow.core.errors import UpstreamFailure
from careflow.db.models import Patient
from careflow.schemas.care_plans import PlanSections
from careflow.services import http_service
from careflow.services.http_service import request_with_retries
from careflow.services.notification_service import HttpNotifier
from careflow.services.text_processing import OpenAITextProcessor


@pytest.fixture
def mock_http(monkeypatch):
    """Route every httpx.AsyncClient through a MockTransport handler."""
    real_client = httpx.AsyncClient
    calls: list[httpx.Request] = []

    def install(handler):
        def recording_handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return handler(request)

        def factory(*args, **kwargs):
            kwargs["transport"] = httpx.MockTransport(recording_handler)
            return real_client(*args, **kwargs)

        monkeypatch.setattr(httpx, "AsyncClient", factory)
        return calls

    return install


def _completion(content: dict | str) -> httpx.Response:
    body = content if isinstance(content, str) else json.dumps(content)
    return httpx.Response(200, json={"choices": [{"message": {"content": body}}]})


# =============================================================================
# Retry helper
# =============================================================================

async def test_retry_returns_after_transient_503():
    req = httpx.Request("POST", "https://example.com")
    responses = [httpx.Response(503, request=req), httpx.Response(201, request=req)]

    async def request_fn():
        return responses.pop(0)

    response = await request_with_retries(request_fn, base_delay=0, max_delay=0)

    assert response.status_code == 201
    assert responses == []


async def test_retry_does_not_repeat_client_errors():
    req = httpx.Request("POST", "https://example.com")
    attempts = []

    async def request_fn():
        attempts.append(1)
        return httpx.Response(400, request=req)

    response = await request_with_retries(request_fn, base_delay=0, max_delay=0)

    assert response.status_code == 400
    assert len(attempts) == 1


async def test_retry_reraises_last_transport_error():
    req = httpx.Request("POST", "https://example.com")

    async def request_fn():
        raise httpx.ConnectTimeout("slow", request=req)

    with pytest.raises(httpx.ConnectTimeout):
        await request_with_retries(request_fn, max_attempts=2, base_delay=0, max_delay=0)


async def test_retry_waits_for_retry_after(monkeypatch):
    req = httpx.Request("POST", "https://example.com")
    responses = [
        httpx.Response(429, headers={"Retry-After": "2"}, request=req),
        httpx.Response(503, headers={"Retry-After": "120"}, request=req),
        httpx.Response(202, request=req),
    ]
    waits = []

    async def fake_sleep(seconds):
        waits.append(seconds)

    async def request_fn():
        return responses.pop(0)

    monkeypatch.setattr(http_service.asyncio, "sleep", fake_sleep)

    response = await request_with_retries(request_fn, base_delay=0, max_delay=4.0)

    assert response.status_code == 202
    assert waits == [2.0, 4.0]


# =============================================================================
# Text processor
# =============================================================================

async def test_extract_parses_sections(mock_http):
    calls = mock_http(
        lambda request: _completion(
            {
                "diagnosis": "Pneumonia",
                "instructions": "Rest",
                "warnings": "Fever",
                "medications": [{"name": "Amoxicillin", "dose": "500mg"}],
            }
        )
    )
    processor = OpenAITextProcessor(api_key="sk-test", base_url="https://llm.test/v1")

    sections = await processor.extract("Discharge summary text")

    assert sections.diagnosis == "Pneumonia"
    assert sections.medications[0].name == "Amoxicillin"
    assert str(calls[0].url) == "https://llm.test/v1/chat/completions"
    assert calls[0].headers["Authorization"] == "Bearer sk-test"
    assert json.loads(calls[0].content)["response_format"] == {"type": "json_object"}


async def test_translate_returns_back_translation(mock_http):
    replies = [
        _completion({"diagnosis": "Neumonía", "instructions": "Descanse", "warnings": "Fiebre"}),
        _completion({"diagnosis": "Pneumonia", "instructions": "Rest", "warnings": "Fever"}),
    ]
    calls = mock_http(lambda request: replies.pop(0))
    processor = OpenAITextProcessor(api_key="sk-test")

    result = await processor.translate(PlanSections(diagnosis="Lung infection"), "Spanish")

    assert result.sections.diagnosis == "Neumonía"
    assert result.back_translation.diagnosis == "Pneumonia"
    assert len(calls) == 2


async def test_http_error_becomes_upstream_failure(mock_http):
    mock_http(lambda request: httpx.Response(401, json={"error": "bad key"}))
    processor = OpenAITextProcessor(api_key="sk-test")

    with pytest.raises(UpstreamFailure):
        await processor.simplify(PlanSections(diagnosis="Pneumonia"))


async def test_malformed_json_becomes_upstream_failure(mock_http):
    mock_http(lambda request: _completion("this is not json"))
    processor = OpenAITextProcessor(api_key="sk-test")

    with pytest.raises(UpstreamFailure):
        await processor.extract("Discharge summary text")


async def test_missing_api_key_is_upstream_failure(mock_http):
    calls = mock_http(lambda request: _completion({}))

    with pytest.raises(UpstreamFailure):
        await OpenAITextProcessor(api_key="").extract("Discharge summary text")
    assert calls == []


# =============================================================================
# Notifier
# =============================================================================

def _patient(phone: str | None = None) -> Patient:
    return Patient(name="Maria", last_name="Lopez", email="maria@example.com", phone=phone)


async def test_email_without_api_key_is_not_delivered(mock_http):
    calls = mock_http(lambda request: httpx.Response(200))
    notifier = HttpNotifier(resend_api_key="", twilio_sid="")

    result = await notifier.send_care_plan(_patient(), "https://portal.test/patient/abc")

    assert result.delivered is False
    assert result.error == "Email not configured"
    assert calls == []


async def test_care_plan_email_and_sms(mock_http):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.resend.com":
            return httpx.Response(200, json={"id": "email_1"})
        return httpx.Response(201, json={"sid": "SM1"})

    calls = mock_http(handler)
    notifier = HttpNotifier(
        resend_api_key="re_test",
        twilio_sid="AC123",
        twilio_token="token",
        twilio_from="+15550000",
    )

    result = await notifier.send_care_plan(
        _patient(phone="+15550100"), "https://portal.test/patient/abc"
    )

    assert result.email_sent is True
    assert result.sms_sent is True
    email = json.loads(calls[0].content)
    assert email["to"] == ["maria@example.com"]
    assert "https://portal.test/patient/abc" in email["html"]
    assert calls[1].url.path == "/2010-04-01/Accounts/AC123/Messages.json"


async def test_rejected_email_reports_status(mock_http):
    mock_http(lambda request: httpx.Response(422, json={"message": "invalid"}))
    notifier = HttpNotifier(resend_api_key="re_test", twilio_sid="")

    result = await notifier.send_check_in(_patient(), "https://portal.test/patient/abc", 2)

    assert result.delivered is False
    assert "422" in result.error
