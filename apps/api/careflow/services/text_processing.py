"""Text-processing collaborator: extraction, simplification, translation.

The state machine only depends on the TextProcessor protocol. The default
implementation calls an OpenAI-compatible chat completions endpoint in JSON
mode. Any transport, HTTP or parse failure surfaces as UpstreamFailure.
"""

import json
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from careflow.core.config import settings
from careflow.core.errors import UpstreamFailure
from careflow.schemas.care_plans import BackTranslation, PlanSections
from careflow.services.http_service import request_with_retries

logger = logging.getLogger(__name__)

SECTIONS_SHAPE = """{
  "diagnosis": "Primary diagnosis and conditions",
  "medications": [{"name": "Drug name", "dose": "Amount", "frequency": "How often", "instructions": "Special notes"}],
  "appointments": [{"date": "Date", "time": "Time", "provider": "Doctor name", "location": "Address", "purpose": "Reason"}],
  "instructions": "All care instructions and activity restrictions",
  "warnings": "Warning signs that require immediate medical attention"
}"""

EXTRACT_PROMPT = f"""You are a medical document parser. Extract structured information from discharge summaries.
Output valid JSON with this exact structure:
{SECTIONS_SHAPE}
Preserve all medical information accurately. Extract medications with exact dosages."""

SIMPLIFY_PROMPT = """You are a health literacy expert. Rewrite medical content for patients with limited health literacy.

RULES:
1. Use 5th grade reading level (simple words, short sentences)
2. Keep drug names EXACTLY as written
3. Use "you" and active voice
4. Break complex instructions into numbered steps
5. Replace medical jargon with everyday words
6. Keep all critical safety information

Output valid JSON with the same structure as input."""

TRANSLATE_PROMPT = """You are a medical translator. Translate health content accurately while keeping simple language.

RULES:
1. Translate to {language}
2. Keep drug names in English
3. Keep the 5th grade reading level
4. Preserve all medical accuracy

Output valid JSON with the same structure."""

BACK_TRANSLATE_PROMPT = """Translate the following {language} medical content back to English for verification.
Output JSON with these fields: {{"diagnosis": "...", "instructions": "...", "warnings": "..."}}"""


@dataclass
class TranslationResult:
    sections: PlanSections
    back_translation: BackTranslation


class TextProcessor(Protocol):
    """Contract the care plan service consumes."""

    async def extract(self, text: str) -> PlanSections: ...

    async def simplify(self, sections: PlanSections) -> PlanSections: ...

    async def translate(self, sections: PlanSections, language_name: str) -> TranslationResult: ...


class OpenAITextProcessor:
    """OpenAI-compatible chat completions, JSON response mode."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.model = model or settings.OPENAI_MODEL
        self.base_url = (base_url or settings.OPENAI_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.OPENAI_TIMEOUT_SECONDS

    async def _complete_json(self, system: str, user: str, max_tokens: int = 4096) -> dict:
        if not self.api_key:
            raise UpstreamFailure("Text processing is not configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "response_format": {"type": "json_object"},
            "max_tokens": max_tokens,
            "temperature": 0.2,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:

                async def request_fn() -> httpx.Response:
                    return await client.post(
                        f"{self.base_url}/chat/completions", headers=headers, json=payload
                    )

                response = await request_with_retries(request_fn)
                response.raise_for_status()
                data = response.json()
            content = data["choices"][0]["message"]["content"] or "{}"
            parsed = json.loads(content)
        except httpx.HTTPError as e:
            logger.warning(f"Text processing request failed: {e.__class__.__name__}")
            raise UpstreamFailure("Text processing service unavailable") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning(f"Text processing returned malformed output: {e.__class__.__name__}")
            raise UpstreamFailure("Text processing returned malformed output") from e

        if not isinstance(parsed, dict):
            raise UpstreamFailure("Text processing returned malformed output")
        return parsed

    async def extract(self, text: str) -> PlanSections:
        data = await self._complete_json(
            EXTRACT_PROMPT,
            f"Extract the following discharge summary into structured JSON:\n\n{text}",
        )
        return _parse(PlanSections, data)

    async def simplify(self, sections: PlanSections) -> PlanSections:
        data = await self._complete_json(
            SIMPLIFY_PROMPT,
            "Simplify this medical content to 5th grade reading level:\n\n"
            + sections.model_dump_json(indent=2),
        )
        return _parse(PlanSections, data)

    async def translate(self, sections: PlanSections, language_name: str) -> TranslationResult:
        data = await self._complete_json(
            TRANSLATE_PROMPT.format(language=language_name),
            f"Translate this simplified medical content to {language_name}:\n\n"
            + sections.model_dump_json(indent=2),
        )
        translated = _parse(PlanSections, data)

        back = await self._complete_json(
            BACK_TRANSLATE_PROMPT.format(language=language_name),
            f"Back-translate to English:\n\nDiagnosis: {translated.diagnosis}\n\n"
            f"Instructions: {translated.instructions}\n\nWarnings: {translated.warnings}",
            max_tokens=2048,
        )
        return TranslationResult(
            sections=translated,
            back_translation=_parse(BackTranslation, back),
        )


def _parse(model, data: dict):
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise UpstreamFailure("Text processing returned malformed output") from e
