"""
Tutor LLM Client

Sends the composed turn prompt to OpenAI and parses the structured reply.
There is no placeholder output: anything the tracker could not trust raises
GenerationFailure.
"""

import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, Field, ValidationError, field_validator

from socratic_math_tutor.config import TutorSettings
from socratic_math_tutor.errors import GenerationFailure

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
_BARE_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class GenerationResult(BaseModel):
    """Structured tutor reply for one turn."""
    tutor_message: str = Field(..., min_length=1)
    intent: str = Field(..., min_length=1)
    concept_tags: List[str] = Field(default_factory=list)
    hint_level: int = 0
    student_correct: bool = False

    @field_validator("tutor_message", "intent")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("concept_tags", mode="before")
    @classmethod
    def tags_as_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


def extract_json_payload(text: str) -> Dict[str, Any]:
    """
    Pull a JSON object out of model output.

    Accepts a ```json fenced block, an object embedded in surrounding text,
    or plain JSON.

    Raises:
        ValueError: If no JSON object can be decoded
    """
    if not text or not text.strip():
        raise ValueError("empty model output")

    content = text.strip()
    fenced = _FENCED_JSON.search(content)
    if fenced:
        content = fenced.group(1)
    elif not content.startswith("{"):
        embedded = _BARE_OBJECT.search(content)
        if not embedded:
            raise ValueError("no JSON object in model output")
        content = embedded.group(0)

    payload = json.loads(content)
    if not isinstance(payload, dict):
        raise ValueError("model output is not a JSON object")
    return payload


class TutorLLMClient:
    """Async OpenAI chat client returning GenerationResult."""

    def __init__(
        self,
        settings: Optional[TutorSettings] = None,
        client: Optional[AsyncOpenAI] = None
    ):
        """
        Args:
            settings: Model, timeout and sampling settings (read from env if omitted)
            client: Pre-built AsyncOpenAI client, mainly for tests
        """
        self.settings = settings or TutorSettings.from_env()
        self.model = self.settings.openai_model
        self.timeout = self.settings.llm_timeout_seconds

        if client is not None:
            self.client = client
        else:
            # AsyncOpenAI raises OpenAIError here when no key is configured
            self.client = AsyncOpenAI(api_key=self.settings.openai_api_key or None)

    async def generate(self, prompt: str, session_id: Optional[str] = None) -> GenerationResult:
        """
        Generate the tutor's reply for one turn.

        Args:
            prompt: Fully composed turn prompt
            session_id: Only used for error context and logs

        Returns:
            Validated GenerationResult

        Raises:
            GenerationFailure: On timeout, API error or unusable output
        """
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    response_format={"type": "json_object"},
                    temperature=self.settings.llm_temperature,
                    max_tokens=self.settings.llm_max_tokens,
                ),
                timeout=self.timeout
            )
        except asyncio.TimeoutError as exc:
            logger.error(f"❌ [TutorLLM] Timed out after {self.timeout}s")
            raise GenerationFailure(f"Language model timed out after {self.timeout}s", session_id) from exc
        except OpenAIError as exc:
            logger.error(f"❌ [TutorLLM] API error: {exc}")
            raise GenerationFailure(f"Language model request failed: {exc}", session_id) from exc

        content = None
        if response.choices:
            content = response.choices[0].message.content
        if not content:
            raise GenerationFailure("Language model returned empty content", session_id)

        try:
            payload = extract_json_payload(content)
        except ValueError as exc:
            # json.JSONDecodeError is a ValueError
            logger.error(f"❌ [TutorLLM] Unparsable output: {content[:200]}")
            raise GenerationFailure(f"Language model returned invalid JSON: {exc}", session_id) from exc

        try:
            result = GenerationResult.model_validate(payload)
        except ValidationError as exc:
            logger.error(f"❌ [TutorLLM] Output failed validation: {exc.errors()}")
            raise GenerationFailure("Language model output is missing required fields", session_id) from exc

        logger.debug(
            f"🔍 [TutorLLM] intent={result.intent} tags={result.concept_tags} correct={result.student_correct}"
        )
        return result
