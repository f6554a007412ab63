# exam_insight/services/inference_client.py
"""Adapter for the external LLM used to produce exam predictions."""

from __future__ import annotations

from typing import Optional, Protocol

from openai import AsyncOpenAI, OpenAIError

from exam_insight.core.config import Settings
from exam_insight.core.exceptions import AdapterFailure
from exam_insight.core.logging import LoggerMixin

SYSTEM_PROMPT = (
    "You are an expert exam analyzer. Always respond with valid JSON only. "
    "No markdown, no explanations outside JSON."
)


class InferenceAdapter(Protocol):
    """Takes a prompt, returns the raw model text (expected to be JSON)."""

    async def complete(self, prompt: str) -> str:
        ...


class OpenAIInferenceAdapter(LoggerMixin):
    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        if not settings.OPENAI_API_KEY and client is None:
            raise AdapterFailure("OPENAI_API_KEY not set")
        self._settings = settings
        self._client = client or AsyncOpenAI(
            api_key=settings.OPENAI_API_KEY,
            timeout=settings.LLM_TIMEOUT_SECONDS,
            max_retries=0,
        )

    async def complete(self, prompt: str) -> str:
        self.logger.info(
            "Calling inference service",
            model=self._settings.LLM_MODEL,
            prompt_chars=len(prompt),
        )
        try:
            response = await self._client.chat.completions.create(
                model=self._settings.LLM_MODEL,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                response_format={"type": "json_object"},
                max_tokens=self._settings.LLM_MAX_TOKENS,
                temperature=self._settings.LLM_TEMPERATURE,
            )
        except OpenAIError as e:
            raise AdapterFailure(f"Inference request failed: {e}") from e

        if not response.choices:
            raise AdapterFailure("Inference response has no choices")
        content = response.choices[0].message.content
        if not content:
            raise AdapterFailure("Inference response is empty")
        return content


def build_inference_adapter(settings: Settings) -> Optional[InferenceAdapter]:
    """Adapter when an API key is configured, otherwise None (heuristics only)."""
    if not settings.inference_enabled:
        return None
    return OpenAIInferenceAdapter(settings)
