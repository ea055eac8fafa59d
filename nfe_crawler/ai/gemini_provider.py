"""Google Gemini provider using the google-genai SDK.

Sends the static instructions and the variable payload as separate parts of a
single user turn, with a JSON response mime type.

See: https://googleapis.github.io/python-genai/
"""

import logging
import os

import httpx
from google import genai
from google.genai import errors, types

from nfe_crawler.ai.base import (
    AIProvider,
    GenerationResult,
    PromptParts,
    ProviderError,
    ProviderOverloadedError,
    is_overload_message,
)
from nfe_crawler.shared.config import Settings

logger = logging.getLogger(__name__)


class GeminiProvider(AIProvider):
    """Gemini provider (default model gemini-2.5-flash).

    Requires APP_AI_API_KEY or GEMINI_API_KEY.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize Gemini provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._client: genai.Client | None = None

    @property
    def provider_name(self) -> str:
        return "gemini"

    def is_available(self) -> bool:
        return bool(self._api_key())

    def _api_key(self) -> str | None:
        return self.settings.ai_api_key or os.getenv("GEMINI_API_KEY")

    def _get_client(self) -> genai.Client:
        if self._client is None:
            api_key = self._api_key()
            if not api_key:
                raise ProviderError("GEMINI_API_KEY environment variable not set")
            self._client = genai.Client(api_key=api_key)
        return self._client

    def generate(self, prompt: PromptParts, timeout: float | None = None) -> GenerationResult:
        client = self._get_client()
        timeout_ms = int(self._effective_timeout(timeout) * 1000)

        try:
            response = client.models.generate_content(
                model=self.settings.ai_model,
                contents=[
                    types.Content(
                        role="user",
                        parts=[types.Part(text=prompt.static), types.Part(text=prompt.variable)],
                    )
                ],
                config=types.GenerateContentConfig(
                    temperature=self.settings.ai_temperature,
                    max_output_tokens=self.settings.ai_max_tokens,
                    response_mime_type="application/json",
                    http_options=types.HttpOptions(timeout=timeout_ms),
                ),
            )
        except errors.APIError as e:
            message = f"Gemini API error ({e.code}): {e.message}"
            if e.code == 503 or is_overload_message(str(e)):
                raise ProviderOverloadedError(message) from e
            raise ProviderError(message) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Gemini transport error: {type(e).__name__}") from e

        if not response.candidates:
            raise ProviderError(
                f"Gemini returned no response candidates: {response.prompt_feedback}"
            )

        candidate = response.candidates[0]
        finish_reason = candidate.finish_reason
        truncated = finish_reason == types.FinishReason.MAX_TOKENS
        if finish_reason not in (None, types.FinishReason.STOP) and not truncated:
            raise ProviderError(f"Gemini response blocked: {finish_reason}")

        logger.debug(f"Gemini call finished: {finish_reason}")

        usage = response.usage_metadata
        text = response.text or ""
        if not text.strip() and not truncated:
            raise ProviderError("Gemini returned empty response text")

        return GenerationResult(
            text=text,
            input_tokens=usage.prompt_token_count if usage else None,
            output_tokens=usage.candidates_token_count if usage else None,
            cached_tokens=usage.cached_content_token_count if usage else None,
            truncated=truncated,
        )
