"""OpenAI-based provider using chat completions.

The static prompt section goes into the system message and the variable
payload into the user message, so repeated calls share a cacheable prefix.

This provider uses the cloud OpenAI API. For self-hosted inference, use
OllamaProvider instead.
"""

import os

from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI

from nfe_crawler.ai.base import (
    AIProvider,
    GenerationResult,
    PromptParts,
    ProviderError,
    ProviderOverloadedError,
    is_overload_message,
)
from nfe_crawler.shared.config import Settings


class OpenAIProvider(AIProvider):
    """OpenAI chat completions provider.

    Requires APP_AI_API_KEY or OPENAI_API_KEY.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize OpenAI provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._client: OpenAI | None = None

    @property
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier 'openai'
        """
        return "openai"

    def is_available(self) -> bool:
        """Check if an OpenAI API key is configured.

        Returns:
            True if APP_AI_API_KEY or OPENAI_API_KEY is set
        """
        return bool(self._api_key())

    def _api_key(self) -> str | None:
        return self.settings.ai_api_key or os.getenv("OPENAI_API_KEY")

    def generate(self, prompt: PromptParts, timeout: float | None = None) -> GenerationResult:
        """Call chat completions with the two-part prompt.

        Args:
            prompt: Static (system) and variable (user) sections
            timeout: Remaining caller budget in seconds

        Returns:
            GenerationResult with usage; finish_reason 'length' marks truncation

        Raises:
            ProviderOverloadedError: HTTP 503 or overload message
            ProviderError: Missing key, other API errors, transport failures
        """
        api_key = self._api_key()
        if not api_key:
            raise ProviderError("OPENAI_API_KEY environment variable not set")

        # Initialize client if not already done
        if self._client is None or self._client.api_key != api_key:
            self._client = OpenAI(api_key=api_key, max_retries=0)

        try:
            response = self._client.with_options(
                timeout=self._effective_timeout(timeout)
            ).chat.completions.create(
                model=self.settings.ai_model,
                messages=[
                    {"role": "system", "content": prompt.static},
                    {"role": "user", "content": prompt.variable},
                ],
                temperature=self.settings.ai_temperature,
                max_tokens=self.settings.ai_max_tokens,
            )
        except APIStatusError as e:
            message = f"OpenAI API error ({e.status_code}): {e.message}"
            if e.status_code == 503 or is_overload_message(e.message):
                raise ProviderOverloadedError(message) from e
            raise ProviderError(message) from e
        except (APITimeoutError, APIConnectionError) as e:
            raise ProviderError(f"OpenAI transport error: {type(e).__name__}") from e

        if not response.choices:
            raise ProviderError("OpenAI returned no choices")

        choice = response.choices[0]
        usage = response.usage
        cached_tokens = None
        if usage and usage.prompt_tokens_details:
            cached_tokens = usage.prompt_tokens_details.cached_tokens

        return GenerationResult(
            text=choice.message.content or "",
            input_tokens=usage.prompt_tokens if usage else None,
            output_tokens=usage.completion_tokens if usage else None,
            cached_tokens=cached_tokens,
            truncated=choice.finish_reason == "length",
        )
