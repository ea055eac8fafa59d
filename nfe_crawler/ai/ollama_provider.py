"""Ollama-based provider for self-hosted LLM inference.

Uses a local Ollama server for invoice parsing, so invoice HTML never leaves
the premises.

Requires Ollama server running on localhost:11434.
See: https://ollama.ai/
"""

import logging

import httpx

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


class OllamaProvider(AIProvider):
    """Ollama provider for self-hosted models (Qwen2.5, Llama3, Mistral)."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        """Initialize Ollama provider.

        Args:
            settings: Application settings
            client: Preconfigured httpx client (tests inject a MockTransport)
        """
        super().__init__(settings)
        self._base_url = settings.ollama_base_url.rstrip("/")
        self._model = settings.ai_model
        self._client = client or httpx.Client(timeout=settings.ai_timeout)

    @property
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier 'ollama'
        """
        return "ollama"

    def is_available(self) -> bool:
        """Check if Ollama server is running and model is available.

        Returns:
            True if Ollama server responds and model is loaded
        """
        try:
            response = self._client.get(f"{self._base_url}/api/tags")
            if response.status_code != 200:
                return False
            # Check if configured model is available
            models = response.json().get("models", [])
            model_names = [m.get("name", "").split(":")[0] for m in models]
            return self._model.split(":")[0] in model_names
        except (httpx.HTTPError, ValueError):
            return False

    def generate(self, prompt: PromptParts, timeout: float | None = None) -> GenerationResult:
        """Call /api/generate with the static section as system prompt.

        Args:
            prompt: Static and variable prompt sections
            timeout: Remaining caller budget in seconds

        Returns:
            GenerationResult; done_reason 'length' marks truncation

        Raises:
            ProviderOverloadedError: Server answered 503
            ProviderError: Other HTTP or transport failures
        """
        try:
            response = self._client.post(
                f"{self._base_url}/api/generate",
                json={
                    "model": self._model,
                    "system": prompt.static,
                    "prompt": prompt.variable,
                    "stream": False,
                    "format": "json",
                    "options": {
                        "temperature": self.settings.ai_temperature,
                        "num_predict": self.settings.ai_max_tokens,
                    },
                },
                timeout=self._effective_timeout(timeout),
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            message = f"Ollama error ({e.response.status_code}): {e.response.text[:200]}"
            if e.response.status_code == 503 or is_overload_message(e.response.text):
                raise ProviderOverloadedError(message) from e
            raise ProviderError(message) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Ollama transport error: {type(e).__name__}") from e
        except ValueError as e:
            raise ProviderError("Ollama returned a non-JSON envelope") from e

        logger.debug(f"Ollama call finished: {body.get('done_reason')}")

        return GenerationResult(
            text=body.get("response", ""),
            input_tokens=body.get("prompt_eval_count"),
            output_tokens=body.get("eval_count"),
            truncated=body.get("done_reason") == "length",
        )
