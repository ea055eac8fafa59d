"""Abstract base class for AI text-generation providers.

Enables switching between vendors (Gemini, OpenAI, self-hosted Ollama) selected
once from configuration, while the parser only depends on a single
"generate" capability.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python

Design follows existing patterns:
- Pydantic BaseModel for type-safe results
- ABC for interface enforcement
- Settings injection
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel

from nfe_crawler.shared.config import Settings

OVERLOAD_MARKERS = ("503", "service unavailable", "overloaded")


class PromptParts(BaseModel):
    """Two-part prompt.

    The static section never changes between calls so providers can reuse
    their prompt cache; the variable section is always sent last.
    """

    static: str
    variable: str

    def render(self) -> str:
        """Join both sections into a single prompt string."""
        return f"{self.static}\n\n{self.variable}"


class GenerationResult(BaseModel):
    """Result of a provider call.

    Attributes:
        text: Raw response text
        input_tokens: Provider-reported prompt tokens, None when not reported
        output_tokens: Provider-reported completion tokens, None when not reported
        cached_tokens: Prompt tokens served from the provider cache
        truncated: Response stopped at the max output token limit
    """

    text: str
    input_tokens: int | None = None
    output_tokens: int | None = None
    cached_tokens: int | None = None
    truncated: bool = False


class ProviderError(Exception):
    """Terminal provider failure (auth, bad request, blocked content, transport)."""


class ProviderOverloadedError(ProviderError):
    """Transient overload (HTTP 503 or equivalent); the call may be retried."""


def is_overload_message(message: str) -> bool:
    """Check an error message for a 503 / overload signal."""
    lowered = message.lower()
    return any(marker in lowered for marker in OVERLOAD_MARKERS)


class AIProvider(ABC):
    """Abstract base class for AI providers.

    Example implementations:
    - GeminiProvider: Google GenAI SDK
    - OpenAIProvider: OpenAI chat completions
    - OllamaProvider: self-hosted Ollama server
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    @abstractmethod
    def generate(self, prompt: PromptParts, timeout: float | None = None) -> GenerationResult:
        """Generate text for a two-part prompt.

        Args:
            prompt: Static and variable prompt sections
            timeout: Remaining caller budget in seconds (caps ai_timeout)

        Returns:
            GenerationResult with text, token usage and truncation flag

        Raises:
            ProviderOverloadedError: Provider signalled a transient overload
            ProviderError: Any other provider failure
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is configured (API key, reachable server).

        Returns:
            True if provider can be used, False otherwise
        """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier (e.g., 'gemini', 'openai')
        """

    def _effective_timeout(self, timeout: float | None) -> float:
        if timeout is None:
            return self.settings.ai_timeout
        return min(self.settings.ai_timeout, timeout)
