"""Factory for creating AI providers based on configuration.

Implements Factory Pattern for provider selection with registry pattern for extensibility.

Based on:
- Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22

The provider is chosen once at construction time; call sites never branch on
the provider name.
"""

import logging

from nfe_crawler.ai.base import AIProvider
from nfe_crawler.ai.gemini_provider import GeminiProvider
from nfe_crawler.ai.ollama_provider import OllamaProvider
from nfe_crawler.ai.openai_provider import OpenAIProvider
from nfe_crawler.shared.config import Settings

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of available AI providers.

    Maintains a mapping of provider names to their implementation classes.
    Supports runtime registration of new providers.
    """

    _providers: dict[str, type[AIProvider]] = {
        "gemini": GeminiProvider,
        "openai": OpenAIProvider,
        "ollama": OllamaProvider,
    }

    @classmethod
    def register(cls, name: str, provider_class: type[AIProvider]) -> None:
        """Register a new provider.

        Args:
            name: Provider identifier (must match Settings.ai_provider)
            provider_class: Provider class implementing AIProvider interface
        """
        cls._providers[name] = provider_class
        logger.info(f"Registered AI provider: {name}")

    @classmethod
    def get_provider_class(cls, name: str) -> type[AIProvider]:
        """Get provider class by name.

        Args:
            name: Provider identifier

        Returns:
            Provider class implementing AIProvider

        Raises:
            ValueError: If provider not found in registry
        """
        if name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise ValueError(f"Unknown AI provider: '{name}'. Available providers: {available}")
        return cls._providers[name]

    @classmethod
    def list_providers(cls) -> list[str]:
        """List all registered provider names."""
        return list(cls._providers.keys())


def create_ai_provider(settings: Settings) -> AIProvider:
    """Create the AI provider named by settings.ai_provider.

    Logs a warning if the provider is not available (e.g., missing API key);
    the failure then surfaces on the first call as an AI parse error.

    Args:
        settings: Application settings with ai_provider field

    Returns:
        Configured AI provider instance

    Raises:
        ValueError: If configured provider is unknown

    Example:
        >>> settings = Settings(ai_provider="gemini")
        >>> provider = create_ai_provider(settings)
    """
    provider_name = settings.ai_provider
    provider_class = ProviderRegistry.get_provider_class(provider_name)

    provider = provider_class(settings)

    if not provider.is_available():
        logger.warning(
            f"AI provider '{provider_name}' is not fully available. "
            f"Check configuration (e.g., API keys, server URL)."
        )

    logger.info(f"Created AI provider: {provider_name} (model={settings.ai_model})")
    return provider
