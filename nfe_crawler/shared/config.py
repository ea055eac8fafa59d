"""Shared configuration management for the invoice crawler.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_CRAWLER_TIMEOUT=30
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="nfe-invoice-crawler",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Portal crawler configuration
    crawler_timeout: float = Field(
        default=15.0,
        gt=0,
        description="Per-request timeout in seconds for government portal fetches",
    )
    crawler_max_redirects: int = Field(
        default=3,
        ge=0,
        description="Maximum redirects followed per fetch",
    )
    crawler_retry_attempts: int = Field(
        default=1,
        ge=0,
        description="Extra attempts after a network error or timeout",
    )
    crawler_retry_delay: float = Field(
        default=0.5,
        ge=0,
        description="Base delay in seconds between retries (multiplied by attempt number)",
    )
    crawler_user_agent: str = Field(
        default="Mozilla/5.0 (compatible; InvoiceParser/1.0)",
        description="User-Agent header sent to government portals",
    )
    max_html_size: int = Field(
        default=5 * 1024 * 1024,
        gt=0,
        description="Maximum accepted HTML payload in bytes",
    )
    default_portal_url: str = Field(
        default="https://sat.sef.sc.gov.br",
        description="Portal used to build consultation URLs from a bare invoice key",
    )

    # AI provider configuration
    ai_provider: Literal["gemini", "openai", "ollama"] = Field(
        default="gemini",
        description="AI provider: gemini (Google GenAI), openai (cloud API), ollama (self-hosted)",
    )
    ai_model: str = Field(
        default="gemini-2.5-flash",
        description="Model identifier passed to the AI provider",
    )
    ai_temperature: float = Field(
        default=0.0,
        ge=0,
        description="Sampling temperature (0 for deterministic output)",
    )
    ai_max_tokens: int = Field(
        default=1_000_000,
        gt=0,
        description="Maximum output tokens requested from the provider",
    )
    ai_api_key: str = Field(
        default="",
        description="Provider API key (falls back to GEMINI_API_KEY / OPENAI_API_KEY)",
    )
    ai_timeout: float = Field(
        default=120.0,
        gt=0,
        description="Per-call timeout in seconds for AI provider requests",
    )
    ai_batch_size: int = Field(
        default=30,
        gt=0,
        description="Number of raw item rows sent per AI call",
    )
    ai_max_retries: int = Field(
        default=3,
        ge=0,
        description="Retries on provider overload (HTTP 503) before giving up",
    )
    ai_retry_base_delay: float = Field(
        default=2.0,
        ge=0,
        description="Initial backoff in seconds for overload retries (doubles each retry)",
    )
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server base URL (for ai_provider='ollama')",
    )

    # Cache configuration
    cache_ttl: float = Field(
        default=24 * 60 * 60,
        gt=0,
        description="Time-to-live in seconds for parsed invoices",
    )
    cache_max_size: int = Field(
        default=1000,
        gt=0,
        description="Maximum number of parsed invoices kept in memory",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
