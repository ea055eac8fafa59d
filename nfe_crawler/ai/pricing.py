"""Static per-model price table for AI cost estimation.

Prices are USD per million tokens. Estimates are for observability only; a
model missing from the table falls back to DEFAULT_PRICING_MODEL.
"""

import logging
import math
from types import MappingProxyType
from typing import NamedTuple

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 3.5


class ModelPricing(NamedTuple):
    """USD per million input and output tokens."""

    input: float
    output: float


MODEL_PRICING = MappingProxyType(
    {
        "claude-3-5-sonnet-20241022": ModelPricing(3.0, 15.0),
        "claude-3-5-sonnet-20240620": ModelPricing(3.0, 15.0),
        "claude-3-opus-20240229": ModelPricing(15.0, 75.0),
        "claude-3-sonnet-20240229": ModelPricing(3.0, 15.0),
        "claude-3-haiku-20240307": ModelPricing(0.25, 1.25),
        "gemini-2.0-flash-exp": ModelPricing(0.0, 0.0),  # free tier
        "gemini-1.5-pro": ModelPricing(1.25, 5.0),
        "gemini-1.5-flash": ModelPricing(0.075, 0.3),
        "gemini-2.5-flash": ModelPricing(0.0, 0.0),
        "gemini-2.5-pro": ModelPricing(1.25, 5.0),
        "gpt-4o-mini": ModelPricing(0.15, 0.6),
        "gpt-4o": ModelPricing(2.5, 10.0),
    }
)

DEFAULT_PRICING_MODEL = "claude-3-5-sonnet-20241022"


def get_pricing(model: str) -> ModelPricing:
    """Look up model pricing, falling back to the default model."""
    pricing = MODEL_PRICING.get(model)
    if pricing is None:
        logger.warning(f"No pricing for model '{model}', using {DEFAULT_PRICING_MODEL} prices")
        return MODEL_PRICING[DEFAULT_PRICING_MODEL]
    return pricing


def estimate_tokens(text: str) -> int:
    """Rough token count (~3.5 characters per token, slightly overestimating)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Estimate call cost in USD.

    Args:
        model: Model identifier
        input_tokens: Prompt tokens
        output_tokens: Completion tokens

    Returns:
        Estimated cost in USD
    """
    pricing = get_pricing(model)
    return (input_tokens * pricing.input + output_tokens * pricing.output) / 1_000_000
