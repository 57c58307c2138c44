"""
Model pricing and cost estimation.

Single source of truth for what a generation call costs. Prices are USD per
million tokens, input and output priced separately. Resolution order:

1. the override table below (models whose registry price is wrong or missing),
2. litellm's model registry (``input_cost_per_token`` / ``output_cost_per_token``),
3. the fallback prices from settings.

Unlike model limits, an unknown price is not fatal: the fallback keeps the
budget guard conservative rather than blocking every call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Rough chars-per-token ratio for admission estimates before a call is made.
_CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class ModelPricing:
    """USD per million tokens."""

    input_per_million: float
    output_per_million: float

    def cost(self, input_tokens: int, output_tokens: int) -> float:
        return (
            (input_tokens / 1_000_000) * self.input_per_million
            + (output_tokens / 1_000_000) * self.output_per_million
        )

    def __str__(self) -> str:
        return f"in=${self.input_per_million}/M out=${self.output_per_million}/M"


# Keys are model identifiers WITHOUT the provider prefix.
PRICING_OVERRIDES: dict[str, ModelPricing] = {
    "gemini-1.5-flash": ModelPricing(input_per_million=0.075, output_per_million=0.30),
    "gemini-1.5-pro": ModelPricing(input_per_million=1.25, output_per_million=5.00),
    "gemini-2.0-flash": ModelPricing(input_per_million=0.10, output_per_million=0.40),
    # Deterministic development generator: free.
    "mock": ModelPricing(input_per_million=0.0, output_per_million=0.0),
}

PROVIDER_PREFIXES = ("gemini/", "vertex_ai/", "openrouter/", "openai/", "anthropic/", "litellm_proxy/")


def _strip_provider(model: str) -> str:
    for prefix in PROVIDER_PREFIXES:
        if model.startswith(prefix):
            return model[len(prefix):]
    return model


def resolve_pricing(model: str, fallback: ModelPricing) -> ModelPricing:
    """Resolve the price table for *model*.

    Args:
        model: LiteLLM model string, with or without provider prefix.
        fallback: Prices to use when neither the override table nor
            litellm knows the model.
    """
    bare = _strip_provider(model or "mock")
    if bare in PRICING_OVERRIDES:
        return PRICING_OVERRIDES[bare]

    try:
        import litellm
        info = litellm.get_model_info(model)
        price_in = info.get("input_cost_per_token")
        price_out = info.get("output_cost_per_token")
        if price_in is not None and price_out is not None:
            return ModelPricing(
                input_per_million=float(price_in) * 1_000_000,
                output_per_million=float(price_out) * 1_000_000,
            )
    except Exception as e:
        logger.warning("litellm pricing lookup failed for '%s': %s", model, e)

    logger.info("Using fallback pricing for '%s': %s", model, fallback)
    return fallback


def estimate_tokens(text: str) -> int:
    """Cheap pre-call token estimate; rounds up so estimates err high."""
    return max(1, -(-len(text) // _CHARS_PER_TOKEN))
