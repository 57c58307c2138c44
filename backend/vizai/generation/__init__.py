"""Generation collaborator: LLM clients, prompts, pricing and templates."""

from .client import GenerationResult, Generator, LiteLLMGenerator, build_generator
from .mock import MockGenerator
from .pricing import ModelPricing, resolve_pricing, estimate_tokens

__all__ = [
    "GenerationResult",
    "Generator",
    "LiteLLMGenerator",
    "MockGenerator",
    "ModelPricing",
    "build_generator",
    "resolve_pricing",
    "estimate_tokens",
]
