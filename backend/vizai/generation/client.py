"""Generation collaborator: the one place that talks to an LLM provider.

``generate(prompt, schema, temperature)`` returns the raw text and the
provider's token counts. Failures surface as exceptions (timeouts, open
circuit, provider errors) or as malformed text; never as a partially
parsed object.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from ..core.config import Settings
from .circuit_breaker import run_with_timeout
from .pricing import estimate_tokens

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationResult:
    raw_text: str
    input_tokens: int
    output_tokens: int
    model: str = ""


class Generator(Protocol):
    model: str

    def generate(self, prompt: str, schema: dict[str, Any], temperature: float) -> GenerationResult:
        ...


class LiteLLMGenerator:
    """Calls any LiteLLM-supported model with JSON output and a hard timeout."""

    def __init__(
        self,
        model: str,
        api_key: str = "",
        api_base: str = "",
        timeout_seconds: float = 25.0,
        max_output_tokens: int = 2048,
    ) -> None:
        self.model = model
        self._api_key = api_key
        self._api_base = api_base
        self._timeout = timeout_seconds
        self._max_output_tokens = max_output_tokens

    def generate(self, prompt: str, schema: dict[str, Any], temperature: float) -> GenerationResult:
        import litellm

        kwargs: dict = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": self._max_output_tokens,
            "timeout": self._timeout,
            "response_format": {"type": "json_object"},
            # Retries belong to the job scheduler, not the HTTP client.
            "num_retries": 0,
        }
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._api_base:
            kwargs["api_base"] = self._api_base

        response = run_with_timeout(
            lambda: litellm.completion(**kwargs),
            timeout=self._timeout,
            label=self.model,
        )

        raw_text = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        input_tokens = int(getattr(usage, "prompt_tokens", 0) or 0) if usage else 0
        output_tokens = int(getattr(usage, "completion_tokens", 0) or 0) if usage else 0
        if not usage:
            # Some providers omit usage; fall back to a local estimate so
            # the budget still moves.
            input_tokens = estimate_tokens(prompt)
            output_tokens = estimate_tokens(raw_text)
            logger.warning("Provider returned no usage for %s; using estimates", self.model)

        logger.debug(
            "Generation call finished",
            extra={"model": self.model, "input_tokens": input_tokens, "output_tokens": output_tokens},
        )
        return GenerationResult(
            raw_text=raw_text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=self.model,
        )


def build_generator(settings: Settings, override: Optional[Generator] = None) -> Generator:
    """Pick the configured generator; the mock one when no model is set."""
    if override is not None:
        return override
    if settings.uses_mock_generator:
        from .mock import MockGenerator
        logger.info("GENERATION_MODEL not set, using deterministic mock generator")
        return MockGenerator()
    return LiteLLMGenerator(
        model=settings.generation_model,
        api_key=settings.generation_api_key,
        api_base=settings.generation_api_base,
        timeout_seconds=settings.generation_timeout_seconds,
        max_output_tokens=settings.max_output_tokens,
    )
