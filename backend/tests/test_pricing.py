"""Tests for model pricing resolution and the LiteLLM generator."""

from types import SimpleNamespace
from unittest.mock import patch

import pytest

from vizai.core.config import Settings
from vizai.generation import LiteLLMGenerator, MockGenerator, build_generator
from vizai.generation.pricing import ModelPricing, estimate_tokens, resolve_pricing
from vizai.schemas.step_payloads import ANALYSIS_SCHEMA

FALLBACK = ModelPricing(input_per_million=1.0, output_per_million=2.0)


class TestResolvePricing:
    def test_override_with_provider_prefix(self):
        pricing = resolve_pricing("gemini/gemini-1.5-flash", FALLBACK)
        assert pricing == ModelPricing(input_per_million=0.075, output_per_million=0.30)

    def test_mock_is_free(self):
        assert resolve_pricing("mock", FALLBACK).cost(10_000, 10_000) == 0.0

    def test_registry_price(self):
        info = {"input_cost_per_token": 0.000001, "output_cost_per_token": 0.000004}
        with patch("litellm.get_model_info", return_value=info):
            pricing = resolve_pricing("openai/some-model", FALLBACK)
        assert pricing.input_per_million == pytest.approx(1.0)
        assert pricing.output_per_million == pytest.approx(4.0)

    def test_unknown_model_uses_fallback(self):
        with patch("litellm.get_model_info", side_effect=Exception("unknown model")):
            assert resolve_pricing("acme/unknown", FALLBACK) is FALLBACK


class TestEstimateTokens:
    def test_rounds_up(self):
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("") == 1


class TestLiteLLMGenerator:
    def test_returns_text_and_usage(self):
        response = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content='{"ok": true}'))],
            usage=SimpleNamespace(prompt_tokens=321, completion_tokens=45),
        )
        generator = LiteLLMGenerator(model="gemini/gemini-1.5-flash", timeout_seconds=5.0)
        with patch("litellm.completion", return_value=response) as completion:
            result = generator.generate("prompt", ANALYSIS_SCHEMA, 0.7)
        assert result.raw_text == '{"ok": true}'
        assert (result.input_tokens, result.output_tokens) == (321, 45)
        assert completion.call_args.kwargs["temperature"] == 0.7

    def test_build_generator_defaults_to_mock(self):
        assert isinstance(build_generator(Settings(generation_model="")), MockGenerator)

    def test_build_generator_honours_override(self):
        override = MockGenerator()
        assert build_generator(Settings(generation_model="gemini/gemini-1.5-flash"), override) is override
