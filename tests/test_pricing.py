"""Tests for the pricing book."""

import pytest

from distill.llm.errors import UnknownModelPricingError
from distill.llm.pricing import build_pricing_snapshot, cost_from_rate, estimate_cost_usd, infer_provider


def test_cost_is_linear():
    """Test cost for one million in and out tokens equals the rates."""
    cost = estimate_cost_usd("openai", "gpt-4o", 1_000_000, 1_000_000)
    snapshot = build_pricing_snapshot("openai", "gpt-4o")

    assert cost == pytest.approx(snapshot.input_per_1m_usd + snapshot.output_per_1m_usd)


def test_cached_tokens_use_cached_rate():
    """Test that cached input tokens are priced separately."""
    snapshot = build_pricing_snapshot("anthropic", "claude-3-5-haiku")

    cost = cost_from_rate(snapshot, 0, 0, cached_tokens=1_000_000)

    assert cost == pytest.approx(snapshot.cached_input_per_1m_usd)


def test_stub_models_are_free():
    """Test that stub models always cost zero."""
    assert estimate_cost_usd("openai", "stub_summarizer_v1", 10_000, 10_000) == 0.0


def test_unknown_model_raises():
    """Test that unknown pricing fails loudly by default."""
    with pytest.raises(UnknownModelPricingError) as exc_info:
        estimate_cost_usd("openai", "gpt-unknown", 10, 10)

    assert exc_info.value.code == "UNKNOWN_MODEL_PRICING"


def test_unknown_model_tolerated_returns_zero():
    """Test the explicit zero-cost fallback."""
    assert estimate_cost_usd("openai", "gpt-unknown", 10, 10, tolerate_unknown=True) == 0.0


def test_infer_provider():
    """Test provider inference from model names."""
    assert infer_provider("claude-3-5-haiku") == "anthropic"
    assert infer_provider("gpt-4o") == "openai"
