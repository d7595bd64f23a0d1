"""Pricing book and cost calculator.

Rates are USD per 1M tokens, committed in the repo. Update them when
provider pricing changes.
"""

from datetime import datetime, timezone
from typing import Dict, Optional

from pydantic import BaseModel

from distill.config import get_default_provider
from distill.llm.errors import UnknownModelPricingError

STUB_MARKER = "stub"


class Rate(BaseModel):
    """Per-model token rates."""

    input_per_1m_usd: float
    output_per_1m_usd: float
    cached_input_per_1m_usd: Optional[float] = None


class PricingSnapshot(Rate):
    """A rate captured at run creation and frozen into the run config."""

    provider: str
    model: str
    captured_at: str


RATE_TABLE: Dict[str, Dict[str, Rate]] = {
    "openai": {
        "gpt-4o": Rate(input_per_1m_usd=2.5, output_per_1m_usd=10.0, cached_input_per_1m_usd=1.25),
        "gpt-4o-mini": Rate(input_per_1m_usd=0.15, output_per_1m_usd=0.6, cached_input_per_1m_usd=0.075),
        "gpt-4.1": Rate(input_per_1m_usd=2.0, output_per_1m_usd=8.0, cached_input_per_1m_usd=0.5),
        "gpt-4.1-mini": Rate(input_per_1m_usd=0.4, output_per_1m_usd=1.6, cached_input_per_1m_usd=0.1),
        "gpt-4.1-nano": Rate(input_per_1m_usd=0.1, output_per_1m_usd=0.4, cached_input_per_1m_usd=0.025),
    },
    "anthropic": {
        "claude-sonnet-4-5": Rate(input_per_1m_usd=3.0, output_per_1m_usd=15.0, cached_input_per_1m_usd=0.3),
        "claude-3-5-sonnet": Rate(input_per_1m_usd=3.0, output_per_1m_usd=15.0, cached_input_per_1m_usd=0.3),
        "claude-3-5-haiku": Rate(input_per_1m_usd=0.8, output_per_1m_usd=4.0, cached_input_per_1m_usd=0.08),
    },
}


def is_stub_model(model: str) -> bool:
    return model.startswith(STUB_MARKER)


def infer_provider(model: str) -> str:
    """Infer the provider from a model name, falling back to the configured default."""
    lower = model.lower()
    if "claude" in lower or "anthropic" in lower:
        return "anthropic"
    if any(marker in lower for marker in ("gpt", "openai", "o1", "o3")):
        return "openai"
    return get_default_provider() or "openai"


def get_rate(provider: str, model: str) -> Rate:
    """
    Look up the rate for a provider/model.

    Stub models always cost zero.

    Raises:
        UnknownModelPricingError: If the pair is not in the rate table
    """
    if is_stub_model(model) or provider == STUB_MARKER:
        return Rate(input_per_1m_usd=0.0, output_per_1m_usd=0.0)

    rate = RATE_TABLE.get(provider, {}).get(model)
    if rate is None:
        raise UnknownModelPricingError(provider, model)
    return rate


def cost_from_rate(rate: Rate, tokens_in: int, tokens_out: int, cached_tokens: int = 0) -> float:
    """Linear cost: tokens / 1e6 * rate, per token class."""
    cost = (tokens_in / 1_000_000) * rate.input_per_1m_usd
    cost += (tokens_out / 1_000_000) * rate.output_per_1m_usd
    if cached_tokens and rate.cached_input_per_1m_usd is not None:
        cost += (cached_tokens / 1_000_000) * rate.cached_input_per_1m_usd
    return cost


def estimate_cost_usd(
    provider: str,
    model: str,
    tokens_in: int,
    tokens_out: int,
    cached_tokens: int = 0,
    tolerate_unknown: bool = False,
) -> float:
    """
    Estimate cost in USD for a call.

    Args:
        provider: Provider id
        model: Model identifier
        tokens_in: Input tokens
        tokens_out: Output tokens
        cached_tokens: Cached input tokens
        tolerate_unknown: Return 0.0 instead of raising for unknown models

    Returns:
        Cost at full precision; rounding happens at display time
    """
    try:
        rate = get_rate(provider, model)
    except UnknownModelPricingError:
        if tolerate_unknown:
            return 0.0
        raise
    return cost_from_rate(rate, tokens_in, tokens_out, cached_tokens)


def build_pricing_snapshot(provider: str, model: str) -> PricingSnapshot:
    """Capture the current rate for a provider/model."""
    rate = get_rate(provider, model)
    return PricingSnapshot(
        provider=provider,
        model=model,
        input_per_1m_usd=rate.input_per_1m_usd,
        output_per_1m_usd=rate.output_per_1m_usd,
        cached_input_per_1m_usd=rate.cached_input_per_1m_usd,
        captured_at=datetime.now(timezone.utc).isoformat(),
    )
