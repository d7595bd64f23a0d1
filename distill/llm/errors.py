"""Typed LLM errors carrying a stable code, a message and optional details."""

from typing import Any, Dict, Optional


class LlmError(Exception):
    """Base error for the LLM call layer."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


class MissingApiKeyError(LlmError):
    """No API key configured for the requested provider."""

    def __init__(self, provider: str):
        super().__init__(
            "MISSING_API_KEY",
            f'API key not configured for provider "{provider}". '
            "Set the corresponding environment variable.",
            {"provider": provider},
        )


class ProviderNotImplementedError(LlmError):
    """No adapter is registered for the requested provider."""

    def __init__(self, provider: str):
        super().__init__(
            "PROVIDER_NOT_IMPLEMENTED",
            f'Provider "{provider}" is not implemented. Use dry_run mode or register an adapter.',
            {"provider": provider},
        )


class BudgetExceededError(LlmError):
    """The next call would push spend past a configured cap."""

    def __init__(self, next_cost_usd: float, spent_usd_so_far: float, limit_usd: float, limit_type: str):
        super().__init__(
            "BUDGET_EXCEEDED",
            f"Budget exceeded: next call would cost ${next_cost_usd:.4f}, "
            f"already spent ${spent_usd_so_far:.4f} against {limit_type} limit of ${limit_usd:.4f}.",
            {
                "nextCostUsd": next_cost_usd,
                "spentUsdSoFar": spent_usd_so_far,
                "limitUsd": limit_usd,
                "limitType": limit_type,
            },
        )
        self.limit_type = limit_type


class LlmBadOutputError(LlmError):
    """Model output could not be parsed or validated."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("LLM_BAD_OUTPUT", message, details)


class UnknownModelPricingError(LlmError):
    """The pricing book has no rate for a provider/model pair."""

    def __init__(self, provider: str, model: str):
        super().__init__(
            "UNKNOWN_MODEL_PRICING",
            f'No pricing data for provider "{provider}", model "{model}". '
            "Add it to the rate table in distill/llm/pricing.py.",
            {"provider": provider, "model": model},
        )


class LlmProviderError(LlmError):
    """Uniform wrapper for any failure raised by a provider adapter."""

    def __init__(self, provider: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "LLM_PROVIDER_ERROR",
            f"{provider}: {message}",
            {"provider": provider, **(details or {})},
        )
        self.provider = provider
