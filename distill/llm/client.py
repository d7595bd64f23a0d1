"""LLM client with dry-run and real dispatch to provider adapters."""

import json
import logging
import math
from typing import Dict, Optional

from distill.config import get_api_key, get_llm_mode
from distill.enums import CORE_CATEGORIES
from distill.hashing import hash_to_uint32, sha256
from distill.llm.errors import LlmError, LlmProviderError, ProviderNotImplementedError
from distill.llm.pricing import estimate_cost_usd
from distill.llm.providers.anthropic import AnthropicProvider
from distill.llm.providers.openai import OpenAIProvider
from distill.llm.types import LlmRequest, LlmResponse

logger = logging.getLogger(__name__)

DRY_RUN_CLASSIFY_CONFIDENCE = 0.7


def estimate_tokens(text: str) -> int:
    """Rough token estimate: four characters per token."""
    return math.ceil(len(text) / 4)


def _build_input_text(request: LlmRequest) -> str:
    parts = []
    if request.system:
        parts.append(request.system)
    for message in request.messages:
        parts.append(f"{message.role}: {message.content}")
    return "\n".join(parts)


def default_providers() -> Dict[str, object]:
    return {
        "openai": OpenAIProvider(),
        "anthropic": AnthropicProvider(),
    }


class LLMClient:
    """
    Dispatches requests in dry-run or real mode.

    Dry-run never needs credentials and returns deterministic text. Real mode
    resolves the provider's API key before any network attempt, calls the
    registered adapter and prices the reported token counts.
    """

    def __init__(
        self,
        mode: Optional[str] = None,
        providers: Optional[Dict[str, object]] = None,
        simulate_cost: bool = False,
    ):
        """
        Initialize the LLM client.

        Args:
            mode: 'dry_run' or 'real'; read from settings on each call when None
            providers: Provider id -> adapter with call(request, api_key)
            simulate_cost: Make dry-run responses report a non-zero cost
        """
        self._mode = mode
        self.providers = providers if providers is not None else default_providers()
        self.simulate_cost = simulate_cost

    @property
    def mode(self) -> str:
        return self._mode or get_llm_mode()

    @property
    def is_dry_run(self) -> bool:
        return self.mode != "real"

    def require_api_key(self, provider: str) -> None:
        """Fail fast with MISSING_API_KEY in real mode; dry-run never needs keys."""
        if not self.is_dry_run:
            get_api_key(provider)

    def call(self, request: LlmRequest) -> LlmResponse:
        """
        Call a provider or synthesize a dry-run response.

        Raises:
            MissingApiKeyError: Real mode without a configured key
            ProviderNotImplementedError: No adapter for the provider
            LlmProviderError: Any adapter failure
        """
        if self.is_dry_run:
            return self._dry_run_response(request)

        api_key = get_api_key(request.provider)
        adapter = self.providers.get(request.provider)
        if adapter is None:
            raise ProviderNotImplementedError(request.provider)

        try:
            result = adapter.call(request, api_key)
        except LlmError:
            raise
        except Exception as e:
            status = getattr(getattr(e, "response", None), "status_code", None)
            details = {"status": status, "name": type(e).__name__}
            raise LlmProviderError(request.provider, str(e), details) from e

        # Unknown pricing degrades to zero cost rather than failing a completed call
        cost_usd = estimate_cost_usd(
            request.provider,
            request.model,
            result.tokens_in,
            result.tokens_out,
            tolerate_unknown=True,
        )
        logger.info(f"LLM response from {request.provider}/{request.model}, hash: {sha256(result.text)[:16]}")

        return LlmResponse(
            text=result.text,
            tokens_in=result.tokens_in,
            tokens_out=result.tokens_out,
            cost_usd=cost_usd,
            dry_run=False,
            raw=result.raw,
        )

    def _dry_run_response(self, request: LlmRequest) -> LlmResponse:
        input_text = _build_input_text(request)
        tokens_in = estimate_tokens(input_text)

        if request.metadata.get("stage") == "classify":
            seed = request.metadata.get("atomStableId") or input_text
            category = CORE_CATEGORIES[hash_to_uint32(sha256(seed)) % len(CORE_CATEGORIES)]
            text = json.dumps({"category": category.value, "confidence": DRY_RUN_CLASSIFY_CONFIDENCE})
        else:
            text = (
                f"[DRY RUN] Provider: {request.provider}, Model: {request.model}. "
                f"Input: {len(request.messages)} message(s), ~{tokens_in} tokens."
            )
        tokens_out = estimate_tokens(text)

        cost_usd = 0.0
        if self.simulate_cost:
            # $0.01 per 1K input tokens, $0.03 per 1K output tokens
            cost_usd = (tokens_in / 1000) * 0.01 + (tokens_out / 1000) * 0.03

        return LlmResponse(
            text=text,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cost_usd=cost_usd,
            dry_run=True,
        )
