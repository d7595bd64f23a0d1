"""Anthropic Messages API adapter."""

from typing import Dict

from distill.config import settings
from distill.llm.providers.base import HttpProvider, provider_retry
from distill.llm.types import LlmRequest, ProviderResult

DEFAULT_MAX_TOKENS = 1024


class AnthropicProvider(HttpProvider):
    """Thin adapter returning text and token usage."""

    name = "anthropic"

    def __init__(self, base_url: str = None, timeout: float = None):
        super().__init__(base_url or settings.ANTHROPIC_BASE_URL, timeout)

    def _build_headers(self, api_key: str) -> Dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": settings.ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    @provider_retry
    def call(self, request: LlmRequest, api_key: str) -> ProviderResult:
        payload = {
            "model": request.model,
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
            "messages": [
                {"role": m.role, "content": m.content}
                for m in request.messages
                if m.role != "system"
            ],
        }
        if request.system:
            payload["system"] = request.system
        if request.temperature is not None:
            payload["temperature"] = request.temperature

        body = self._post("/messages", self._build_headers(api_key), payload)

        text = "\n".join(
            block.get("text", "")
            for block in body.get("content") or []
            if block.get("type") == "text"
        )
        usage = body.get("usage") or {}

        return ProviderResult(
            text=text,
            tokens_in=int(usage.get("input_tokens") or 0),
            tokens_out=int(usage.get("output_tokens") or 0),
            raw=body,
        )
