"""OpenAI Responses API adapter."""

from typing import Dict, List

from distill.config import settings
from distill.llm.providers.base import HttpProvider, provider_retry
from distill.llm.types import LlmRequest, ProviderResult


class OpenAIProvider(HttpProvider):
    """Thin adapter returning text and token usage."""

    name = "openai"

    def __init__(self, base_url: str = None, timeout: float = None):
        super().__init__(base_url or settings.OPENAI_BASE_URL, timeout)

    def _build_headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _build_input(self, request: LlmRequest) -> List[Dict[str, str]]:
        return [
            {
                "role": "developer" if m.role == "system" else m.role,
                "content": m.content,
            }
            for m in request.messages
        ]

    @provider_retry
    def call(self, request: LlmRequest, api_key: str) -> ProviderResult:
        payload = {"model": request.model, "input": self._build_input(request)}
        if request.system:
            payload["instructions"] = request.system
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.max_tokens is not None:
            payload["max_output_tokens"] = request.max_tokens

        body = self._post("/responses", self._build_headers(api_key), payload)

        # output_text is an SDK convenience; the wire format nests text parts
        parts = []
        for item in body.get("output") or []:
            for content in item.get("content") or []:
                if content.get("type") == "output_text":
                    parts.append(content.get("text", ""))
        usage = body.get("usage") or {}

        return ProviderResult(
            text="".join(parts),
            tokens_in=int(usage.get("input_tokens") or 0),
            tokens_out=int(usage.get("output_tokens") or 0),
            raw=body,
        )
