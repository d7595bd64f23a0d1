"""Tests for the LLM client in dry-run and real mode."""

import json

import pytest

from distill.config import settings
from distill.enums import CORE_CATEGORIES
from distill.llm.client import LLMClient
from distill.llm.errors import LlmProviderError, MissingApiKeyError, ProviderNotImplementedError
from distill.llm.types import LlmMessage, LlmRequest, ProviderResult


def make_request(provider="openai", model="gpt-4o", metadata=None):
    return LlmRequest(
        provider=provider,
        model=model,
        system="You summarize.",
        messages=[LlmMessage(role="user", content="hello there")],
        metadata=metadata or {},
    )


class FakeAdapter:
    def __init__(self, text="ok", tokens_in=1000, tokens_out=500, error=None):
        self.text = text
        self.tokens_in = tokens_in
        self.tokens_out = tokens_out
        self.error = error
        self.calls = []

    def call(self, request, api_key):
        self.calls.append((request, api_key))
        if self.error:
            raise self.error
        return ProviderResult(text=self.text, tokens_in=self.tokens_in, tokens_out=self.tokens_out, raw={})


def test_dry_run_echoes_request():
    """Test dry-run output mentions provider, model and message count."""
    response = LLMClient(mode="dry_run").call(make_request())

    assert response.dry_run is True
    assert response.text.startswith("[DRY RUN]")
    assert "openai" in response.text
    assert "gpt-4o" in response.text
    assert response.cost_usd == 0.0
    assert response.tokens_in > 0


def test_dry_run_needs_no_api_key():
    """Test that dry-run never asks for credentials."""
    client = LLMClient(mode="dry_run")

    client.require_api_key("openai")
    client.call(make_request())


def test_dry_run_classify_is_deterministic():
    """Test dry-run classify derives the category from the atom stable id."""
    client = LLMClient(mode="dry_run")
    metadata = {"stage": "classify", "atomStableId": "atom-123"}

    first = json.loads(client.call(make_request(metadata=metadata)).text)
    second = json.loads(client.call(make_request(metadata=metadata)).text)

    assert first == second
    assert first["confidence"] == 0.7
    assert first["category"] in [c.value for c in CORE_CATEGORIES]


def test_dry_run_simulated_cost():
    """Test that simulate_cost produces a positive cost."""
    response = LLMClient(mode="dry_run", simulate_cost=True).call(make_request())

    assert response.cost_usd > 0


def test_mode_read_from_settings(monkeypatch):
    """Test that mode falls back to settings on each call."""
    client = LLMClient()
    assert client.is_dry_run

    monkeypatch.setattr(settings, "LLM_MODE", "real")
    assert not client.is_dry_run


def test_real_mode_missing_key_fails_before_call():
    """Test MISSING_API_KEY is raised before the adapter is touched."""
    adapter = FakeAdapter()
    client = LLMClient(mode="real", providers={"openai": adapter})

    with pytest.raises(MissingApiKeyError) as exc_info:
        client.call(make_request())

    assert exc_info.value.code == "MISSING_API_KEY"
    assert adapter.calls == []


def test_real_mode_prices_reported_tokens(monkeypatch):
    """Test cost is computed from the adapter's token counts."""
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    adapter = FakeAdapter(tokens_in=1_000_000, tokens_out=0)
    client = LLMClient(mode="real", providers={"openai": adapter})

    response = client.call(make_request())

    assert response.dry_run is False
    assert response.cost_usd == pytest.approx(2.5)
    assert adapter.calls[0][1] == "sk-test"


def test_real_mode_unknown_pricing_is_zero_cost(monkeypatch):
    """Test unknown pricing degrades to zero instead of failing the call."""
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    client = LLMClient(mode="real", providers={"openai": FakeAdapter()})

    response = client.call(make_request(model="gpt-experimental"))

    assert response.cost_usd == 0.0


def test_real_mode_wraps_adapter_errors(monkeypatch):
    """Test any adapter failure becomes LLM_PROVIDER_ERROR."""
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    adapter = FakeAdapter(error=RuntimeError("connection reset"))
    client = LLMClient(mode="real", providers={"openai": adapter})

    with pytest.raises(LlmProviderError) as exc_info:
        client.call(make_request())

    assert exc_info.value.code == "LLM_PROVIDER_ERROR"
    assert "openai" in exc_info.value.message
    assert "connection reset" in exc_info.value.message


def test_real_mode_unregistered_provider(monkeypatch):
    """Test PROVIDER_NOT_IMPLEMENTED for a provider without an adapter."""
    monkeypatch.setattr(settings, "ANTHROPIC_API_KEY", "sk-ant")
    client = LLMClient(mode="real", providers={"openai": FakeAdapter()})

    with pytest.raises(ProviderNotImplementedError):
        client.call(make_request(provider="anthropic", model="claude-3-5-haiku"))
