"""Tests for settings normalization and error payloads."""

import json

import pytest

from distill.config import Settings, get_api_key, get_spend_caps, settings
from distill.errors import (
    MAX_ERROR_DETAILS_CHARS,
    TRUNCATION_MARKER,
    ConflictError,
    NotFoundError,
    error_payload,
)
from distill.llm.errors import LlmProviderError, MissingApiKeyError


def test_unknown_llm_mode_falls_back_to_dry_run():
    """Test that anything but 'real' means dry-run."""
    assert Settings(LLM_MODE="bogus").LLM_MODE == "dry_run"
    assert Settings(LLM_MODE=" REAL ").LLM_MODE == "real"


def test_negative_min_delay_uses_default():
    """Test that a negative delay is rejected back to the default."""
    assert Settings(LLM_MIN_DELAY_MS="-5").LLM_MIN_DELAY_MS == 250
    assert Settings(LLM_MIN_DELAY_MS="0").LLM_MIN_DELAY_MS == 0


def test_non_positive_caps_mean_no_cap():
    """Test that zero or negative caps disable the cap."""
    s = Settings(LLM_MAX_USD_PER_RUN="0", LLM_MAX_USD_PER_DAY="-1")
    assert s.LLM_MAX_USD_PER_RUN is None
    assert s.LLM_MAX_USD_PER_DAY is None


def test_spend_caps_from_settings(monkeypatch):
    """Test the budget policy mirrors settings."""
    monkeypatch.setattr(settings, "LLM_MAX_USD_PER_RUN", 2.0)

    policy = get_spend_caps()

    assert policy.max_usd_per_run == 2.0
    assert policy.max_usd_per_day is None


def test_get_api_key(monkeypatch):
    """Test key lookup per provider."""
    with pytest.raises(MissingApiKeyError):
        get_api_key("openai")

    monkeypatch.setattr(settings, "OPENAI_API_KEY", "  sk-test  ")
    assert get_api_key("openai") == "sk-test"

    with pytest.raises(MissingApiKeyError):
        get_api_key("unknown")


def test_error_payload_for_service_error():
    """Test code and message are carried through."""
    payload = error_payload(NotFoundError("Run", "abc"))

    assert payload == {"code": "NOT_FOUND", "message": "Run not found: abc"}


def test_error_payload_caps_message():
    """Test that messages are cut to 500 characters."""
    payload = error_payload(ConflictError("ALREADY_COMPLETED", "x" * 2000))

    assert len(payload["message"]) == 500


def test_error_payload_truncates_large_details():
    """Test oversized details become a truncated string with a marker."""
    error = LlmProviderError("openai", "boom", {"body": "y" * 5000})

    payload = error_payload(error)

    assert "details" not in payload
    assert payload["detailsTruncated"].endswith(TRUNCATION_MARKER)
    assert len(payload["detailsTruncated"]) == MAX_ERROR_DETAILS_CHARS + len(TRUNCATION_MARKER)


def test_error_payload_keeps_small_details():
    """Test details that fit are stored as structured JSON."""
    payload = error_payload(LlmProviderError("openai", "boom", {"status": 503}))

    assert payload["code"] == "LLM_PROVIDER_ERROR"
    assert payload["details"] == {"provider": "openai", "status": 503}
    json.dumps(payload)


def test_error_payload_for_plain_exception():
    """Test unknown exceptions get INTERNAL_ERROR."""
    payload = error_payload(ValueError("bad value"))

    assert payload == {"code": "INTERNAL_ERROR", "message": "bad value"}
