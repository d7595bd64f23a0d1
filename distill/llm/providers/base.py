"""Shared pieces for httpx-based provider adapters."""

import logging

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from distill.config import settings
from distill.hashing import sha256

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 529}


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS
    return isinstance(exc, httpx.TransportError)


provider_retry = retry(
    retry=retry_if_exception(_is_retryable),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


class HttpProvider:
    """Base adapter: posts JSON and returns the decoded body."""

    name = "http"

    def __init__(self, base_url: str, timeout: float = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else settings.LLM_TIMEOUT_SECONDS

    def _post(self, path: str, headers: dict, payload: dict) -> dict:
        logger.info(f"{self.name} request to {payload.get('model')}, hash: {sha256(str(payload))[:16]}")
        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(f"{self.base_url}{path}", headers=headers, json=payload)
            if response.status_code in RETRYABLE_STATUS:
                logger.warning(f"Retryable error {response.status_code} from {self.name}")
            response.raise_for_status()
            return response.json()
