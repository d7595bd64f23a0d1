"""Summarize a day's bundle with the run's frozen prompt version."""

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from distill.errors import NotFoundError
from distill.hashing import sha256
from distill.llm.client import LLMClient
from distill.llm.pricing import infer_provider, is_stub_model
from distill.llm.types import LlmMessage, LlmRequest
from distill.models import PromptVersion

logger = logging.getLogger(__name__)

SUMMARY_MAX_TOKENS = 2000


@dataclass
class SummaryResult:
    text: str
    tokens_in: int
    tokens_out: int
    cost_usd: float


def summarize(
    llm: LLMClient,
    db: Session,
    bundle_text: str,
    model: str,
    prompt_version_id: str,
) -> SummaryResult:
    """
    Summarize bundle text.

    Stub models return a deterministic placeholder without calling the LLM.

    Raises:
        NotFoundError: If the prompt version does not exist
    """
    prompt_version = db.query(PromptVersion).filter(PromptVersion.id == prompt_version_id).first()
    if not prompt_version:
        raise NotFoundError("PromptVersion", prompt_version_id)

    logger.info(f"Summarizing with {model}, bundle hash: {sha256(bundle_text)[:16]}")

    if is_stub_model(model):
        line_count = len([line for line in bundle_text.splitlines() if line.startswith("[")])
        text = (
            f"[STUB SUMMARY] {line_count} message(s), "
            f"bundle {sha256(bundle_text)[:12]}, prompt {prompt_version.version_label}."
        )
        return SummaryResult(text=text, tokens_in=0, tokens_out=0, cost_usd=0.0)

    request = LlmRequest(
        provider=infer_provider(model),
        model=model,
        system=prompt_version.template_text,
        messages=[LlmMessage(role="user", content=bundle_text)],
        max_tokens=SUMMARY_MAX_TOKENS,
        metadata={"stage": "summarize"},
    )
    response = llm.call(request)

    return SummaryResult(
        text=response.text,
        tokens_in=response.tokens_in,
        tokens_out=response.tokens_out,
        cost_usd=response.cost_usd,
    )
