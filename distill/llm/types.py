"""LLM request/response shapes shared by the client and provider adapters."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class LlmMessage(BaseModel):
    """A single chat message."""

    role: Literal["system", "user", "assistant"]
    content: str


class LlmRequest(BaseModel):
    """Provider-neutral request."""

    provider: str
    model: str
    system: Optional[str] = None
    messages: List[LlmMessage]
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ProviderResult(BaseModel):
    """What a provider adapter returns."""

    text: str
    tokens_in: int
    tokens_out: int
    raw: Any = None


class LlmResponse(BaseModel):
    """Token- and cost-normalized response."""

    text: str
    tokens_in: int
    tokens_out: int
    cost_usd: float
    dry_run: bool
    raw: Any = None
