"""Run-related Pydantic schemas."""

from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from distill.errors import InvalidInputError
from distill.llm.pricing import PricingSnapshot


class FrozenCamelModel(BaseModel):
    """Immutable model stored with camelCase keys."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class LabelSpec(FrozenCamelModel):
    """Which labels a run filters on."""

    model: str
    prompt_version_id: str


class FilterProfileSnapshot(FrozenCamelModel):
    """Copy of the filter profile taken at run creation."""

    name: str
    mode: str  # 'include' | 'exclude'
    categories: List[str]


class PromptVersionIds(FrozenCamelModel):
    summarize: str


class RunConfig(FrozenCamelModel):
    """Config frozen into Run.config_json; later edits to prompts or profiles do not affect it."""

    prompt_version_ids: PromptVersionIds
    label_spec: LabelSpec
    filter_profile_snapshot: FilterProfileSnapshot
    timezone: str
    max_input_tokens: int
    pricing_snapshot: Optional[PricingSnapshot] = None

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def parse_run_config(data: Any) -> RunConfig:
    """
    Validate a stored config blob.

    Raises:
        InvalidInputError: If required fields are missing or mistyped
    """
    if not isinstance(data, dict):
        raise InvalidInputError(f"Invalid RunConfig: expected object, got {type(data).__name__}")
    try:
        return RunConfig.model_validate(data)
    except ValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise InvalidInputError(f"Invalid RunConfig: {', '.join(fields)}", {"fields": fields})


class RunCreate(BaseModel):
    """Schema for creating a new run."""

    import_batch_id: str
    start_date: date
    end_date: date
    sources: List[str]
    filter_profile_id: str
    model: str
    label_spec: LabelSpec
    max_input_tokens: Optional[int] = None


class ProgressCounts(BaseModel):
    """Job counts by status."""

    queued: int = 0
    running: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: int = 0


class RunTotals(BaseModel):
    """Aggregates derived from a run's jobs."""

    tokens_in: int = 0
    tokens_out: int = 0
    cost_usd: float = 0.0


class RunResponse(BaseModel):
    """Run detail with frozen config and derived progress."""

    id: str
    status: str
    import_batch_id: str
    start_date: str
    end_date: str
    sources: List[str]
    filter_profile_id: str
    model: str
    output_target: str
    config: Dict[str, Any]
    progress: ProgressCounts
    totals: RunTotals
    job_count: int
    eligible_days: List[str] = []
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class JobSummary(BaseModel):
    """Job state as reported by tick and read accessors."""

    day_date: str
    status: str
    attempt: int
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None
    cost_usd: Optional[float] = None
    error: Optional[str] = None


class TickResult(BaseModel):
    """Outcome of one tick."""

    run_id: str
    processed: int
    jobs: List[JobSummary]
    progress: ProgressCounts
    run_status: str


class CancelResult(BaseModel):
    run_id: str
    status: str
    jobs_cancelled: int


class ResumeResult(BaseModel):
    run_id: str
    status: str
    jobs_requeued: int


class ResetJobResult(BaseModel):
    run_id: str
    day_date: str
    status: str
    attempt: int
    outputs_deleted: int


class OutputResponse(BaseModel):
    """Stored output for a job."""

    id: str
    stage: str
    output_text: str
    output_json: Dict[str, Any]
    model: str
    prompt_version_id: str
    bundle_hash: str
    bundle_context_hash: str
    created_at: Optional[str] = None
