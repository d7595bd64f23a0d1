"""Classification request/response schemas."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel


class ClassifyRequest(BaseModel):
    import_batch_id: str
    model: str
    prompt_version_id: str
    mode: Literal["stub", "real"]


class ClassifyLabelSpec(BaseModel):
    model: str
    prompt_version_id: str


class ClassifyTotals(BaseModel):
    message_atoms: int
    labeled: int
    newly_labeled: int
    skipped_already_labeled: int


class ClassifyWarnings(BaseModel):
    skipped_bad_output: int = 0
    aliased_count: int = 0
    bad_category_samples: List[str] = []


class ClassifyResult(BaseModel):
    """Response of classify_batch."""

    classify_run_id: str
    import_batch_id: str
    label_spec: ClassifyLabelSpec
    mode: str
    totals: ClassifyTotals
    warnings: Optional[ClassifyWarnings] = None


class ClassifyProgress(BaseModel):
    processed_atoms: int
    total_atoms: int


class ClassifyUsage(BaseModel):
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None
    cost_usd: Optional[float] = None


class ClassifyRunResponse(BaseModel):
    """Read-only view of a ClassifyRun audit row."""

    id: str
    import_batch_id: str
    label_spec: ClassifyLabelSpec
    mode: str
    status: str
    totals: ClassifyTotals
    progress: ClassifyProgress
    usage: ClassifyUsage
    warnings: ClassifyWarnings
    last_atom_stable_id_processed: Optional[str] = None
    last_error: Optional[Dict[str, Any]] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None


class LastClassifyStats(BaseModel):
    has_stats: bool
    stats: Optional[ClassifyRunResponse] = None
