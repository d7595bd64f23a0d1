"""Export Pydantic schemas."""

from typing import List, Optional

from pydantic import BaseModel

from distill.schemas.run import FilterProfileSnapshot


class ExportRun(BaseModel):
    id: str
    model: str
    start_date: str
    end_date: str
    sources: List[str]  # lower-case
    timezone: str
    filter_profile: FilterProfileSnapshot


class ExportBatch(BaseModel):
    id: str
    source: str  # lower-case
    original_filename: str
    timezone: str


class ExportDay(BaseModel):
    """One day's stored summary plus the hashes that identify its input."""

    day_date: str
    output_text: str
    created_at: str
    bundle_hash: str
    bundle_context_hash: str
    segmented: bool
    segment_count: Optional[int] = None


class ExportInput(BaseModel):
    """Everything the renderer needs; exported_at is supplied by the caller."""

    run: ExportRun
    batches: List[ExportBatch]
    days: List[ExportDay]  # ordered by day_date
    exported_at: str


class ExportRequest(BaseModel):
    """Schema for exporting a run."""

    output_dir: str


class ExportResult(BaseModel):
    exported_at: str
    output_dir: str
    file_count: int
    files: List[str]
