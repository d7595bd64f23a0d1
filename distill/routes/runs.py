"""Run routes."""

import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from distill.database import get_db
from distill.schemas.export import ExportRequest, ExportResult
from distill.schemas.run import (
    CancelResult,
    JobSummary,
    OutputResponse,
    ResetJobResult,
    ResumeResult,
    RunCreate,
    RunResponse,
    TickResult,
)
from distill.services import run as run_service
from distill.services.export import export_run
from distill.services.run_controls import cancel_run, reset_job, resume_run
from distill.services.tick import process_tick

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runs", tags=["runs"])


@router.post("", response_model=RunResponse)
def create_run(data: RunCreate, db: Session = Depends(get_db)):
    """Create a run with one queued job per eligible day."""
    return run_service.create_run(
        db,
        import_batch_id=data.import_batch_id,
        start_date=data.start_date,
        end_date=data.end_date,
        sources=data.sources,
        filter_profile_id=data.filter_profile_id,
        model=data.model,
        label_spec=data.label_spec,
        max_input_tokens=data.max_input_tokens,
    )


@router.get("/{run_id}", response_model=RunResponse)
def get_run(run_id: str, db: Session = Depends(get_db)):
    return run_service.get_run(db, run_id)


@router.get("/{run_id}/jobs", response_model=List[JobSummary])
def list_jobs(run_id: str, db: Session = Depends(get_db)):
    return run_service.list_jobs(db, run_id)


@router.post("/{run_id}/tick", response_model=TickResult)
def tick(run_id: str, max_jobs: int = 1, db: Session = Depends(get_db)):
    """Process up to max_jobs queued jobs. 409 TICK_IN_PROGRESS means retry later."""
    return process_tick(db, run_id, max_jobs=max_jobs)


@router.post("/{run_id}/resume", response_model=ResumeResult)
def resume(run_id: str, db: Session = Depends(get_db)):
    return resume_run(db, run_id)


@router.post("/{run_id}/cancel", response_model=CancelResult)
def cancel(run_id: str, db: Session = Depends(get_db)):
    return cancel_run(db, run_id)


@router.post("/{run_id}/jobs/{day_date}/reset", response_model=ResetJobResult)
def reset(run_id: str, day_date: str, db: Session = Depends(get_db)):
    return reset_job(db, run_id, day_date)


@router.get("/{run_id}/jobs/{day_date}/output", response_model=OutputResponse)
def get_output(run_id: str, day_date: str, db: Session = Depends(get_db)):
    return run_service.get_job_output(db, run_id, day_date)


@router.post("/{run_id}/export", response_model=ExportResult)
def export(run_id: str, data: ExportRequest, db: Session = Depends(get_db)):
    """Write a completed run's summaries under the export directory."""
    return export_run(db, run_id, data.output_dir)
