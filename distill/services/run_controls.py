"""Run control operations: cancel, resume and per-job reset."""

import logging

from sqlalchemy.orm import Session

from distill.database import utc_now
from distill.enums import JobStatus, RunStatus
from distill.errors import ConflictError, NotFoundError
from distill.models import Job, Output, Run
from distill.schemas.run import CancelResult, ResetJobResult, ResumeResult
from distill.services.run import parse_day

logger = logging.getLogger(__name__)

CANCELLABLE_JOB_STATUSES = (JobStatus.QUEUED.value, JobStatus.RUNNING.value)


def _get_run(db: Session, run_id: str) -> Run:
    run = db.query(Run).filter(Run.id == run_id).first()
    if not run:
        raise NotFoundError("Run", run_id)
    return run


def cancel_run(db: Session, run_id: str) -> CancelResult:
    """
    Cancel a run and every non-terminal job. Cancelling twice is a no-op.

    In-flight provider calls are not aborted; their jobs are simply no
    longer picked up by later ticks.

    Raises:
        NotFoundError: If the run does not exist
        ConflictError: ALREADY_COMPLETED for a completed run
    """
    run = _get_run(db, run_id)

    if run.status == RunStatus.CANCELLED.value:
        return CancelResult(run_id=run_id, status="cancelled", jobs_cancelled=0)
    if run.status == RunStatus.COMPLETED.value:
        raise ConflictError("ALREADY_COMPLETED", "Cannot cancel a completed run")

    jobs_cancelled = (
        db.query(Job)
        .filter(Job.run_id == run_id, Job.status.in_(CANCELLABLE_JOB_STATUSES))
        .update({Job.status: JobStatus.CANCELLED.value, Job.finished_at: utc_now()}, synchronize_session=False)
    )
    run.status = RunStatus.CANCELLED.value
    db.commit()

    logger.info(f"Cancelled run {run_id} ({jobs_cancelled} jobs)")
    return CancelResult(run_id=run_id, status="cancelled", jobs_cancelled=jobs_cancelled)


def resume_run(db: Session, run_id: str) -> ResumeResult:
    """
    Requeue FAILED jobs. Succeeded work is never redone.

    With no failed jobs this changes nothing, including the run status.

    Raises:
        NotFoundError: If the run does not exist
        ConflictError: CANNOT_RESUME_CANCELLED for a cancelled run
    """
    run = _get_run(db, run_id)
    if run.status == RunStatus.CANCELLED.value:
        raise ConflictError("CANNOT_RESUME_CANCELLED", "Cannot resume a cancelled run")

    jobs_requeued = (
        db.query(Job)
        .filter(Job.run_id == run_id, Job.status == JobStatus.FAILED.value)
        .update(
            {
                Job.status: JobStatus.QUEUED.value,
                Job.error: None,
                Job.started_at: None,
                Job.finished_at: None,
            },
            synchronize_session=False,
        )
    )

    if jobs_requeued > 0:
        run.status = RunStatus.QUEUED.value
        db.commit()
        logger.info(f"Resumed run {run_id} ({jobs_requeued} jobs requeued)")
    else:
        db.rollback()

    return ResumeResult(run_id=run_id, status=run.status.lower(), jobs_requeued=jobs_requeued)


def reset_job(db: Session, run_id: str, day_date) -> ResetJobResult:
    """
    Reset one job for reprocessing: delete its outputs, bump attempt, requeue it and its run.

    Raises:
        NotFoundError: If the run or the job for that day does not exist
        ConflictError: CANNOT_RESET_CANCELLED for a cancelled run
    """
    day = parse_day(day_date)
    run = _get_run(db, run_id)
    if run.status == RunStatus.CANCELLED.value:
        raise ConflictError("CANNOT_RESET_CANCELLED", "Cannot reset a job in a cancelled run")

    job = db.query(Job).filter(Job.run_id == run_id, Job.day_date == day).first()
    if not job:
        raise NotFoundError("Job", f"{run_id}/{day.isoformat()}")

    outputs_deleted = db.query(Output).filter(Output.job_id == job.id).delete(synchronize_session=False)

    job.attempt = job.attempt + 1
    job.status = JobStatus.QUEUED.value
    job.error = None
    job.started_at = None
    job.finished_at = None
    job.tokens_in = None
    job.tokens_out = None
    job.cost_usd = None
    run.status = RunStatus.QUEUED.value
    db.commit()

    logger.info(f"Reset job {run_id}/{day.isoformat()} to attempt {job.attempt}")
    return ResetJobResult(
        run_id=run_id,
        day_date=day.isoformat(),
        status="queued",
        attempt=job.attempt,
        outputs_deleted=outputs_deleted,
    )
