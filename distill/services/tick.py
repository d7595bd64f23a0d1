"""Tick processing: advance a run by up to N queued jobs under its advisory lock."""

import json
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from distill.config import get_min_delay_ms, get_spend_caps
from distill.database import utc_now
from distill.enums import JobStatus, RunStatus, Stage
from distill.errors import InvalidInputError, NotFoundError, ServiceError
from distill.llm.budget import BudgetPolicy, assert_within_budget
from distill.llm.client import LLMClient
from distill.llm.errors import BudgetExceededError, LlmError, MissingApiKeyError
from distill.llm.pricing import cost_from_rate, is_stub_model
from distill.llm.rate_limit import Clock, RateLimiter
from distill.models import Job, Output, Run
from distill.schemas.run import JobSummary, RunConfig, TickResult, parse_run_config
from distill.services.advisory_lock import AdvisoryLockService
from distill.services.budget_queries import get_calendar_day_spend_usd
from distill.services.bundle import build_bundle, estimate_tokens, segment_bundle
from distill.services.run import determine_run_status, get_progress, job_summary
from distill.services.summarizer import summarize

logger = logging.getLogger(__name__)

DEFAULT_JOBS_PER_TICK = 1

# Errors that need a config or credential change before a retry can succeed
NON_RETRIABLE_ERRORS = (BudgetExceededError, MissingApiKeyError)


class JobContext:
    """Per-tick state shared by the jobs processed in that tick."""

    def __init__(
        self,
        run: Run,
        config: RunConfig,
        llm: LLMClient,
        rate_limiter: RateLimiter,
        budget_policy: BudgetPolicy,
        run_spend_start: float,
        day_spend_start: float,
    ):
        self.import_batch_id = run.import_batch_id
        self.sources = [s.lower() for s in run.sources]
        self.model = run.model
        self.config = config
        self.llm = llm
        self.rate_limiter = rate_limiter
        self.budget_policy = budget_policy
        self.run_spend_start = run_spend_start
        self.day_spend_start = day_spend_start
        self.tick_spent_usd = 0.0

    def check_budget(self, next_cost_usd: float, job_spent_usd: float) -> None:
        spent = self.tick_spent_usd + job_spent_usd
        assert_within_budget(
            next_cost_usd,
            self.run_spend_start + spent,
            self.day_spend_start + spent,
            self.budget_policy,
        )

    def estimate_call_cost(self, text: str) -> float:
        snapshot = self.config.pricing_snapshot
        if snapshot is None or is_stub_model(self.model):
            return 0.0
        return cost_from_rate(snapshot, estimate_tokens(text), 0)


def _error_json(error: Exception) -> str:
    code = error.code if isinstance(error, (LlmError, ServiceError)) else "PROCESSING_ERROR"
    return json.dumps(
        {
            "code": code,
            "message": str(error),
            "at": datetime.now(timezone.utc).isoformat(),
            "retriable": not isinstance(error, NON_RETRIABLE_ERRORS),
        }
    )


def _summarize_text(db: Session, ctx: JobContext, text: str, job_totals: dict) -> str:
    if not is_stub_model(ctx.model):
        ctx.rate_limiter.acquire()
    ctx.check_budget(ctx.estimate_call_cost(text), job_totals["cost_usd"])

    result = summarize(ctx.llm, db, text, ctx.model, ctx.config.prompt_version_ids.summarize)
    job_totals["tokens_in"] += result.tokens_in
    job_totals["tokens_out"] += result.tokens_out
    job_totals["cost_usd"] += result.cost_usd

    ctx.check_budget(0.0, job_totals["cost_usd"])
    return result.text


def _claim_job(db: Session, job_id: str) -> bool:
    """Move a QUEUED job to RUNNING; False if it left QUEUED in the meantime."""
    claimed = (
        db.query(Job)
        .filter(Job.id == job_id, Job.status == JobStatus.QUEUED.value)
        .update({Job.status: JobStatus.RUNNING.value, Job.started_at: utc_now()}, synchronize_session=False)
    )
    db.commit()
    return bool(claimed)


def _finish_job(
    db: Session,
    job_id: str,
    status: JobStatus,
    usage: dict,
    error: Optional[str] = None,
) -> bool:
    """
    Write a RUNNING job's terminal state without committing.

    A job cancelled while its call was in flight keeps CANCELLED; only the
    usage it incurred is recorded. Returns False in that case.
    """
    finished = (
        db.query(Job)
        .filter(Job.id == job_id, Job.status == JobStatus.RUNNING.value)
        .update(
            {**usage, Job.status: status.value, Job.finished_at: utc_now(), Job.error: error},
            synchronize_session=False,
        )
    )
    if not finished:
        db.query(Job).filter(Job.id == job_id).update(usage, synchronize_session=False)
    return bool(finished)


def _reload_job(db: Session, job_id: str) -> Job:
    db.expire_all()
    return db.query(Job).filter(Job.id == job_id).one()


def process_job(db: Session, job: Job, ctx: JobContext) -> Optional[JobSummary]:
    """
    Run one job: build the bundle, summarize (segmented when too large), store the output.

    Failures are recorded on the job and never propagate. Returns None when
    the job was no longer QUEUED by the time it was claimed.
    """
    job_id = job.id
    day = job.day_date
    if not _claim_job(db, job_id):
        logger.info(f"Job {job_id} for {day.isoformat()} is no longer queued, skipping")
        return None

    totals = {"tokens_in": 0, "tokens_out": 0, "cost_usd": 0.0}
    logger.info(f"Processing job {job_id} for {day.isoformat()}")

    try:
        bundle = build_bundle(
            db,
            ctx.import_batch_id,
            day,
            ctx.sources,
            ctx.config.label_spec,
            ctx.config.filter_profile_snapshot,
        )

        if bundle.atom_count == 0:
            _finish_job(
                db,
                job_id,
                JobStatus.SUCCEEDED,
                {Job.tokens_in: 0, Job.tokens_out: 0, Job.cost_usd: 0.0},
            )
            db.commit()
            return job_summary(_reload_job(db, job_id))

        estimated_tokens = estimate_tokens(bundle.bundle_text)
        meta = {"atomCount": bundle.atom_count, "estimatedInputTokens": estimated_tokens}

        if estimated_tokens > ctx.config.max_input_tokens:
            segmentation = segment_bundle(bundle.atoms, bundle.bundle_hash, ctx.config.max_input_tokens)
            parts: List[str] = []
            for segment in segmentation.segments:
                text = _summarize_text(db, ctx, segment.text, totals)
                parts.append(f"## Segment {segment.index + 1}\n\n{text}")
            output_text = "\n\n".join(parts)
            meta.update(
                segmented=True,
                segmentCount=segmentation.segment_count,
                segmentIds=[s.segment_id for s in segmentation.segments],
            )
        else:
            output_text = _summarize_text(db, ctx, bundle.bundle_text, totals)
            meta["segmented"] = False

        snapshot = ctx.config.pricing_snapshot
        if snapshot is not None and not is_stub_model(ctx.model) and totals["cost_usd"] == 0:
            totals["cost_usd"] = cost_from_rate(snapshot, totals["tokens_in"], totals["tokens_out"])

        usage = {
            Job.tokens_in: totals["tokens_in"],
            Job.tokens_out: totals["tokens_out"],
            Job.cost_usd: totals["cost_usd"],
        }
        if _finish_job(db, job_id, JobStatus.SUCCEEDED, usage):
            db.add(
                Output(
                    job_id=job_id,
                    stage=Stage.SUMMARIZE.value,
                    output_text=output_text,
                    output_json={"meta": meta},
                    model=ctx.model,
                    prompt_version_id=ctx.config.prompt_version_ids.summarize,
                    bundle_hash=bundle.bundle_hash,
                    bundle_context_hash=bundle.bundle_context_hash,
                )
            )
            logger.info(f"Job {job_id} succeeded: {totals['tokens_in']} in, {totals['tokens_out']} out")
        else:
            logger.warning(f"Job {job_id} was cancelled while running, output discarded")
        db.commit()

        ctx.tick_spent_usd += totals["cost_usd"]
        return job_summary(_reload_job(db, job_id))

    except Exception as e:
        logger.error(f"Job {job_id} for {day.isoformat()} failed: {e}")
        db.rollback()
        usage = {
            Job.tokens_in: totals["tokens_in"] or None,
            Job.tokens_out: totals["tokens_out"] or None,
            Job.cost_usd: totals["cost_usd"] or None,
        }
        _finish_job(db, job_id, JobStatus.FAILED, usage, error=_error_json(e))
        db.commit()
        ctx.tick_spent_usd += totals["cost_usd"]
        return job_summary(_reload_job(db, job_id))


def _current_status(db: Session, run_id: str) -> str:
    return db.query(Run.status).filter(Run.id == run_id).scalar()


def _tick_locked(
    db: Session,
    run_id: str,
    max_jobs: int,
    llm: LLMClient,
    clock: Optional[Clock],
) -> TickResult:
    run = db.query(Run).filter(Run.id == run_id).first()
    if not run:
        raise NotFoundError("Run", run_id)

    if run.status in (RunStatus.CANCELLED.value, RunStatus.COMPLETED.value):
        return TickResult(
            run_id=run_id,
            processed=0,
            jobs=[],
            progress=get_progress(db, run_id),
            run_status=run.status.lower(),
        )

    config = parse_run_config(run.config_json)

    queued_jobs = (
        db.query(Job)
        .filter(Job.run_id == run_id, Job.status == JobStatus.QUEUED.value)
        .order_by(Job.day_date)
        .limit(max_jobs)
        .all()
    )

    processed: List[JobSummary] = []
    if queued_jobs:
        if run.status != RunStatus.RUNNING.value:
            run.status = RunStatus.RUNNING.value
            db.commit()

        run_spend = db.query(func.coalesce(func.sum(Job.cost_usd), 0.0)).filter(Job.run_id == run_id).scalar()
        ctx = JobContext(
            run=run,
            config=config,
            llm=llm,
            rate_limiter=RateLimiter(get_min_delay_ms(), clock),
            budget_policy=get_spend_caps(),
            run_spend_start=float(run_spend),
            day_spend_start=get_calendar_day_spend_usd(db),
        )
        for job in queued_jobs:
            if _current_status(db, run_id) == RunStatus.CANCELLED.value:
                logger.info(f"Run {run_id} was cancelled, stopping tick")
                break
            summary = process_job(db, job, ctx)
            if summary is not None:
                processed.append(summary)

    progress = get_progress(db, run_id)
    db.expire_all()
    run = db.query(Run).filter(Run.id == run_id).one()
    # Cancellation is absorbing; job outcomes never move a run out of it
    if run.status == RunStatus.CANCELLED.value:
        new_status = RunStatus.CANCELLED
    else:
        new_status = determine_run_status(progress)
        if run.status != new_status.value:
            run.status = new_status.value
            db.commit()

    return TickResult(
        run_id=run_id,
        processed=len(processed),
        jobs=processed,
        progress=progress,
        run_status=new_status.value.lower(),
    )


def process_tick(
    db: Session,
    run_id: str,
    max_jobs: int = DEFAULT_JOBS_PER_TICK,
    llm_client: Optional[LLMClient] = None,
    lock_service: Optional[AdvisoryLockService] = None,
    clock: Optional[Clock] = None,
) -> TickResult:
    """
    Process up to max_jobs queued jobs for a run, sequentially.

    Cancelled and completed runs are returned unchanged without doing work.

    Raises:
        InvalidInputError: If max_jobs is below 1
        NotFoundError: If the run does not exist
        TickInProgressError: If another tick holds the run's lock
    """
    if max_jobs < 1:
        raise InvalidInputError(f"max_jobs must be at least 1, got {max_jobs}")
    if not db.query(Run.id).filter(Run.id == run_id).first():
        raise NotFoundError("Run", run_id)

    llm = llm_client or LLMClient()
    lock_service = lock_service or AdvisoryLockService(db.get_bind())
    return lock_service.with_lock(run_id, lambda: _tick_locked(db, run_id, max_jobs, llm, clock))
