"""Run creation with frozen config, plus run read accessors."""

import logging
from datetime import date
from typing import List, Optional, Sequence

from sqlalchemy import and_, exists, func
from sqlalchemy.orm import Session

from distill.enums import JobStatus, RunStatus, Stage
from distill.errors import InvalidInputError, NoEligibleDaysError, NotFoundError
from distill.llm.errors import UnknownModelPricingError
from distill.llm.pricing import build_pricing_snapshot, infer_provider, is_stub_model
from distill.models import FilterProfile, ImportBatch, Job, MessageAtom, MessageLabel, Output, Prompt, PromptVersion, Run
from distill.schemas.run import (
    FilterProfileSnapshot,
    JobSummary,
    LabelSpec,
    OutputResponse,
    ProgressCounts,
    PromptVersionIds,
    RunConfig,
    RunResponse,
    RunTotals,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_INPUT_TOKENS = 12000


def parse_day(value) -> date:
    """Accept a date or a YYYY-MM-DD string."""
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise InvalidInputError(f"Invalid date (expected YYYY-MM-DD): {value}")


def get_progress(db: Session, run_id: str) -> ProgressCounts:
    """Job counts by status for a run."""
    rows = db.query(Job.status, func.count(Job.id)).filter(Job.run_id == run_id).group_by(Job.status).all()
    counts = {status.lower(): count for status, count in rows}
    return ProgressCounts(**counts)


def determine_run_status(progress: ProgressCounts) -> RunStatus:
    """
    Derive run status from job progress.

    Runs with queued jobs stay QUEUED (nothing done yet) or RUNNING, even if
    some jobs already failed. Once every job is terminal: FAILED if any
    failed, else COMPLETED.
    """
    if progress.running > 0:
        return RunStatus.RUNNING
    if progress.queued > 0:
        done = progress.succeeded + progress.failed + progress.cancelled
        return RunStatus.RUNNING if done > 0 else RunStatus.QUEUED
    if progress.failed > 0:
        return RunStatus.FAILED
    if progress.succeeded > 0:
        return RunStatus.COMPLETED
    return RunStatus.QUEUED


def get_run_totals(db: Session, run_id: str) -> RunTotals:
    tokens_in, tokens_out, cost_usd = (
        db.query(
            func.coalesce(func.sum(Job.tokens_in), 0),
            func.coalesce(func.sum(Job.tokens_out), 0),
            func.coalesce(func.sum(Job.cost_usd), 0.0),
        )
        .filter(Job.run_id == run_id)
        .one()
    )
    return RunTotals(tokens_in=int(tokens_in), tokens_out=int(tokens_out), cost_usd=float(cost_usd))


def find_eligible_days(
    db: Session,
    import_batch_id: str,
    start_date: date,
    end_date: date,
    sources: Sequence[str],
    filter_profile: FilterProfileSnapshot,
    label_spec: LabelSpec,
) -> List[date]:
    """Days with at least one atom whose label passes the filter profile."""
    categories = [c.upper() for c in filter_profile.categories]
    if filter_profile.mode.lower() == "include":
        category_condition = MessageLabel.category.in_(categories)
    else:
        category_condition = MessageLabel.category.notin_(categories)

    rows = (
        db.query(MessageAtom.day_date)
        .filter(
            MessageAtom.import_batch_id == import_batch_id,
            MessageAtom.source.in_([s.upper() for s in sources]),
            MessageAtom.day_date >= start_date,
            MessageAtom.day_date <= end_date,
            exists().where(
                and_(
                    MessageLabel.message_atom_id == MessageAtom.id,
                    MessageLabel.model == label_spec.model,
                    MessageLabel.prompt_version_id == label_spec.prompt_version_id,
                    category_condition,
                )
            ),
        )
        .distinct()
        .order_by(MessageAtom.day_date)
        .all()
    )
    return [row[0] for row in rows]


def create_run(
    db: Session,
    import_batch_id: str,
    start_date,
    end_date,
    sources: Sequence[str],
    filter_profile_id: str,
    model: str,
    label_spec: LabelSpec,
    max_input_tokens: Optional[int] = None,
) -> RunResponse:
    """
    Create a run with a frozen config and one queued job per eligible day.

    Raises:
        NotFoundError: Unknown batch, filter profile or label-spec prompt version,
            or no active summarize prompt version
        NoEligibleDaysError: No day passes the filters
    """
    start = parse_day(start_date)
    end = parse_day(end_date)
    if end < start:
        raise InvalidInputError("endDate must not be before startDate")
    if not sources:
        raise InvalidInputError("sources must not be empty")

    import_batch = db.query(ImportBatch).filter(ImportBatch.id == import_batch_id).first()
    if not import_batch:
        raise NotFoundError("ImportBatch", import_batch_id)

    filter_profile = db.query(FilterProfile).filter(FilterProfile.id == filter_profile_id).first()
    if not filter_profile:
        raise NotFoundError("FilterProfile", filter_profile_id)

    summarize_version = (
        db.query(PromptVersion)
        .join(Prompt, Prompt.id == PromptVersion.prompt_id)
        .filter(Prompt.stage == Stage.SUMMARIZE.value, PromptVersion.is_active.is_(True))
        .first()
    )
    if not summarize_version:
        raise NotFoundError("Active summarize PromptVersion")

    classify_version = db.query(PromptVersion).filter(PromptVersion.id == label_spec.prompt_version_id).first()
    if not classify_version:
        raise NotFoundError("LabelSpec PromptVersion", label_spec.prompt_version_id)

    snapshot = FilterProfileSnapshot(
        name=filter_profile.name,
        mode=filter_profile.mode.lower(),
        categories=list(filter_profile.categories),
    )
    lower_sources = [s.lower() for s in sources]

    eligible_days = find_eligible_days(db, import_batch_id, start, end, lower_sources, snapshot, label_spec)
    if not eligible_days:
        raise NoEligibleDaysError()

    pricing_snapshot = None
    if not is_stub_model(model):
        try:
            pricing_snapshot = build_pricing_snapshot(infer_provider(model), model)
        except UnknownModelPricingError:
            logger.warning(f"No pricing for model {model}; run will rely on provider-reported cost")

    config = RunConfig(
        prompt_version_ids=PromptVersionIds(summarize=summarize_version.id),
        label_spec=label_spec,
        filter_profile_snapshot=snapshot,
        timezone=import_batch.timezone,
        max_input_tokens=max_input_tokens or DEFAULT_MAX_INPUT_TOKENS,
        pricing_snapshot=pricing_snapshot,
    )

    run = Run(
        import_batch_id=import_batch_id,
        start_date=start,
        end_date=end,
        sources=[s.upper() for s in sources],
        filter_profile_id=filter_profile_id,
        model=model,
        config_json=config.to_json(),
        status=RunStatus.QUEUED.value,
    )
    db.add(run)
    db.flush()

    for day in eligible_days:
        db.add(Job(run_id=run.id, day_date=day, status=JobStatus.QUEUED.value, attempt=1))
    db.commit()

    logger.info(f"Created run {run.id} with {len(eligible_days)} jobs")

    response = get_run(db, run.id)
    response.eligible_days = [d.isoformat() for d in eligible_days]
    return response


def get_run(db: Session, run_id: str) -> RunResponse:
    """
    Read a run with derived progress and totals.

    Raises:
        NotFoundError: If the run does not exist
    """
    run = db.query(Run).filter(Run.id == run_id).first()
    if not run:
        raise NotFoundError("Run", run_id)

    progress = get_progress(db, run_id)
    return RunResponse(
        id=run.id,
        status=run.status.lower(),
        import_batch_id=run.import_batch_id,
        start_date=run.start_date.isoformat(),
        end_date=run.end_date.isoformat(),
        sources=[s.lower() for s in run.sources],
        filter_profile_id=run.filter_profile_id,
        model=run.model,
        output_target=run.output_target,
        config=run.config_json,
        progress=progress,
        totals=get_run_totals(db, run_id),
        job_count=sum(progress.model_dump().values()),
        created_at=run.created_at.isoformat() if run.created_at else None,
        updated_at=run.updated_at.isoformat() if run.updated_at else None,
    )


def job_summary(job: Job) -> JobSummary:
    return JobSummary(
        day_date=job.day_date.isoformat(),
        status=job.status.lower(),
        attempt=job.attempt,
        tokens_in=job.tokens_in,
        tokens_out=job.tokens_out,
        cost_usd=job.cost_usd,
        error=job.error,
    )


def list_jobs(db: Session, run_id: str) -> List[JobSummary]:
    """Jobs of a run ordered by day."""
    if not db.query(Run.id).filter(Run.id == run_id).first():
        raise NotFoundError("Run", run_id)
    jobs = db.query(Job).filter(Job.run_id == run_id).order_by(Job.day_date).all()
    return [job_summary(j) for j in jobs]


def get_job_output(db: Session, run_id: str, day_date, stage: Stage = Stage.SUMMARIZE) -> OutputResponse:
    """
    Stored output of a job.

    Raises:
        NotFoundError: If the run, job or output does not exist
    """
    day = parse_day(day_date)
    if not db.query(Run.id).filter(Run.id == run_id).first():
        raise NotFoundError("Run", run_id)
    job = db.query(Job).filter(Job.run_id == run_id, Job.day_date == day).first()
    if not job:
        raise NotFoundError("Job", f"{run_id}/{day.isoformat()}")
    output = db.query(Output).filter(Output.job_id == job.id, Output.stage == stage.value).first()
    if not output:
        raise NotFoundError("Output", f"{run_id}/{day.isoformat()}")

    return OutputResponse(
        id=output.id,
        stage=output.stage,
        output_text=output.output_text,
        output_json=output.output_json,
        model=output.model,
        prompt_version_id=output.prompt_version_id,
        bundle_hash=output.bundle_hash,
        bundle_context_hash=output.bundle_context_hash,
        created_at=output.created_at.isoformat() if output.created_at else None,
    )
