"""Job and output models."""

from sqlalchemy import Column, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint

from distill.database import Base, JsonType, new_id, utc_now
from distill.enums import JobStatus


class Job(Base):
    """One day of work within a run."""

    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True, default=new_id)
    run_id = Column(String(36), ForeignKey("runs.id", ondelete="CASCADE"), nullable=False)
    day_date = Column(Date, nullable=False)
    status = Column(String(16), nullable=False, default=JobStatus.QUEUED.value)
    attempt = Column(Integer, nullable=False, default=1)
    started_at = Column(DateTime)
    finished_at = Column(DateTime)
    tokens_in = Column(Integer)
    tokens_out = Column(Integer)
    cost_usd = Column(Float)
    error = Column(Text)  # JSON string: code, message, at, retriable

    __table_args__ = (
        UniqueConstraint("run_id", "day_date", name="uq_jobs_run_day"),
        Index("idx_jobs_status", "status"),
        Index("idx_jobs_run_id", "run_id"),
    )


class Output(Base):
    """Result of a successful job for one stage."""

    __tablename__ = "outputs"

    id = Column(String(36), primary_key=True, default=new_id)
    job_id = Column(String(36), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False)
    stage = Column(String(16), nullable=False)
    output_text = Column(Text, nullable=False)
    output_json = Column(JsonType, nullable=False)
    model = Column(Text, nullable=False)
    prompt_version_id = Column(String(36), nullable=False)
    bundle_hash = Column(String(64), nullable=False)
    bundle_context_hash = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=utc_now)

    __table_args__ = (UniqueConstraint("job_id", "stage", name="uq_outputs_job_stage"),)
