"""Calendar-day spend across jobs and classify runs."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from distill.models import ClassifyRun, Job


def utc_day_bounds(now_utc: datetime):
    """Naive-UTC [start, end) bounds of the calendar day containing now_utc."""
    if now_utc.tzinfo is not None:
        now_utc = now_utc.astimezone(timezone.utc).replace(tzinfo=None)
    start = now_utc.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def get_calendar_day_spend_usd(db: Session, now_utc: Optional[datetime] = None) -> float:
    """
    Total USD spent during the UTC calendar day.

    Sums cost_usd of jobs and classify runs whose finished_at falls in the day.
    """
    start, end = utc_day_bounds(now_utc or datetime.now(timezone.utc))

    job_spend = (
        db.query(func.coalesce(func.sum(Job.cost_usd), 0.0))
        .filter(Job.finished_at >= start, Job.finished_at < end)
        .scalar()
    )
    classify_spend = (
        db.query(func.coalesce(func.sum(ClassifyRun.cost_usd), 0.0))
        .filter(ClassifyRun.finished_at >= start, ClassifyRun.finished_at < end)
        .scalar()
    )
    return float(job_spend or 0.0) + float(classify_spend or 0.0)
