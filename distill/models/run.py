"""Run model."""

from sqlalchemy import Column, Date, DateTime, ForeignKey, String, Text

from distill.database import Base, JsonType, new_id, utc_now
from distill.enums import RunStatus


class Run(Base):
    """A summarization run over a date range with a frozen config snapshot."""

    __tablename__ = "runs"

    id = Column(String(36), primary_key=True, default=new_id)
    status = Column(String(16), nullable=False, default=RunStatus.QUEUED.value)
    import_batch_id = Column(String(36), ForeignKey("import_batches.id"), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    sources = Column(JsonType, nullable=False)  # upper-case Source values
    filter_profile_id = Column(String(36), ForeignKey("filter_profiles.id"), nullable=False)
    model = Column(Text, nullable=False)
    output_target = Column(Text, nullable=False, default="db")
    config_json = Column(JsonType, nullable=False)  # frozen at creation, never edited
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)
