"""Classification audit model."""

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String, Text

from distill.database import Base, JsonType, new_id, utc_now
from distill.enums import ClassifyRunStatus


class ClassifyRun(Base):
    """Audit row for one classify invocation, checkpointed while running."""

    __tablename__ = "classify_runs"

    id = Column(String(36), primary_key=True, default=new_id)
    import_batch_id = Column(String(36), ForeignKey("import_batches.id"), nullable=False)
    model = Column(Text, nullable=False)
    prompt_version_id = Column(String(36), ForeignKey("prompt_versions.id"), nullable=False)
    mode = Column(String(8), nullable=False)
    status = Column(String(16), nullable=False, default=ClassifyRunStatus.RUNNING.value)
    total_atoms = Column(Integer, nullable=False)
    processed_atoms = Column(Integer, nullable=False, default=0)
    newly_labeled = Column(Integer, nullable=False, default=0)
    skipped_already_labeled = Column(Integer, nullable=False, default=0)
    skipped_bad_output = Column(Integer, nullable=False, default=0)
    aliased_count = Column(Integer, nullable=False, default=0)
    labeled_total = Column(Integer, nullable=False, default=0)
    tokens_in = Column(Integer)
    tokens_out = Column(Integer)
    cost_usd = Column(Float)
    last_atom_stable_id_processed = Column(Text)
    error_json = Column(JsonType)
    started_at = Column(DateTime, default=utc_now, nullable=False)
    finished_at = Column(DateTime)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("idx_classify_runs_import_batch_id", "import_batch_id"),
        Index("idx_classify_runs_label_spec", "import_batch_id", "model", "prompt_version_id"),
    )
