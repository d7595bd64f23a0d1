"""Import batch, message atom and label models."""

from sqlalchemy import Column, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint

from distill.database import Base, JsonType, new_id, utc_now


class ImportBatch(Base):
    """One imported export file."""

    __tablename__ = "import_batches"

    id = Column(String(36), primary_key=True, default=new_id)
    source = Column(String(16), nullable=False)
    original_filename = Column(Text, nullable=False)
    file_size_bytes = Column(Integer, nullable=False, default=0)
    timezone = Column(Text, nullable=False, default="UTC")
    stats_json = Column(JsonType, nullable=False, default=dict)
    created_at = Column(DateTime, default=utc_now)


class MessageAtom(Base):
    """A single message, identified by a content-derived stable id."""

    __tablename__ = "message_atoms"

    id = Column(String(36), primary_key=True, default=new_id)
    atom_stable_id = Column(String(64), nullable=False, unique=True)
    import_batch_id = Column(String(36), ForeignKey("import_batches.id", ondelete="CASCADE"), nullable=False)
    source = Column(String(16), nullable=False)
    source_conversation_id = Column(Text)
    source_message_id = Column(Text)
    timestamp_utc = Column(DateTime, nullable=False)
    day_date = Column(Date, nullable=False)
    role = Column(String(16), nullable=False)
    text = Column(Text, nullable=False)
    text_hash = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=utc_now)

    __table_args__ = (
        Index("idx_message_atoms_import_batch_id", "import_batch_id"),
        Index("idx_message_atoms_day_date", "day_date"),
    )


class MessageLabel(Base):
    """Category assigned to an atom by a (model, prompt version) label spec."""

    __tablename__ = "message_labels"

    id = Column(String(36), primary_key=True, default=new_id)
    message_atom_id = Column(String(36), ForeignKey("message_atoms.id", ondelete="CASCADE"), nullable=False)
    category = Column(String(32), nullable=False)
    confidence = Column(Float, nullable=False)
    model = Column(Text, nullable=False)
    prompt_version_id = Column(String(36), ForeignKey("prompt_versions.id"), nullable=False)
    created_at = Column(DateTime, default=utc_now)

    __table_args__ = (
        UniqueConstraint("message_atom_id", "prompt_version_id", "model", name="uq_message_labels_spec"),
    )
