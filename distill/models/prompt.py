"""Prompt, prompt version and filter profile models."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text, UniqueConstraint

from distill.database import Base, JsonType, new_id, utc_now

# Reserved version label for deterministic stub classification
STUB_CLASSIFY_VERSION_LABEL = "classify_stub_v1"


class Prompt(Base):
    """A named prompt for one pipeline stage."""

    __tablename__ = "prompts"

    id = Column(String(36), primary_key=True, default=new_id)
    stage = Column(String(16), nullable=False)
    name = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utc_now)

    __table_args__ = (UniqueConstraint("stage", "name"),)


class PromptVersion(Base):
    """An immutable template revision of a prompt."""

    __tablename__ = "prompt_versions"

    id = Column(String(36), primary_key=True, default=new_id)
    prompt_id = Column(String(36), ForeignKey("prompts.id"), nullable=False)
    version_label = Column(Text, nullable=False)
    template_text = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utc_now)

    __table_args__ = (UniqueConstraint("prompt_id", "version_label"),)


class FilterProfile(Base):
    """Include/exclude category filter applied when building bundles."""

    __tablename__ = "filter_profiles"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(Text, nullable=False, unique=True)
    mode = Column(String(16), nullable=False)
    categories = Column(JsonType, nullable=False, default=list)
    created_at = Column(DateTime, default=utc_now)
