"""Pytest configuration and fixtures."""

from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from distill.config import settings
from distill.database import Base
from distill.hashing import sha256
from distill.models import FilterProfile, ImportBatch, MessageAtom, MessageLabel, Prompt, PromptVersion

DAY_ONE = date(2024, 1, 15)
DAY_TWO = date(2024, 1, 16)

CLASSIFY_TEMPLATE = (
    "Classify the message. Reply with JSON only: "
    '{"category": "<one of the categories>", "confidence": <0..1>}'
)


@pytest.fixture(scope="function")
def test_engine():
    """In-memory SQLite engine shared by every connection of one test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def test_db(test_engine):
    """Create a test database session for each test."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    db = TestingSessionLocal()

    yield db

    db.close()


@pytest.fixture(autouse=True)
def llm_settings(monkeypatch):
    """Dry-run, no caps, no spacing, no keys unless a test sets them."""
    monkeypatch.setattr(settings, "LLM_MODE", "dry_run")
    monkeypatch.setattr(settings, "LLM_MIN_DELAY_MS", 0)
    monkeypatch.setattr(settings, "LLM_MAX_USD_PER_RUN", None)
    monkeypatch.setattr(settings, "LLM_MAX_USD_PER_DAY", None)
    monkeypatch.setattr(settings, "LLM_PROVIDER_DEFAULT", None)
    monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
    monkeypatch.setattr(settings, "ANTHROPIC_API_KEY", None)
    return settings


def make_batch(db, source="CHATGPT", timezone="UTC"):
    batch = ImportBatch(source=source, original_filename="export.json", file_size_bytes=100, timezone=timezone, stats_json={})
    db.add(batch)
    db.commit()
    return batch


def make_atom(db, batch, day=DAY_ONE, index=0, role="USER", source="CHATGPT", text=None):
    text = text if text is not None else f"message {index} on {day.isoformat()}"
    stable_id = sha256(f"{batch.id}|{source}|{day.isoformat()}|{index}|{role}")
    atom = MessageAtom(
        atom_stable_id=stable_id,
        import_batch_id=batch.id,
        source=source,
        source_conversation_id="conv-1",
        source_message_id=f"msg-{index}",
        timestamp_utc=datetime(day.year, day.month, day.day, 10, index // 60, index % 60),
        day_date=day,
        role=role,
        text=text,
        text_hash=sha256(text),
    )
    db.add(atom)
    db.commit()
    return atom


def make_atoms(db, batch, count, day=DAY_ONE):
    atoms = []
    for i in range(count):
        atoms.append(make_atom(db, batch, day=day, index=i, role="USER" if i % 2 == 0 else "ASSISTANT"))
    return atoms


def make_prompt_version(db, stage="CLASSIFY", label="classify_real_v1", template=CLASSIFY_TEMPLATE, active=True, name=None):
    prompt = db.query(Prompt).filter(Prompt.stage == stage, Prompt.name == (name or stage.lower())).first()
    if prompt is None:
        prompt = Prompt(stage=stage, name=name or stage.lower())
        db.add(prompt)
        db.flush()
    version = PromptVersion(prompt_id=prompt.id, version_label=label, template_text=template, is_active=active)
    db.add(version)
    db.commit()
    return version


def make_filter_profile(db, mode="INCLUDE", categories=("WORK", "LEARNING", "CREATIVE", "MUNDANE", "PERSONAL", "OTHER"), name="default"):
    profile = FilterProfile(name=name, mode=mode, categories=list(categories))
    db.add(profile)
    db.commit()
    return profile


def label_atom(db, atom, prompt_version, category="WORK", model="stub_v1", confidence=0.5):
    label = MessageLabel(
        message_atom_id=atom.id,
        category=category,
        confidence=confidence,
        model=model,
        prompt_version_id=prompt_version.id,
    )
    db.add(label)
    db.commit()
    return label


class FakeClock:
    """Manual clock; sleep advances time instantly."""

    def __init__(self, start_ms=1_000_000.0):
        self.current = start_ms
        self.sleeps = []

    def now(self):
        return self.current

    def sleep(self, ms):
        self.sleeps.append(ms)
        self.current += ms

    def advance(self, ms):
        self.current += ms
