"""Tests for the classification audit pipeline."""

import pytest
from conftest import FakeClock, make_atoms, make_batch, make_prompt_version

from distill.config import settings
from distill.enums import CORE_CATEGORIES, Category
from distill.errors import InvalidInputError, NotFoundError
from distill.llm.budget import BudgetPolicy
from distill.llm.client import LLMClient
from distill.llm.errors import BudgetExceededError, LlmProviderError, MissingApiKeyError
from distill.llm.rate_limit import RateLimiter
from distill.llm.types import ProviderResult
from distill.models import ClassifyRun, MessageLabel
from distill.services.classify import (
    classify_batch,
    compute_stub_category,
    get_classify_run,
    get_last_classify_stats,
)


class ScriptedAdapter:
    """Returns queued replies; raises once fail_after calls succeeded."""

    def __init__(self, replies=None, fail_after=None, default='{"category":"WORK","confidence":0.8}'):
        self.replies = list(replies or [])
        self.fail_after = fail_after
        self.default = default
        self.calls = 0

    def call(self, request, api_key):
        if self.fail_after is not None and self.calls >= self.fail_after:
            raise RuntimeError("upstream 503")
        self.calls += 1
        text = self.replies.pop(0) if self.replies else self.default
        return ProviderResult(text=text, tokens_in=10, tokens_out=5, raw={})


@pytest.fixture
def real_llm(monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")

    def build(adapter):
        return LLMClient(mode="real", providers={"openai": adapter})

    return build


def labels_for(db, model, prompt_version_id):
    return db.query(MessageLabel).filter(
        MessageLabel.model == model,
        MessageLabel.prompt_version_id == prompt_version_id,
    ).all()


def test_stub_category_is_deterministic():
    """Test the stub category depends only on the stable id."""
    assert compute_stub_category("atom-1") == compute_stub_category("atom-1")
    assert compute_stub_category("atom-1") in CORE_CATEGORIES


def test_stub_classify_labels_every_atom(test_db):
    """Test stub mode labels all atoms with confidence 0.5."""
    batch = make_batch(test_db)
    atoms = make_atoms(test_db, batch, 5)
    version = make_prompt_version(test_db, label="classify_stub_v1", template="stub")

    result = classify_batch(test_db, batch.id, "stub_v1", version.id, "stub")

    assert result.totals.message_atoms == 5
    assert result.totals.newly_labeled == 5
    assert result.totals.labeled == 5
    assert result.totals.skipped_already_labeled == 0
    assert result.warnings is None

    labels = {label.message_atom_id: label for label in labels_for(test_db, "stub_v1", version.id)}
    for atom in atoms:
        assert labels[atom.id].category == compute_stub_category(atom.atom_stable_id).value
        assert labels[atom.id].confidence == 0.5

    row = test_db.query(ClassifyRun).filter(ClassifyRun.id == result.classify_run_id).one()
    assert row.status == "succeeded"
    assert row.processed_atoms == 5
    assert row.finished_at is not None


def test_second_classify_is_idempotent_with_new_audit_row(test_db):
    """Test re-running adds no labels but records a second ClassifyRun."""
    batch = make_batch(test_db)
    make_atoms(test_db, batch, 4)
    version = make_prompt_version(test_db, label="classify_stub_v1", template="stub")

    first = classify_batch(test_db, batch.id, "stub_v1", version.id, "stub")
    second = classify_batch(test_db, batch.id, "stub_v1", version.id, "stub")

    assert second.totals.newly_labeled == 0
    assert second.totals.skipped_already_labeled == 4
    assert second.classify_run_id != first.classify_run_id
    assert test_db.query(ClassifyRun).count() == 2
    assert len(labels_for(test_db, "stub_v1", version.id)) == 4

    row = get_classify_run(test_db, second.classify_run_id)
    assert row.totals.newly_labeled == 0
    assert row.totals.skipped_already_labeled == 4


def test_stub_categories_stable_after_relabel(test_db):
    """Test deleting labels and reclassifying gives the same categories."""
    batch = make_batch(test_db)
    make_atoms(test_db, batch, 6)
    version = make_prompt_version(test_db, label="classify_stub_v1", template="stub")

    classify_batch(test_db, batch.id, "stub_v1", version.id, "stub")
    before = {l.message_atom_id: l.category for l in labels_for(test_db, "stub_v1", version.id)}

    test_db.query(MessageLabel).delete()
    test_db.commit()
    classify_batch(test_db, batch.id, "stub_v1", version.id, "stub")
    after = {l.message_atom_id: l.category for l in labels_for(test_db, "stub_v1", version.id)}

    assert before == after


def test_unknown_batch_or_prompt_version(test_db):
    """Test NOT_FOUND preflight failures create no audit row."""
    batch = make_batch(test_db)
    version = make_prompt_version(test_db, label="classify_stub_v1", template="stub")

    with pytest.raises(NotFoundError):
        classify_batch(test_db, "missing", "stub_v1", version.id, "stub")
    with pytest.raises(NotFoundError):
        classify_batch(test_db, batch.id, "stub_v1", "missing", "stub")

    assert test_db.query(ClassifyRun).count() == 0


def test_invalid_mode(test_db):
    batch = make_batch(test_db)
    version = make_prompt_version(test_db, label="classify_stub_v1", template="stub")

    with pytest.raises(InvalidInputError):
        classify_batch(test_db, batch.id, "stub_v1", version.id, "fast")


@pytest.mark.parametrize(
    "stage,label,template",
    [
        ("SUMMARIZE", "summarize_v1", "Return category and confidence"),
        ("CLASSIFY", "classify_stub_v1", "Return category and confidence"),
        ("CLASSIFY", "classify_v2", "Return a category only"),
    ],
)
def test_real_mode_rejects_unusable_prompt(test_db, real_llm, stage, label, template):
    """Test real-mode prompt checks fail before any audit row or call."""
    batch = make_batch(test_db)
    make_atoms(test_db, batch, 2)
    version = make_prompt_version(test_db, stage=stage, label=label, template=template)
    adapter = ScriptedAdapter()

    with pytest.raises(InvalidInputError):
        classify_batch(test_db, batch.id, "gpt-4o", version.id, "real", llm_client=real_llm(adapter))

    assert adapter.calls == 0
    assert test_db.query(ClassifyRun).count() == 0


def test_real_mode_missing_key_fails_fast(test_db):
    """Test MISSING_API_KEY is raised before the audit row exists."""
    batch = make_batch(test_db)
    make_atoms(test_db, batch, 2)
    version = make_prompt_version(test_db)

    with pytest.raises(MissingApiKeyError):
        classify_batch(test_db, batch.id, "gpt-4o", version.id, "real", llm_client=LLMClient(mode="real"))

    assert test_db.query(ClassifyRun).count() == 0


def test_real_mode_dry_run_client_labels_with_07(test_db):
    """Test real mode through a dry-run client stores confidence 0.7."""
    batch = make_batch(test_db)
    make_atoms(test_db, batch, 3)
    version = make_prompt_version(test_db)

    result = classify_batch(
        test_db, batch.id, "gpt-4o", version.id, "real",
        llm_client=LLMClient(mode="dry_run"), rate_limiter=RateLimiter(0),
    )

    assert result.totals.newly_labeled == 3
    assert result.warnings.skipped_bad_output == 0
    assert all(l.confidence == 0.7 for l in labels_for(test_db, "gpt-4o", version.id))


def test_real_mode_bad_output_is_counted_not_fatal(test_db, real_llm):
    """Test a bad category is skipped and sampled while others are labeled."""
    batch = make_batch(test_db)
    make_atoms(test_db, batch, 2)
    version = make_prompt_version(test_db)
    adapter = ScriptedAdapter(replies=['{"category":"GALACTIC","confidence":0.61}'])

    result = classify_batch(
        test_db, batch.id, "gpt-4o", version.id, "real",
        llm_client=real_llm(adapter), rate_limiter=RateLimiter(0),
    )

    assert result.totals.newly_labeled == 1
    assert result.warnings.skipped_bad_output == 1
    assert "GALACTIC" in result.warnings.bad_category_samples
    labels = labels_for(test_db, "gpt-4o", version.id)
    assert [l.category for l in labels] == ["WORK"]


def test_real_mode_counts_aliases_and_usage(test_db, real_llm):
    """Test aliased categories are counted and usage is recorded."""
    batch = make_batch(test_db)
    make_atoms(test_db, batch, 2)
    version = make_prompt_version(test_db)
    adapter = ScriptedAdapter(replies=['{"category":"ethical","confidence":0.4}'])

    result = classify_batch(
        test_db, batch.id, "gpt-4o", version.id, "real",
        llm_client=real_llm(adapter), rate_limiter=RateLimiter(0),
    )

    assert result.warnings.aliased_count == 1
    categories = sorted(l.category for l in labels_for(test_db, "gpt-4o", version.id))
    assert categories == [Category.PERSONAL.value, Category.WORK.value]

    row = get_classify_run(test_db, result.classify_run_id)
    assert row.usage.tokens_in == 20
    assert row.usage.tokens_out == 10
    assert row.usage.cost_usd > 0


def test_real_mode_provider_failure_keeps_partial_snapshot(test_db, real_llm):
    """Test a mid-run provider failure leaves a failed row with checkpointed progress."""
    batch = make_batch(test_db)
    make_atoms(test_db, batch, 130)
    version = make_prompt_version(test_db)
    adapter = ScriptedAdapter(fail_after=105)

    with pytest.raises(LlmProviderError):
        classify_batch(
            test_db, batch.id, "gpt-4o", version.id, "real",
            llm_client=real_llm(adapter), rate_limiter=RateLimiter(0), clock=FakeClock(),
        )

    row = test_db.query(ClassifyRun).one()
    assert row.status == "failed"
    assert row.total_atoms == 130
    assert 100 <= row.processed_atoms < 130
    assert row.newly_labeled > 0
    assert row.last_atom_stable_id_processed is not None
    assert row.error_json["code"] == "LLM_PROVIDER_ERROR"
    assert row.finished_at is not None
    assert len(labels_for(test_db, "gpt-4o", version.id)) == row.labeled_total


def test_real_mode_budget_exceeded_marks_failed(test_db, real_llm):
    """Test a budget breach aborts the invocation and is persisted."""
    batch = make_batch(test_db)
    make_atoms(test_db, batch, 3)
    version = make_prompt_version(test_db)
    adapter = ScriptedAdapter()

    with pytest.raises(BudgetExceededError):
        classify_batch(
            test_db, batch.id, "gpt-4o", version.id, "real",
            llm_client=real_llm(adapter), rate_limiter=RateLimiter(0),
            budget_policy=BudgetPolicy(max_usd_per_run=0.0005),
        )

    assert adapter.calls == 0
    row = test_db.query(ClassifyRun).one()
    assert row.status == "failed"
    assert row.error_json["code"] == "BUDGET_EXCEEDED"
    assert row.error_json["details"]["limitType"] == "per_run"


def test_checkpoint_by_elapsed_time(test_db, real_llm, monkeypatch):
    """Test progress is written mid-flight once the time threshold passes."""
    monkeypatch.setattr(settings, "CLASSIFY_CHECKPOINT_EVERY_SECONDS", 5.0)
    batch = make_batch(test_db)
    make_atoms(test_db, batch, 3)
    version = make_prompt_version(test_db)
    clock = FakeClock()
    seen = []

    class SlowAdapter(ScriptedAdapter):
        def call(self, request, api_key):
            row = test_db.query(ClassifyRun).one()
            seen.append(row.processed_atoms)
            clock.advance(6000)
            return super().call(request, api_key)

    classify_batch(
        test_db, batch.id, "gpt-4o", version.id, "real",
        llm_client=real_llm(SlowAdapter()), rate_limiter=RateLimiter(0), clock=clock,
    )

    assert seen == [0, 1, 2]


def test_last_classify_stats(test_db):
    """Test the most recent run for a label spec is reported."""
    batch = make_batch(test_db)
    make_atoms(test_db, batch, 2)
    version = make_prompt_version(test_db, label="classify_stub_v1", template="stub")

    assert get_last_classify_stats(test_db, batch.id, "stub_v1", version.id).has_stats is False

    classify_batch(test_db, batch.id, "stub_v1", version.id, "stub")
    second = classify_batch(test_db, batch.id, "stub_v1", version.id, "stub")

    stats = get_last_classify_stats(test_db, batch.id, "stub_v1", version.id)
    assert stats.has_stats is True
    assert stats.stats.id == second.classify_run_id
    assert stats.stats.status == "succeeded"


def test_get_classify_run_not_found(test_db):
    with pytest.raises(NotFoundError):
        get_classify_run(test_db, "missing")
