"""Batch classification with a checkpointed ClassifyRun audit row.

Stub mode assigns a deterministic category from each atom's stable id.
Real mode calls the LLM once per unlabeled atom under the rate limiter and
budget guard. Both modes write labels with duplicate-skip so concurrent
invocations over the same atoms are safe, and every invocation gets its own
ClassifyRun row that ends as succeeded or failed.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import and_, exists, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from distill.config import get_min_delay_ms, get_spend_caps, settings
from distill.database import new_id, utc_now
from distill.enums import CORE_CATEGORIES, Category, ClassifyRunStatus, Stage
from distill.errors import InvalidInputError, NotFoundError, error_payload
from distill.hashing import hash_to_uint32, sha256
from distill.llm.budget import BudgetPolicy, assert_within_budget
from distill.llm.client import LLMClient
from distill.llm.pricing import infer_provider
from distill.llm.rate_limit import Clock, RateLimiter
from distill.llm.types import LlmMessage, LlmRequest
from distill.models import ClassifyRun, ImportBatch, MessageAtom, MessageLabel, Prompt, PromptVersion
from distill.models.prompt import STUB_CLASSIFY_VERSION_LABEL
from distill.schemas.classify import (
    ClassifyLabelSpec,
    ClassifyProgress,
    ClassifyResult,
    ClassifyRunResponse,
    ClassifyTotals,
    ClassifyUsage,
    ClassifyWarnings,
    LastClassifyStats,
)
from distill.services.budget_queries import get_calendar_day_spend_usd
from distill.services.classify_output import BadOutput, parse_classify_output

logger = logging.getLogger(__name__)

STUB_CONFIDENCE = 0.5
PAGE_SIZE = 10000
# Rows per INSERT statement; keeps bound parameters under SQLite's limit
INSERT_CHUNK_SIZE = 500
# Conservative pre-call estimate used by the budget guard
CLASSIFY_CALL_ESTIMATE_USD = 0.001
CLASSIFY_MAX_TOKENS = 200
MAX_BAD_CATEGORY_SAMPLES = 10

VALID_MODES = ("stub", "real")


def compute_stub_category(atom_stable_id: str) -> Category:
    """Deterministic category: uint32 of the first 4 sha256 bytes, mod 6."""
    return CORE_CATEGORIES[hash_to_uint32(sha256(atom_stable_id)) % len(CORE_CATEGORIES)]


def _label_exists(model: str, prompt_version_id: str):
    return exists().where(
        and_(
            MessageLabel.message_atom_id == MessageAtom.id,
            MessageLabel.model == model,
            MessageLabel.prompt_version_id == prompt_version_id,
        )
    )


def count_labels(db: Session, import_batch_id: str, model: str, prompt_version_id: str) -> int:
    """Labels for this exact label spec within the batch."""
    return (
        db.query(func.count(MessageLabel.id))
        .join(MessageAtom, MessageAtom.id == MessageLabel.message_atom_id)
        .filter(
            MessageAtom.import_batch_id == import_batch_id,
            MessageLabel.model == model,
            MessageLabel.prompt_version_id == prompt_version_id,
        )
        .scalar()
    )


def insert_labels_skip_duplicates(db: Session, rows: List[Dict]) -> None:
    """INSERT ... ON CONFLICT DO NOTHING on the label-spec unique key."""
    if not rows:
        return
    dialect = db.get_bind().dialect.name
    insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
    for start in range(0, len(rows), INSERT_CHUNK_SIZE):
        stmt = insert(MessageLabel).values(rows[start:start + INSERT_CHUNK_SIZE])
        stmt = stmt.on_conflict_do_nothing(index_elements=["message_atom_id", "prompt_version_id", "model"])
        db.execute(stmt)


def _label_row(atom_id: str, category: Category, confidence: float, model: str, prompt_version_id: str) -> Dict:
    return {
        "id": new_id(),
        "message_atom_id": atom_id,
        "category": category.value,
        "confidence": confidence,
        "model": model,
        "prompt_version_id": prompt_version_id,
        "created_at": utc_now(),
    }


def _validate_real_prompt(db: Session, prompt_version: PromptVersion) -> None:
    prompt = db.query(Prompt).filter(Prompt.id == prompt_version.prompt_id).first()
    if not prompt or prompt.stage != Stage.CLASSIFY.value:
        raise InvalidInputError("Real classification requires a CLASSIFY-stage prompt version")
    if prompt_version.version_label == STUB_CLASSIFY_VERSION_LABEL:
        raise InvalidInputError(f"Prompt version {STUB_CLASSIFY_VERSION_LABEL} is reserved for stub mode")
    template = prompt_version.template_text.lower()
    if "category" not in template or "confidence" not in template:
        raise InvalidInputError("Classify prompt must ask for JSON with 'category' and 'confidence'")


class ClassifyProgressTracker:
    """In-memory counters mirrored into the ClassifyRun row at checkpoints."""

    def __init__(self, classify_run: ClassifyRun, baseline_labeled: int, clock: Clock):
        self.classify_run = classify_run
        self.baseline_labeled = baseline_labeled
        self.clock = clock
        self.processed_atoms = baseline_labeled
        self.skipped_bad_output = 0
        self.aliased_count = 0
        self.bad_category_samples: List[str] = []
        self.tokens_in = 0
        self.tokens_out = 0
        self.cost_usd = 0.0
        self.last_atom_stable_id: Optional[str] = None
        self._since_checkpoint = 0
        self._last_checkpoint_ms = clock.now()

    def record_atom(self, atom_stable_id: str) -> None:
        self.processed_atoms += 1
        self._since_checkpoint += 1
        self.last_atom_stable_id = atom_stable_id

    def record_bad_output(self, bad: BadOutput) -> None:
        self.skipped_bad_output += 1
        sample = bad.bad_category
        if sample and sample not in self.bad_category_samples and len(self.bad_category_samples) < MAX_BAD_CATEGORY_SAMPLES:
            self.bad_category_samples.append(sample)

    def checkpoint_due(self) -> bool:
        if self._since_checkpoint >= settings.CLASSIFY_CHECKPOINT_EVERY_ATOMS:
            return True
        elapsed_ms = self.clock.now() - self._last_checkpoint_ms
        return self._since_checkpoint > 0 and elapsed_ms >= settings.CLASSIFY_CHECKPOINT_EVERY_SECONDS * 1000

    def apply(self, labeled_total: int) -> None:
        """Copy counters onto the row; the caller commits."""
        row = self.classify_run
        row.processed_atoms = self.processed_atoms
        row.labeled_total = labeled_total
        row.newly_labeled = max(0, labeled_total - self.baseline_labeled)
        row.skipped_bad_output = self.skipped_bad_output
        row.aliased_count = self.aliased_count
        row.last_atom_stable_id_processed = self.last_atom_stable_id
        if row.mode == "real":
            row.tokens_in = self.tokens_in
            row.tokens_out = self.tokens_out
            row.cost_usd = self.cost_usd
        row.updated_at = utc_now()

    def checkpoint(self, db: Session, labeled_total: int) -> None:
        self.apply(labeled_total)
        db.commit()
        self._since_checkpoint = 0
        self._last_checkpoint_ms = self.clock.now()
        logger.info(
            f"ClassifyRun {self.classify_run.id} checkpoint: "
            f"{self.processed_atoms}/{self.classify_run.total_atoms} atoms"
        )


def _next_page(db: Session, import_batch_id: str, model: str, prompt_version_id: str, after_id: Optional[str]):
    query = db.query(MessageAtom).filter(
        MessageAtom.import_batch_id == import_batch_id,
        ~_label_exists(model, prompt_version_id),
    )
    if after_id is not None:
        query = query.filter(MessageAtom.id > after_id)
    return query.order_by(MessageAtom.id).limit(PAGE_SIZE).all()


def _classify_stub(db: Session, tracker: ClassifyProgressTracker, import_batch_id: str, model: str, prompt_version_id: str) -> None:
    cursor = None
    while True:
        atoms = _next_page(db, import_batch_id, model, prompt_version_id, cursor)
        if not atoms:
            break
        rows = [
            _label_row(atom.id, compute_stub_category(atom.atom_stable_id), STUB_CONFIDENCE, model, prompt_version_id)
            for atom in atoms
        ]
        insert_labels_skip_duplicates(db, rows)
        for atom in atoms:
            tracker.record_atom(atom.atom_stable_id)
        cursor = atoms[-1].id
        tracker.checkpoint(db, count_labels(db, import_batch_id, model, prompt_version_id))


def _classify_real(
    db: Session,
    tracker: ClassifyProgressTracker,
    import_batch_id: str,
    model: str,
    prompt_version: PromptVersion,
    llm: LLMClient,
    rate_limiter: RateLimiter,
    policy: BudgetPolicy,
    day_spend_start: float,
) -> None:
    provider = infer_provider(model)
    cursor = None
    while True:
        atoms = _next_page(db, import_batch_id, model, prompt_version.id, cursor)
        if not atoms:
            break
        for atom in atoms:
            rate_limiter.acquire()
            assert_within_budget(
                CLASSIFY_CALL_ESTIMATE_USD,
                tracker.cost_usd,
                day_spend_start + tracker.cost_usd,
                policy,
            )
            request = LlmRequest(
                provider=provider,
                model=model,
                system=prompt_version.template_text,
                messages=[LlmMessage(role="user", content=atom.text)],
                max_tokens=CLASSIFY_MAX_TOKENS,
                metadata={"stage": "classify", "atomStableId": atom.atom_stable_id},
            )
            response = llm.call(request)
            tracker.tokens_in += response.tokens_in
            tracker.tokens_out += response.tokens_out
            tracker.cost_usd += response.cost_usd

            parsed = parse_classify_output(response.text)
            if isinstance(parsed, BadOutput):
                tracker.record_bad_output(parsed)
                logger.warning(f"Skipping atom {atom.atom_stable_id}: {parsed.message}")
            else:
                if parsed.aliased_from:
                    tracker.aliased_count += 1
                insert_labels_skip_duplicates(
                    db,
                    [_label_row(atom.id, parsed.category, parsed.confidence, model, prompt_version.id)],
                )
                # Each label cost a provider call; keep it even if a later atom fails
                db.commit()

            tracker.record_atom(atom.atom_stable_id)
            if tracker.checkpoint_due():
                tracker.checkpoint(db, count_labels(db, import_batch_id, model, prompt_version.id))
        cursor = atoms[-1].id


def classify_batch(
    db: Session,
    import_batch_id: str,
    model: str,
    prompt_version_id: str,
    mode: str,
    llm_client: Optional[LLMClient] = None,
    rate_limiter: Optional[RateLimiter] = None,
    clock: Optional[Clock] = None,
    budget_policy: Optional[BudgetPolicy] = None,
) -> ClassifyResult:
    """
    Label every atom of an import batch for (model, prompt version).

    Existing labels are never overwritten; re-running only fills gaps but
    always records a new ClassifyRun.

    Args:
        db: Database session
        import_batch_id: Batch to classify
        model: Model id stored on the labels
        prompt_version_id: Prompt version stored on the labels
        mode: 'stub' or 'real'
        llm_client: Client for real mode
        rate_limiter: Limiter for real mode; one per invocation when omitted
        clock: Time source for checkpoints and the default limiter
        budget_policy: Spend caps; read from settings when omitted

    Returns:
        ClassifyResult with totals and, in real mode, warnings

    Raises:
        InvalidInputError: Bad mode or unusable prompt version for real mode
        NotFoundError: Unknown batch or prompt version
        LlmError: Provider, budget or credential failures (after the run is marked failed)
    """
    if mode not in VALID_MODES:
        raise InvalidInputError(f"mode must be one of {', '.join(VALID_MODES)}: {mode}")

    if not db.query(ImportBatch.id).filter(ImportBatch.id == import_batch_id).first():
        raise NotFoundError("ImportBatch", import_batch_id)

    prompt_version = db.query(PromptVersion).filter(PromptVersion.id == prompt_version_id).first()
    if not prompt_version:
        raise NotFoundError("PromptVersion", prompt_version_id)

    clock = clock or Clock()
    llm = None
    if mode == "real":
        _validate_real_prompt(db, prompt_version)
        llm = llm_client or LLMClient()
        llm.require_api_key(infer_provider(model))

    total_atoms = db.query(func.count(MessageAtom.id)).filter(MessageAtom.import_batch_id == import_batch_id).scalar()
    baseline = count_labels(db, import_batch_id, model, prompt_version_id)

    classify_run = ClassifyRun(
        import_batch_id=import_batch_id,
        model=model,
        prompt_version_id=prompt_version_id,
        mode=mode,
        status=ClassifyRunStatus.RUNNING.value,
        total_atoms=total_atoms,
        skipped_already_labeled=baseline,
        processed_atoms=baseline,
        labeled_total=baseline,
        started_at=utc_now(),
    )
    db.add(classify_run)
    db.commit()
    classify_run_id = classify_run.id

    logger.info(
        f"ClassifyRun {classify_run_id} started: batch {import_batch_id}, model {model}, "
        f"mode {mode}, {total_atoms} atoms, {baseline} already labeled"
    )

    tracker = ClassifyProgressTracker(classify_run, baseline, clock)
    try:
        if mode == "stub":
            _classify_stub(db, tracker, import_batch_id, model, prompt_version_id)
        else:
            _classify_real(
                db,
                tracker,
                import_batch_id,
                model,
                prompt_version,
                llm,
                rate_limiter or RateLimiter(get_min_delay_ms(), clock),
                budget_policy or get_spend_caps(),
                get_calendar_day_spend_usd(db),
            )

        labeled_total = count_labels(db, import_batch_id, model, prompt_version_id)
        tracker.apply(labeled_total)
        classify_run.status = ClassifyRunStatus.SUCCEEDED.value
        classify_run.finished_at = utc_now()
        db.commit()
    except Exception as e:
        _mark_failed(db, classify_run_id, tracker, e)
        raise

    logger.info(
        f"ClassifyRun {classify_run_id} succeeded: {classify_run.newly_labeled} new labels, "
        f"{classify_run.skipped_bad_output} bad outputs"
    )

    warnings = None
    if mode == "real":
        warnings = ClassifyWarnings(
            skipped_bad_output=tracker.skipped_bad_output,
            aliased_count=tracker.aliased_count,
            bad_category_samples=list(tracker.bad_category_samples),
        )

    return ClassifyResult(
        classify_run_id=classify_run_id,
        import_batch_id=import_batch_id,
        label_spec=ClassifyLabelSpec(model=model, prompt_version_id=prompt_version_id),
        mode=mode,
        totals=ClassifyTotals(
            message_atoms=total_atoms,
            labeled=classify_run.labeled_total,
            newly_labeled=classify_run.newly_labeled,
            skipped_already_labeled=baseline,
        ),
        warnings=warnings,
    )


def _mark_failed(db: Session, classify_run_id: str, tracker: ClassifyProgressTracker, error: Exception) -> None:
    """Persist status=failed with the best partial snapshot available."""
    db.rollback()
    classify_run = db.query(ClassifyRun).filter(ClassifyRun.id == classify_run_id).first()
    if classify_run is None:
        logger.error(f"ClassifyRun {classify_run_id} vanished before failure could be recorded")
        return

    tracker.classify_run = classify_run
    tracker.apply(count_labels(db, classify_run.import_batch_id, classify_run.model, classify_run.prompt_version_id))
    classify_run.status = ClassifyRunStatus.FAILED.value
    classify_run.error_json = error_payload(error)
    classify_run.finished_at = utc_now()
    db.commit()
    logger.error(
        f"ClassifyRun {classify_run_id} failed after {tracker.processed_atoms} atoms: "
        f"{classify_run.error_json['code']}"
    )


def classify_run_response(row: ClassifyRun) -> ClassifyRunResponse:
    return ClassifyRunResponse(
        id=row.id,
        import_batch_id=row.import_batch_id,
        label_spec=ClassifyLabelSpec(model=row.model, prompt_version_id=row.prompt_version_id),
        mode=row.mode,
        status=row.status,
        totals=ClassifyTotals(
            message_atoms=row.total_atoms,
            labeled=row.labeled_total,
            newly_labeled=row.newly_labeled,
            skipped_already_labeled=row.skipped_already_labeled,
        ),
        progress=ClassifyProgress(processed_atoms=row.processed_atoms, total_atoms=row.total_atoms),
        usage=ClassifyUsage(tokens_in=row.tokens_in, tokens_out=row.tokens_out, cost_usd=row.cost_usd),
        warnings=ClassifyWarnings(skipped_bad_output=row.skipped_bad_output, aliased_count=row.aliased_count),
        last_atom_stable_id_processed=row.last_atom_stable_id_processed,
        last_error=row.error_json,
        created_at=row.created_at.isoformat() if row.created_at else None,
        updated_at=row.updated_at.isoformat() if row.updated_at else None,
        started_at=row.started_at.isoformat() if row.started_at else None,
        finished_at=row.finished_at.isoformat() if row.finished_at else None,
    )


def get_classify_run(db: Session, classify_run_id: str) -> ClassifyRunResponse:
    """
    Read one ClassifyRun.

    Raises:
        NotFoundError: If the row does not exist
    """
    row = db.query(ClassifyRun).filter(ClassifyRun.id == classify_run_id).first()
    if not row:
        raise NotFoundError("ClassifyRun", classify_run_id)
    return classify_run_response(row)


def get_last_classify_stats(db: Session, import_batch_id: str, model: str, prompt_version_id: str) -> LastClassifyStats:
    """Most recent ClassifyRun for a label spec, if any."""
    if not db.query(ImportBatch.id).filter(ImportBatch.id == import_batch_id).first():
        raise NotFoundError("ImportBatch", import_batch_id)
    row = (
        db.query(ClassifyRun)
        .filter(
            ClassifyRun.import_batch_id == import_batch_id,
            ClassifyRun.model == model,
            ClassifyRun.prompt_version_id == prompt_version_id,
        )
        .order_by(ClassifyRun.created_at.desc(), ClassifyRun.started_at.desc())
        .first()
    )
    if row is None:
        return LastClassifyStats(has_stats=False)
    return LastClassifyStats(has_stats=True, stats=classify_run_response(row))
