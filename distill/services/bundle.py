"""Deterministic bundle construction and segmentation."""

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Sequence

from sqlalchemy import and_, exists
from sqlalchemy.orm import Session

from distill.hashing import sha256
from distill.models import MessageAtom, MessageLabel
from distill.schemas.run import FilterProfileSnapshot, LabelSpec
from distill.services.bundle_hash import compute_bundle_context_hash, compute_bundle_hash

SEGMENT_PREFIX = "segment_v1"


@dataclass
class Bundle:
    """Rendered bundle for one day."""

    bundle_text: str
    bundle_hash: str
    bundle_context_hash: str
    atom_count: int
    atom_ids: List[str]
    atoms: List[MessageAtom] = field(default_factory=list, repr=False)


@dataclass
class Segment:
    index: int
    segment_id: str
    text: str
    atom_ids: List[str]


@dataclass
class Segmentation:
    segments: List[Segment]
    was_segmented: bool

    @property
    def segment_count(self) -> int:
        return len(self.segments)


def estimate_tokens(text: str) -> int:
    """Conservative token estimate: ceil(chars / 4)."""
    return math.ceil(len(text) / 4)


def format_timestamp(ts: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a Z suffix."""
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


def format_atom_line(atom) -> str:
    return f"[{format_timestamp(atom.timestamp_utc)}] {atom.role.lower()}: {atom.text}"


def render_atoms(atoms: Sequence) -> str:
    """Render atoms grouped by source header; sources separated by a blank line."""
    parts: List[str] = []
    current_source = None
    for atom in atoms:
        source = atom.source.lower()
        if source != current_source:
            if current_source is not None:
                parts.append("")
            parts.append(f"# SOURCE: {source}")
            current_source = source
        parts.append(format_atom_line(atom))
    return "\n".join(parts)


def build_bundle(
    db: Session,
    import_batch_id: str,
    day_date: date,
    sources: Sequence[str],
    label_spec: LabelSpec,
    filter_profile: FilterProfileSnapshot,
) -> Bundle:
    """
    Build the bundle for one day.

    Atoms qualify when they belong to the batch, day and sources, and carry a
    label for the label spec whose category passes the filter profile.
    Ordering is (source, timestamp, role, stable id).
    """
    categories = [c.upper() for c in filter_profile.categories]
    if filter_profile.mode.lower() == "include":
        category_condition = MessageLabel.category.in_(categories)
    else:
        category_condition = MessageLabel.category.notin_(categories)

    label_exists = exists().where(
        and_(
            MessageLabel.message_atom_id == MessageAtom.id,
            MessageLabel.model == label_spec.model,
            MessageLabel.prompt_version_id == label_spec.prompt_version_id,
            category_condition,
        )
    )

    atoms = (
        db.query(MessageAtom)
        .filter(
            MessageAtom.import_batch_id == import_batch_id,
            MessageAtom.source.in_([s.upper() for s in sources]),
            MessageAtom.day_date == day_date,
            label_exists,
        )
        .order_by(
            MessageAtom.source,
            MessageAtom.timestamp_utc,
            MessageAtom.role.desc(),  # USER before ASSISTANT
            MessageAtom.atom_stable_id,
        )
        .all()
    )

    bundle_text = render_atoms(atoms)
    context_hash = compute_bundle_context_hash(
        import_batch_id,
        day_date.isoformat(),
        sources,
        filter_profile,
        label_spec,
    )

    return Bundle(
        bundle_text=bundle_text,
        bundle_hash=compute_bundle_hash(bundle_text),
        bundle_context_hash=context_hash,
        atom_count=len(atoms),
        atom_ids=[a.id for a in atoms],
        atoms=atoms,
    )


def segment_bundle(atoms: Sequence, bundle_hash: str, max_tokens: int) -> Segmentation:
    """
    Split ordered atoms into segments that fit max_tokens.

    An atom is never split; an atom larger than the budget gets its own
    segment. Atom order is preserved across segments.
    """
    if not atoms:
        return Segmentation(segments=[], was_segmented=False)

    groups: List[List] = []
    current: List = []
    current_chars = 0
    current_source = None
    for atom in atoms:
        source = atom.source.lower()
        header = len(f"# SOURCE: {source}") + 2  # header line plus separator
        added = len(format_atom_line(atom)) + 1
        if source != current_source:
            added += header
        if current and math.ceil((current_chars + added) / 4) > max_tokens:
            groups.append(current)
            current = []
            current_chars = 0
            added = len(format_atom_line(atom)) + 1 + header
        current.append(atom)
        current_chars += added
        current_source = source
    groups.append(current)

    segments = [
        Segment(
            index=i,
            segment_id=sha256(f"{SEGMENT_PREFIX}|{bundle_hash}|{i}"),
            text=render_atoms(group),
            atom_ids=[a.id for a in group],
        )
        for i, group in enumerate(groups)
    ]
    return Segmentation(segments=segments, was_segmented=len(segments) > 1)
