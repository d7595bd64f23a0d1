"""Content-addressed hashes for job input bundles.

bundleHash hashes the exact text the model saw. bundleContextHash hashes the
inputs that determined that text, so a stored output can be re-derived from
frozen run config and compared byte-for-byte.
"""

import json
from typing import Any, Iterable, Mapping, Union

from pydantic import BaseModel

from distill.hashing import sha256

BUNDLE_PREFIX = "bundle_v1"
BUNDLE_CONTEXT_PREFIX = "bundle_ctx_v1"


def canonical_json(value: Union[Mapping[str, Any], BaseModel]) -> str:
    """Key-sorted, whitespace-free JSON."""
    if isinstance(value, BaseModel):
        value = value.model_dump(by_alias=True, exclude_none=True)
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_bundle_hash(bundle_text: str) -> str:
    return sha256(f"{BUNDLE_PREFIX}|{bundle_text}")


def compute_bundle_context_hash(
    import_batch_id: str,
    day_date: str,
    sources: Iterable[str],
    filter_profile_snapshot: Union[Mapping[str, Any], BaseModel],
    label_spec: Union[Mapping[str, Any], BaseModel],
) -> str:
    """
    Hash the inputs that produced a bundle.

    Args:
        import_batch_id: Batch the atoms came from
        day_date: YYYY-MM-DD
        sources: Included sources; order does not matter
        filter_profile_snapshot: Frozen filter profile
        label_spec: Frozen label spec

    Returns:
        SHA-256 hex digest
    """
    sources_csv = ",".join(sorted(s.lower() for s in sources))
    parts = [
        BUNDLE_CONTEXT_PREFIX,
        import_batch_id,
        day_date,
        sources_csv,
        canonical_json(filter_profile_snapshot),
        canonical_json(label_spec),
    ]
    return sha256("|".join(parts))
