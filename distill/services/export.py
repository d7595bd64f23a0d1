"""Export a completed run as a deterministic directory of markdown files.

Loading, rendering and writing are separate steps. The renderer is pure, so
the same ExportInput always produces byte-identical files; exported_at in the
manifest is the only value that changes between exports of the same run.
"""

import json
import logging
import os
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy.orm import Session

from distill.config import settings
from distill.enums import JobStatus, RunStatus, Stage
from distill.errors import ExportPreconditionError, InvalidInputError
from distill.hashing import sha256
from distill.models import ImportBatch, Job, Output, Run
from distill.schemas.export import ExportBatch, ExportDay, ExportInput, ExportResult, ExportRun
from distill.schemas.run import parse_run_config
from distill.services.bundle import format_timestamp

logger = logging.getLogger(__name__)

EXPORT_FORMAT_VERSION = "export_v1"
MANIFEST_PATH = ".journal-meta/manifest.json"

# Timeline gets a separate "Recent" section above this many days
TIMELINE_RECENT_COUNT = 14

FrontmatterValue = Union[str, int, bool]


def build_export_input(db: Session, run_id: str, exported_at: str) -> ExportInput:
    """
    Load a completed run and its summaries.

    Raises:
        ExportPreconditionError: EXPORT_NOT_FOUND for an unknown run;
            EXPORT_PRECONDITION unless the run is COMPLETED and every job
            SUCCEEDED with a SUMMARIZE output
    """
    run = db.query(Run).filter(Run.id == run_id).first()
    if not run:
        raise ExportPreconditionError(f'Run "{run_id}" not found', not_found=True)

    if run.status != RunStatus.COMPLETED.value:
        raise ExportPreconditionError(
            f'Run "{run_id}" status is {run.status}, expected COMPLETED',
            {"runStatus": run.status},
        )

    jobs = db.query(Job).filter(Job.run_id == run_id).order_by(Job.day_date).all()
    not_succeeded = [j for j in jobs if j.status != JobStatus.SUCCEEDED.value]
    if not_succeeded:
        raise ExportPreconditionError(
            f'Run "{run_id}" has {len(not_succeeded)} non-SUCCEEDED job(s)',
            {
                "failedJobs": [
                    {"jobId": j.id, "dayDate": j.day_date.isoformat(), "status": j.status} for j in not_succeeded
                ]
            },
        )

    days: List[ExportDay] = []
    for job in jobs:
        output = (
            db.query(Output)
            .filter(Output.job_id == job.id, Output.stage == Stage.SUMMARIZE.value)
            .first()
        )
        if not output:
            raise ExportPreconditionError(
                f'Job "{job.id}" ({job.day_date.isoformat()}) has no SUMMARIZE output',
                {"jobId": job.id, "dayDate": job.day_date.isoformat(), "outputCount": 0},
            )
        meta = (output.output_json or {}).get("meta", {})
        segmented = bool(meta.get("segmented", False))
        days.append(
            ExportDay(
                day_date=job.day_date.isoformat(),
                output_text=output.output_text,
                created_at=format_timestamp(output.created_at),
                bundle_hash=output.bundle_hash,
                bundle_context_hash=output.bundle_context_hash,
                segmented=segmented,
                segment_count=meta.get("segmentCount") if segmented else None,
            )
        )

    config = parse_run_config(run.config_json)
    batch = db.query(ImportBatch).filter(ImportBatch.id == run.import_batch_id).one()

    return ExportInput(
        run=ExportRun(
            id=run.id,
            model=run.model,
            start_date=run.start_date.isoformat(),
            end_date=run.end_date.isoformat(),
            sources=[s.lower() for s in run.sources],
            timezone=config.timezone,
            filter_profile=config.filter_profile_snapshot,
        ),
        batches=[
            ExportBatch(
                id=batch.id,
                source=batch.source.lower(),
                original_filename=batch.original_filename,
                timezone=batch.timezone,
            )
        ],
        days=days,
        exported_at=exported_at,
    )


def render_frontmatter(fields: Sequence[Tuple[str, FrontmatterValue]]) -> str:
    """YAML frontmatter in the given field order; strings are double-quoted."""
    lines = []
    for key, value in fields:
        if isinstance(value, bool):
            rendered = "true" if value else "false"
        elif isinstance(value, str):
            rendered = json.dumps(value, ensure_ascii=False)
        else:
            rendered = str(value)
        lines.append(f"{key}: {rendered}")
    return "---\n" + "\n".join(lines) + "\n---"


def render_json(obj: Dict[str, Any]) -> str:
    """Key-sorted, 2-space indented JSON with a trailing newline."""
    return json.dumps(obj, sort_keys=True, indent=2, ensure_ascii=False) + "\n"


def _render_readme() -> str:
    return f"""# Journal Distiller Export

Format: {EXPORT_FORMAT_VERSION}

## Directory layout

    views/              Daily journal entries
      timeline.md       Navigation index (newest first)
      YYYY-MM-DD.md     Individual day entries
    .journal-meta/      Export metadata
      manifest.json     File hashes, run info, batch details

## Browsing

Start with [views/timeline.md](views/timeline.md) for a chronological overview.
Open any views/YYYY-MM-DD.md file to read that day's entry.
See .journal-meta/manifest.json for full export metadata.
"""


def _render_timeline(days: Sequence[ExportDay]) -> str:
    newest_first = list(reversed(days))
    parts = ["# Timeline", ""]

    if len(newest_first) > TIMELINE_RECENT_COUNT:
        parts.extend(["## Recent", ""])
        parts.extend(f"- [{d.day_date}]({d.day_date}.md)" for d in newest_first[:TIMELINE_RECENT_COUNT])
        parts.extend(["", "## All entries", ""])

    parts.extend(f"- [{d.day_date}]({d.day_date}.md)" for d in newest_first)
    parts.append("")
    return "\n".join(parts)


def _render_day(day: ExportDay, run_id: str, model: str) -> str:
    fields: List[Tuple[str, FrontmatterValue]] = [
        ("date", day.day_date),
        ("model", model),
        ("runId", run_id),
        ("createdAt", day.created_at),
        ("bundleHash", day.bundle_hash),
        ("bundleContextHash", day.bundle_context_hash),
        ("segmented", day.segmented),
    ]
    if day.segmented and day.segment_count is not None:
        fields.append(("segmentCount", day.segment_count))
    return f"{render_frontmatter(fields)}\n\n{day.output_text}\n"


def _render_manifest(export_input: ExportInput, tree: Dict[str, str]) -> str:
    run = export_input.run
    manifest = {
        "batches": [
            {
                "id": b.id,
                "originalFilename": b.original_filename,
                "source": b.source,
                "timezone": b.timezone,
            }
            for b in export_input.batches
        ],
        "dateRange": {"end": run.end_date, "start": run.start_date},
        "exportedAt": export_input.exported_at,
        "files": {path: {"sha256": sha256(content)} for path, content in tree.items()},
        "formatVersion": EXPORT_FORMAT_VERSION,
        "run": {
            "endDate": run.end_date,
            "filterProfile": {
                "categories": list(run.filter_profile.categories),
                "mode": run.filter_profile.mode,
                "name": run.filter_profile.name,
            },
            "id": run.id,
            "model": run.model,
            "sources": run.sources,
            "startDate": run.start_date,
            "timezone": run.timezone,
        },
    }
    return render_json(manifest)


def render_export_tree(export_input: ExportInput) -> Dict[str, str]:
    """
    Render an export as relative path -> file content.

    Paths use forward slashes; content is LF-terminated with a trailing
    newline. The manifest is rendered last and hashes every other file.
    """
    tree: Dict[str, str] = {}
    tree["README.md"] = _render_readme()
    tree["views/timeline.md"] = _render_timeline(export_input.days)
    for day in export_input.days:
        tree[f"views/{day.day_date}.md"] = _render_day(day, export_input.run.id, export_input.run.model)
    tree[MANIFEST_PATH] = _render_manifest(export_input, tree)
    return tree


def _is_within(path: str, base: str) -> bool:
    return path == base or path.startswith(base.rstrip(os.sep) + os.sep)


def resolve_export_output_dir(output_dir: str, base_dir: Optional[str] = None) -> str:
    """
    Resolve a caller-supplied directory to an absolute path under the export base.

    Raises:
        InvalidInputError: Empty, absolute, traversing, or escaping paths
    """
    base = os.path.abspath(base_dir or settings.EXPORT_BASE_DIR)
    trimmed = (output_dir or "").strip()
    if not trimmed:
        raise InvalidInputError("output_dir must be a non-empty string")
    if os.path.isabs(trimmed):
        raise InvalidInputError("output_dir must be a relative path under the export directory")

    normalized = os.path.normpath(trimmed)
    if normalized == ".":
        raise InvalidInputError("output_dir must be a subdirectory of the export directory")
    if ".." in re.split(r"[\\/]+", normalized):
        raise InvalidInputError('output_dir must not contain path traversal ("..")')

    resolved = os.path.abspath(os.path.join(base, normalized))
    if not _is_within(resolved, base):
        raise InvalidInputError("output_dir resolves outside the export directory")

    os.makedirs(resolved, exist_ok=True)
    if not _is_within(os.path.realpath(resolved), os.path.realpath(base)):
        raise InvalidInputError("output_dir escapes the export directory via symlink")

    return resolved


def write_export_tree(tree: Dict[str, str], output_dir: str) -> None:
    """Write every file, creating directories and overwriting earlier exports."""
    for relative_path, content in tree.items():
        full_path = os.path.join(output_dir, *relative_path.split("/"))
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        with open(full_path, "w", encoding="utf-8", newline="\n") as f:
            f.write(content)


def export_run(
    db: Session,
    run_id: str,
    output_dir: str,
    exported_at: Optional[str] = None,
    base_dir: Optional[str] = None,
) -> ExportResult:
    """
    Load, render and write a completed run's export.

    Raises:
        ExportPreconditionError: See build_export_input
        InvalidInputError: If output_dir is not a safe relative path
    """
    exported_at = exported_at or format_timestamp(datetime.now(timezone.utc))
    export_input = build_export_input(db, run_id, exported_at)
    tree = render_export_tree(export_input)

    target = resolve_export_output_dir(output_dir, base_dir)
    write_export_tree(tree, target)

    logger.info(f"Exported run {run_id}: {len(tree)} files to {target}")
    return ExportResult(
        exported_at=exported_at,
        output_dir=output_dir,
        file_count=len(tree),
        files=list(tree.keys()),
    )
