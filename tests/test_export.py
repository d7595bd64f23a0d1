"""Tests for exporting completed runs."""

import json
from datetime import date, timedelta

import pytest
from conftest import DAY_ONE, DAY_TWO, make_atom, make_batch, make_filter_profile, make_prompt_version

from distill.errors import ExportPreconditionError, InvalidInputError
from distill.hashing import sha256
from distill.models import Job, Output
from distill.schemas.export import ExportDay, ExportInput, ExportRun
from distill.schemas.run import FilterProfileSnapshot, LabelSpec
from distill.services.classify import classify_batch
from distill.services.export import (
    MANIFEST_PATH,
    build_export_input,
    export_run,
    render_export_tree,
    resolve_export_output_dir,
)
from distill.services.run import create_run
from distill.services.tick import process_tick

EXPORTED_AT = "2024-02-01T12:00:00.000Z"


@pytest.fixture
def run_id(test_db):
    """A two-day stub run, not yet ticked."""
    batch = make_batch(test_db)
    for day in (DAY_ONE, DAY_TWO):
        for i in range(2):
            make_atom(test_db, batch, day=day, index=i)
    classify_version = make_prompt_version(test_db, label="classify_stub_v1", template="stub")
    classify_batch(test_db, batch.id, "stub_v1", classify_version.id, "stub")
    make_prompt_version(test_db, stage="SUMMARIZE", label="summarize_v1", template="Summarize the day.")
    profile = make_filter_profile(test_db)
    run = create_run(
        test_db,
        import_batch_id=batch.id,
        start_date="2024-01-15",
        end_date="2024-01-16",
        sources=["chatgpt"],
        filter_profile_id=profile.id,
        model="stub_summarizer_v1",
        label_spec=LabelSpec(model="stub_v1", prompt_version_id=classify_version.id),
    )
    return run.id


@pytest.fixture
def completed_run_id(test_db, run_id):
    process_tick(test_db, run_id, max_jobs=2)
    return run_id


def make_input(day_count, segmented=False):
    days = [
        ExportDay(
            day_date=(date(2024, 1, 1) + timedelta(days=i)).isoformat(),
            output_text=f"Summary {i}",
            created_at="2024-02-01T00:00:00.000Z",
            bundle_hash="a" * 64,
            bundle_context_hash="b" * 64,
            segmented=segmented,
            segment_count=3 if segmented else None,
        )
        for i in range(day_count)
    ]
    return ExportInput(
        run=ExportRun(
            id="run-1",
            model="stub_summarizer_v1",
            start_date=days[0].day_date,
            end_date=days[-1].day_date,
            sources=["chatgpt"],
            timezone="UTC",
            filter_profile=FilterProfileSnapshot(name="default", mode="include", categories=["work"]),
        ),
        batches=[],
        days=days,
        exported_at=EXPORTED_AT,
    )


def test_export_writes_day_files_with_hash_headers(test_db, completed_run_id, tmp_path):
    """Test each day file carries its output's hashes in the frontmatter."""
    result = export_run(test_db, completed_run_id, "journal", exported_at=EXPORTED_AT, base_dir=str(tmp_path))

    assert result.file_count == 5
    assert result.files == [
        "README.md",
        "views/timeline.md",
        "views/2024-01-15.md",
        "views/2024-01-16.md",
        MANIFEST_PATH,
    ]

    output = test_db.query(Output).join(Job, Job.id == Output.job_id).filter(Job.day_date == DAY_ONE).one()
    day_file = (tmp_path / "journal" / "views" / "2024-01-15.md").read_text(encoding="utf-8")
    assert day_file.startswith('---\ndate: "2024-01-15"\nmodel: "stub_summarizer_v1"\n')
    assert f'bundleHash: "{output.bundle_hash}"' in day_file
    assert f'bundleContextHash: "{output.bundle_context_hash}"' in day_file
    assert "segmented: false\n---\n\n[STUB SUMMARY]" in day_file
    assert day_file.endswith("\n")


def test_manifest_hashes_every_other_file(test_db, completed_run_id, tmp_path):
    export_run(test_db, completed_run_id, "journal", exported_at=EXPORTED_AT, base_dir=str(tmp_path))
    root = tmp_path / "journal"

    manifest = json.loads((root / ".journal-meta" / "manifest.json").read_text(encoding="utf-8"))

    assert manifest["exportedAt"] == EXPORTED_AT
    assert manifest["formatVersion"] == "export_v1"
    assert manifest["run"]["sources"] == ["chatgpt"]
    assert manifest["batches"][0]["source"] == "chatgpt"
    assert MANIFEST_PATH not in manifest["files"]
    for path, entry in manifest["files"].items():
        assert entry["sha256"] == sha256((root / path).read_text(encoding="utf-8"))


def test_export_is_deterministic(test_db, completed_run_id):
    """Test two exports with the same timestamp are byte-identical."""
    first = render_export_tree(build_export_input(test_db, completed_run_id, EXPORTED_AT))
    second = render_export_tree(build_export_input(test_db, completed_run_id, EXPORTED_AT))

    assert first == second


def test_export_requires_completed_run(test_db, run_id):
    with pytest.raises(ExportPreconditionError) as exc_info:
        build_export_input(test_db, run_id, EXPORTED_AT)

    assert exc_info.value.code == "EXPORT_PRECONDITION"
    assert exc_info.value.http_status == 400
    assert exc_info.value.details == {"runStatus": "QUEUED"}


def test_export_unknown_run(test_db):
    with pytest.raises(ExportPreconditionError) as exc_info:
        build_export_input(test_db, "missing", EXPORTED_AT)

    assert exc_info.value.code == "EXPORT_NOT_FOUND"
    assert exc_info.value.http_status == 404


def test_export_requires_summary_output(test_db, completed_run_id):
    test_db.query(Output).delete()
    test_db.commit()

    with pytest.raises(ExportPreconditionError) as exc_info:
        build_export_input(test_db, completed_run_id, EXPORTED_AT)

    assert "no SUMMARIZE output" in exc_info.value.message
    assert exc_info.value.details["dayDate"] == "2024-01-15"


def test_timeline_lists_newest_first():
    tree = render_export_tree(make_input(2))

    assert tree["views/timeline.md"] == "# Timeline\n\n- [2024-01-02](2024-01-02.md)\n- [2024-01-01](2024-01-01.md)\n"


def test_timeline_adds_recent_section_for_long_runs():
    """Test more than 14 days splits the timeline into Recent and All entries."""
    timeline = render_export_tree(make_input(15))["views/timeline.md"]

    recent, everything = timeline.split("## All entries")
    assert recent.count("- [") == 14
    assert "2024-01-01" not in recent
    assert everything.count("- [") == 15


def test_segmented_day_reports_segment_count():
    day_file = render_export_tree(make_input(1, segmented=True))["views/2024-01-01.md"]

    assert "segmented: true\nsegmentCount: 3\n---" in day_file


@pytest.mark.parametrize("output_dir", ["", "   ", "/etc/journal", ".", "../journal", "a/../../journal"])
def test_resolve_output_dir_rejects_unsafe_paths(output_dir, tmp_path):
    with pytest.raises(InvalidInputError):
        resolve_export_output_dir(output_dir, str(tmp_path))


def test_resolve_output_dir_creates_nested_directory(tmp_path):
    resolved = resolve_export_output_dir("exports/2024/january", str(tmp_path))

    assert resolved == str(tmp_path / "exports" / "2024" / "january")
    assert (tmp_path / "exports" / "2024" / "january").is_dir()
