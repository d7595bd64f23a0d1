"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-02-01 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade() -> None:
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    if "runs" in inspector.get_table_names():
        # Tables already exist, skip migration
        return

    op.create_table(
        "import_batches",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("source", sa.String(16), nullable=False),
        sa.Column("original_filename", sa.Text, nullable=False),
        sa.Column("file_size_bytes", sa.Integer, nullable=False, server_default="0"),
        sa.Column("timezone", sa.Text, nullable=False, server_default="UTC"),
        sa.Column("stats_json", JSON_TYPE, nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        "prompts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("stage", sa.String(16), nullable=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint("stage", "name"),
    )

    op.create_table(
        "prompt_versions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("prompt_id", sa.String(36), sa.ForeignKey("prompts.id"), nullable=False),
        sa.Column("version_label", sa.Text, nullable=False),
        sa.Column("template_text", sa.Text, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint("prompt_id", "version_label"),
    )

    op.create_table(
        "filter_profiles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.Text, nullable=False, unique=True),
        sa.Column("mode", sa.String(16), nullable=False),
        sa.Column("categories", JSON_TYPE, nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        "message_atoms",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("atom_stable_id", sa.String(64), nullable=False, unique=True),
        sa.Column("import_batch_id", sa.String(36), sa.ForeignKey("import_batches.id", ondelete="CASCADE"), nullable=False),
        sa.Column("source", sa.String(16), nullable=False),
        sa.Column("source_conversation_id", sa.Text),
        sa.Column("source_message_id", sa.Text),
        sa.Column("timestamp_utc", sa.DateTime, nullable=False),
        sa.Column("day_date", sa.Date, nullable=False),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("text", sa.Text, nullable=False),
        sa.Column("text_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_message_atoms_import_batch_id", "message_atoms", ["import_batch_id"])
    op.create_index("idx_message_atoms_day_date", "message_atoms", ["day_date"])

    op.create_table(
        "message_labels",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("message_atom_id", sa.String(36), sa.ForeignKey("message_atoms.id", ondelete="CASCADE"), nullable=False),
        sa.Column("category", sa.String(32), nullable=False),
        sa.Column("confidence", sa.Float, nullable=False),
        sa.Column("model", sa.Text, nullable=False),
        sa.Column("prompt_version_id", sa.String(36), sa.ForeignKey("prompt_versions.id"), nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint("message_atom_id", "prompt_version_id", "model", name="uq_message_labels_spec"),
    )

    op.create_table(
        "runs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("import_batch_id", sa.String(36), sa.ForeignKey("import_batches.id"), nullable=False),
        sa.Column("start_date", sa.Date, nullable=False),
        sa.Column("end_date", sa.Date, nullable=False),
        sa.Column("sources", JSON_TYPE, nullable=False),
        sa.Column("filter_profile_id", sa.String(36), sa.ForeignKey("filter_profiles.id"), nullable=False),
        sa.Column("model", sa.Text, nullable=False),
        sa.Column("output_target", sa.Text, nullable=False, server_default="db"),
        sa.Column("config_json", JSON_TYPE, nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        "jobs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("run_id", sa.String(36), sa.ForeignKey("runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("day_date", sa.Date, nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("attempt", sa.Integer, nullable=False, server_default="1"),
        sa.Column("started_at", sa.DateTime),
        sa.Column("finished_at", sa.DateTime),
        sa.Column("tokens_in", sa.Integer),
        sa.Column("tokens_out", sa.Integer),
        sa.Column("cost_usd", sa.Float),
        sa.Column("error", sa.Text),
        sa.UniqueConstraint("run_id", "day_date", name="uq_jobs_run_day"),
    )
    op.create_index("idx_jobs_status", "jobs", ["status"])
    op.create_index("idx_jobs_run_id", "jobs", ["run_id"])

    op.create_table(
        "outputs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("job_id", sa.String(36), sa.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("stage", sa.String(16), nullable=False),
        sa.Column("output_text", sa.Text, nullable=False),
        sa.Column("output_json", JSON_TYPE, nullable=False),
        sa.Column("model", sa.Text, nullable=False),
        sa.Column("prompt_version_id", sa.String(36), nullable=False),
        sa.Column("bundle_hash", sa.String(64), nullable=False),
        sa.Column("bundle_context_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint("job_id", "stage", name="uq_outputs_job_stage"),
    )

    op.create_table(
        "classify_runs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("import_batch_id", sa.String(36), sa.ForeignKey("import_batches.id"), nullable=False),
        sa.Column("model", sa.Text, nullable=False),
        sa.Column("prompt_version_id", sa.String(36), sa.ForeignKey("prompt_versions.id"), nullable=False),
        sa.Column("mode", sa.String(8), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("total_atoms", sa.Integer, nullable=False),
        sa.Column("processed_atoms", sa.Integer, nullable=False, server_default="0"),
        sa.Column("newly_labeled", sa.Integer, nullable=False, server_default="0"),
        sa.Column("skipped_already_labeled", sa.Integer, nullable=False, server_default="0"),
        sa.Column("skipped_bad_output", sa.Integer, nullable=False, server_default="0"),
        sa.Column("aliased_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("labeled_total", sa.Integer, nullable=False, server_default="0"),
        sa.Column("tokens_in", sa.Integer),
        sa.Column("tokens_out", sa.Integer),
        sa.Column("cost_usd", sa.Float),
        sa.Column("last_atom_stable_id_processed", sa.Text),
        sa.Column("error_json", JSON_TYPE),
        sa.Column("started_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("finished_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_classify_runs_import_batch_id", "classify_runs", ["import_batch_id"])
    op.create_index(
        "idx_classify_runs_label_spec",
        "classify_runs",
        ["import_batch_id", "model", "prompt_version_id"],
    )


def downgrade() -> None:
    op.drop_table("classify_runs")
    op.drop_table("outputs")
    op.drop_table("jobs")
    op.drop_table("runs")
    op.drop_table("message_labels")
    op.drop_table("message_atoms")
    op.drop_table("filter_profiles")
    op.drop_table("prompt_versions")
    op.drop_table("prompts")
    op.drop_table("import_batches")
