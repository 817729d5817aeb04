"""initial_maintenance_schema

Revision ID: 3b9f0c1d2e4a
Revises:
Create Date: 2026-10-18

"""
import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "3b9f0c1d2e4a"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "maintenance_rules",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("enabled", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("media_type", sa.String(length=20), nullable=False),
        sa.Column("criteria_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("action_type", sa.String(length=30), nullable=False),
        sa.Column("delete_files", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("schedule", sa.String(length=100), nullable=True),
        sa.Column("last_run_at", sa.Text(), nullable=True),
        sa.Column("next_run_at", sa.Text(), nullable=True),
        sa.Column("created_at", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_maintenance_rules_enabled", "maintenance_rules", ["enabled"])

    op.create_table(
        "maintenance_scans",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("rule_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("manual_trigger", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("items_scanned", sa.Integer(), nullable=True),
        sa.Column("items_flagged", sa.Integer(), nullable=True),
        sa.Column("items_skipped", sa.Integer(), nullable=True),
        sa.Column("candidates_created", sa.Integer(), nullable=True),
        sa.Column("started_at", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(["rule_id"], ["maintenance_rules.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_maintenance_scans_rule_status", "maintenance_scans", ["rule_id", "status"])
    op.create_index("idx_maintenance_scans_created", "maintenance_scans", ["created_at"])

    op.create_table(
        "maintenance_candidates",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("scan_id", sa.Integer(), nullable=False),
        sa.Column("rule_id", sa.Integer(), nullable=False),
        sa.Column("title_key", sa.String(length=100), nullable=False),
        sa.Column("media_type", sa.String(length=20), nullable=False),
        sa.Column("radarr_id", sa.Integer(), nullable=True),
        sa.Column("sonarr_id", sa.Integer(), nullable=True),
        sa.Column("tmdb_id", sa.Integer(), nullable=True),
        sa.Column("tvdb_id", sa.Integer(), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("poster", sa.Text(), nullable=True),
        sa.Column("file_path", sa.Text(), nullable=True),
        sa.Column("file_size", sa.BigInteger(), nullable=True),
        sa.Column("play_count", sa.Integer(), nullable=True),
        sa.Column("last_watched_at", sa.Text(), nullable=True),
        sa.Column("added_at", sa.Text(), nullable=True),
        sa.Column("feedback_score", sa.Integer(), nullable=True),
        sa.Column("matched_reasons_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("review_status", sa.String(length=30), nullable=False, server_default="PENDING"),
        sa.Column("flagged_at", sa.Text(), nullable=False),
        sa.Column("reviewed_at", sa.Text(), nullable=True),
        sa.Column("reviewed_by", sa.String(length=100), nullable=True),
        sa.Column("review_note", sa.Text(), nullable=True),
        sa.Column("deleted_at", sa.Text(), nullable=True),
        sa.Column("deletion_error", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["scan_id"], ["maintenance_scans.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("scan_id", "title_key", name="uq_maintenance_candidates_scan_title"),
    )
    op.create_index("idx_maintenance_candidates_rule_title", "maintenance_candidates",
                    ["rule_id", "title_key"])
    op.create_index("idx_maintenance_candidates_status", "maintenance_candidates", ["review_status"])
    op.create_index("idx_maintenance_candidates_flagged", "maintenance_candidates", ["flagged_at"])

    op.create_table(
        "maintenance_deletion_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("candidate_id", sa.Integer(), nullable=True),
        sa.Column("job_id", sa.String(length=36), nullable=True),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("media_type", sa.String(length=20), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("file_size", sa.BigInteger(), nullable=True),
        sa.Column("library_removed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("files_deleted", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deleted_by", sa.String(length=100), nullable=False),
        sa.Column("deleted_from", sa.String(length=50), nullable=True),
        sa.Column("rule_name", sa.String(length=200), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("deleted_at", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_maintenance_deletion_logs_deleted_at", "maintenance_deletion_logs",
                    ["deleted_at"])
    op.create_index("idx_maintenance_deletion_logs_candidate", "maintenance_deletion_logs",
                    ["candidate_id"])

    op.create_table(
        "user_media_marks",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=100), nullable=False),
        sa.Column("media_type", sa.String(length=20), nullable=False),
        sa.Column("title_key", sa.String(length=100), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("mark_type", sa.String(length=30), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("marked_via", sa.String(length=30), nullable=True),
        sa.Column("marked_at", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "title_key", "mark_type", name="uq_user_media_marks"),
    )
    op.create_index("idx_user_media_marks_title", "user_media_marks", ["media_type", "title_key"])

    op.create_table(
        "maintenance_queue_jobs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("kind", sa.String(length=30), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="queued"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("run_after", sa.Text(), nullable=False),
        sa.Column("enqueued_at", sa.Text(), nullable=False),
        sa.Column("started_at", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.Text(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("result_json", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_queue_jobs_claim", "maintenance_queue_jobs",
                    ["kind", "status", "priority", "run_after"])
    op.create_index("idx_queue_jobs_status", "maintenance_queue_jobs", ["status"])


def downgrade():
    op.drop_table("maintenance_queue_jobs")
    op.drop_table("user_media_marks")
    op.drop_table("maintenance_deletion_logs")
    op.drop_table("maintenance_candidates")
    op.drop_table("maintenance_scans")
    op.drop_table("maintenance_rules")
