"""Maintenance ORM models: rules, scans, candidates, deletion log, user marks.

Timestamp columns use Text holding ISO-8601 UTC strings, matching the rest
of the schema. Boolean flags are stored as Integer 0/1.
"""

from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from extensions import db


class MediaType(str, Enum):
    MOVIE = "MOVIE"
    TV_SERIES = "TV_SERIES"
    EPISODE = "EPISODE"


class ActionType(str, Enum):
    FLAG_FOR_REVIEW = "FLAG_FOR_REVIEW"
    AUTO_DELETE = "AUTO_DELETE"


class ScanStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ReviewStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PARTIALLY_DELETED = "PARTIALLY_DELETED"  # library entry removed, files kept
    DELETED = "DELETED"


class MarkType(str, Enum):
    FINISHED_WATCHING = "FINISHED_WATCHING"
    NOT_INTERESTED = "NOT_INTERESTED"
    KEEP_FOREVER = "KEEP_FOREVER"
    REWATCH_CANDIDATE = "REWATCH_CANDIDATE"
    POOR_QUALITY = "POOR_QUALITY"
    WRONG_VERSION = "WRONG_VERSION"


class MaintenanceRule(db.Model):
    """Operator-defined rule: criteria tree, action and optional cron schedule."""

    __tablename__ = "maintenance_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    enabled: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    media_type: Mapped[str] = mapped_column(String(20), nullable=False)
    criteria_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    action_type: Mapped[str] = mapped_column(String(30), nullable=False)
    delete_files: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    schedule: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_run_at: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    next_run_at: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (Index("idx_maintenance_rules_enabled", "enabled"),)


class MaintenanceScan(db.Model):
    """One execution of a rule against the library."""

    __tablename__ = "maintenance_scans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rule_id: Mapped[int] = mapped_column(
        Integer,
        db.ForeignKey("maintenance_rules.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    manual_trigger: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_scanned: Mapped[int] = mapped_column(Integer, default=0)
    items_flagged: Mapped[int] = mapped_column(Integer, default=0)
    items_skipped: Mapped[int] = mapped_column(Integer, default=0)
    candidates_created: Mapped[int] = mapped_column(Integer, default=0)
    started_at: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_at: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        Index("idx_maintenance_scans_rule_status", "rule_id", "status"),
        Index("idx_maintenance_scans_created", "created_at"),
    )


class MaintenanceCandidate(db.Model):
    """A title flagged by a scan, with the attribute snapshot taken at flag time."""

    __tablename__ = "maintenance_candidates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scan_id: Mapped[int] = mapped_column(
        Integer,
        db.ForeignKey("maintenance_scans.id", ondelete="CASCADE"),
        nullable=False,
    )
    rule_id: Mapped[int] = mapped_column(Integer, nullable=False)
    title_key: Mapped[str] = mapped_column(String(100), nullable=False)
    media_type: Mapped[str] = mapped_column(String(20), nullable=False)

    # External identifiers
    radarr_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sonarr_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    tmdb_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    tvdb_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Snapshot
    title: Mapped[str] = mapped_column(Text, nullable=False)
    year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    poster: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    play_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_watched_at: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    added_at: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    feedback_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    matched_reasons_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")

    # Review state
    review_status: Mapped[str] = mapped_column(String(30), nullable=False, default="PENDING")
    flagged_at: Mapped[str] = mapped_column(Text, nullable=False)
    reviewed_at: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    review_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    deleted_at: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    deletion_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("scan_id", "title_key", name="uq_maintenance_candidates_scan_title"),
        Index("idx_maintenance_candidates_rule_title", "rule_id", "title_key"),
        Index("idx_maintenance_candidates_status", "review_status"),
        Index("idx_maintenance_candidates_flagged", "flagged_at"),
    )


class MaintenanceDeletionLog(db.Model):
    """Append-only audit row, one per candidate deletion attempt.

    candidate_id is not a foreign key; rows stay after the rule, scan and
    candidate they refer to are deleted.
    """

    __tablename__ = "maintenance_deletion_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    candidate_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    job_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    media_type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    file_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    library_removed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    files_deleted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deleted_by: Mapped[str] = mapped_column(String(100), nullable=False)
    deleted_from: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    rule_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    deleted_at: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        Index("idx_maintenance_deletion_logs_deleted_at", "deleted_at"),
        Index("idx_maintenance_deletion_logs_candidate", "candidate_id"),
    )


class UserMediaMark(db.Model):
    """Per-user feedback mark on a title (finished, keep forever, ...)."""

    __tablename__ = "user_media_marks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    media_type: Mapped[str] = mapped_column(String(20), nullable=False)
    title_key: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    mark_type: Mapped[str] = mapped_column(String(30), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    marked_via: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    marked_at: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "title_key", "mark_type", name="uq_user_media_marks"),
        Index("idx_user_media_marks_title", "media_type", "title_key"),
    )
