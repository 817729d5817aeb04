"""Read-only reporting over rules, scans, candidates and deletion logs."""

import logging
from datetime import datetime

from flask import current_app

from db.models.maintenance import MediaType, ScanStatus
from db.repositories.candidates import CandidateRepository
from db.repositories.deletions import DeletionLogRepository
from db.repositories.rules import RuleRepository
from db.repositories.scans import ScanRepository
from error_handler import InvalidRequestError

logger = logging.getLogger(__name__)

MAX_PER_PAGE = 100


def _check_date(name: str, value: str | None) -> str | None:
    if not value:
        return None
    try:
        datetime.fromisoformat(value)
    except ValueError:
        raise InvalidRequestError(f"{name} must be an ISO-8601 date",
                                  context={name: value}) from None
    return value


def _per_page(value: int) -> int:
    return min(max(1, int(value)), MAX_PER_PAGE)


def get_overview() -> dict:
    """Dashboard summary across the whole engine."""
    queue = getattr(current_app, "job_queue", None)
    return {
        "rules": RuleRepository().count_rules(),
        "candidates": CandidateRepository().count_by_status(),
        "scans": ScanRepository().count_by_status(),
        "recent_scans": ScanRepository().get_recent_completed(limit=5),
        "total_deletions": DeletionLogRepository().count_deletions(),
        "reclaimable_bytes": CandidateRepository().reclaimable_bytes(),
        "queue": queue.get_backend_info() if queue is not None else None,
    }


def get_deletion_history(media_type: str = None, deleted_by: str = None,
                         files_deleted: bool = None, start: str = None, end: str = None,
                         page: int = 1, per_page: int = 50) -> dict:
    if media_type and media_type not in {m.value for m in MediaType}:
        raise InvalidRequestError(f"Unknown media type '{media_type}'")
    return DeletionLogRepository().get_history(
        media_type=media_type,
        deleted_by=deleted_by,
        files_deleted=files_deleted,
        start=_check_date("start", start),
        end=_check_date("end", end),
        page=page,
        per_page=_per_page(per_page),
    )


def get_deletion_stats(start: str = None, end: str = None) -> dict:
    return DeletionLogRepository().get_stats(
        start=_check_date("start", start), end=_check_date("end", end)
    )


def get_scan_history(rule_id: int = None, status: str = None, start: str = None,
                     end: str = None, page: int = 1, per_page: int = 50) -> dict:
    if status and status not in {s.value for s in ScanStatus}:
        raise InvalidRequestError(f"Unknown scan status '{status}'")
    return ScanRepository().get_scans(
        rule_id=rule_id,
        status=status,
        start=_check_date("start", start),
        end=_check_date("end", end),
        page=page,
        per_page=_per_page(per_page),
    )


def get_failed_jobs(limit: int = 50) -> list[dict]:
    """Queue jobs that exhausted their retries, newest first."""
    return [job.to_dict() for job in current_app.job_queue.get_failed_jobs(limit=limit)]
