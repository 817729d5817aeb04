"""Deletion executor: removes approved candidates through the collaborators.

For each candidate of a deletion job:

    APPROVED           remove from library, then delete files if requested
    PARTIALLY_DELETED  library entry already gone, retry the file deletion only
    DELETED            nothing to do
    anything else      skipped

Every attempt on a candidate appends exactly one deletion-log row, written
in the same transaction as the candidate's status change. Retryable
failures make the job raise DeletionRetryError so the queue retries it
with backoff; finished candidates are no-ops on the next attempt.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from flask import current_app

from db.models.maintenance import MediaType, ReviewStatus
from db.repositories.candidates import CandidateRepository
from db.repositories.deletions import DeletionLogRepository
from db.repositories.rules import RuleRepository
from error_handler import (
    DeletionRetryError,
    InvalidRequestError,
    InvalidTransitionError,
    NotFoundError,
)
from events import emit_event
from job_queue import PRIORITY_MANUAL
from maintenance import DELETION_JOB
from maintenance.collaborators import Collaborators, get_collaborators

logger = logging.getLogger(__name__)

DELETABLE_STATUSES = (ReviewStatus.APPROVED.value, ReviewStatus.PARTIALLY_DELETED.value)


@dataclass
class DeletionOutcome:
    candidate_id: int
    status: str
    library_removed: bool = False
    files_deleted: bool = False
    error: str | None = None
    retryable: bool = False


class DeletionExecutor:
    """Carries out one deletion job attempt."""

    def __init__(self, collaborators: Collaborators = None):
        self.collaborators = collaborators or get_collaborators()
        self.candidates = CandidateRepository()
        self.logs = DeletionLogRepository()
        self._rule_names: dict[int, str | None] = {}

    def _rule_name(self, rule_id: int) -> str | None:
        if rule_id not in self._rule_names:
            rule = RuleRepository().get_rule(rule_id)
            self._rule_names[rule_id] = rule["name"] if rule else None
        return self._rule_names[rule_id]

    def run(self, candidate_ids: list[int], delete_files: bool, requested_by: str,
            job_id: str = None, attempt: int = 1) -> dict:
        candidates = self.candidates.get_candidates(candidate_ids)
        report = {"deleted": [], "partially_deleted": [], "skipped": [], "failed": {},
                  "bytes_reclaimed": 0}

        for candidate_id in candidate_ids:
            candidate = candidates.get(candidate_id)
            if candidate is None:
                logger.warning("Deletion job %s: candidate %s no longer exists", job_id, candidate_id)
                report["skipped"].append(candidate_id)
                continue
            if candidate["review_status"] not in DELETABLE_STATUSES:
                if candidate["review_status"] != ReviewStatus.DELETED.value:
                    logger.info("Deletion job %s: candidate %d is %s, skipping",
                                job_id, candidate_id, candidate["review_status"])
                report["skipped"].append(candidate_id)
                continue

            outcome = self._delete_candidate(candidate, delete_files, requested_by, job_id, attempt)
            if outcome.status == ReviewStatus.DELETED.value:
                report["deleted"].append(candidate_id)
            elif outcome.status == ReviewStatus.PARTIALLY_DELETED.value:
                report["partially_deleted"].append(candidate_id)
            if outcome.files_deleted:
                report["bytes_reclaimed"] += candidate.get("file_size") or 0
            if outcome.retryable:
                report["failed"][candidate_id] = outcome.error

        return report

    def _delete_candidate(self, candidate: dict, delete_files: bool, requested_by: str,
                          job_id: str, attempt: int) -> DeletionOutcome:
        candidate_id = candidate["id"]
        already_removed = candidate["review_status"] == ReviewStatus.PARTIALLY_DELETED.value
        outcome = DeletionOutcome(candidate_id=candidate_id, status=candidate["review_status"])
        deleted_from = []

        library_ok = already_removed
        if not already_removed:
            library = self.collaborators.library
            try:
                if library is None:
                    raise RuntimeError("no library server configured")
                library.remove_from_library(candidate["title_key"])
            except Exception as exc:
                outcome.error = f"library removal failed: {exc}"
                outcome.retryable = True
            else:
                library_ok = True
                outcome.library_removed = True
                deleted_from.append("library")

        files_pending = False
        # Episode files belong to their series in the download manager
        wants_files = delete_files and candidate["media_type"] != MediaType.EPISODE.value
        if library_ok and wants_files:
            manager = self.collaborators.download_manager_for(candidate["media_type"])
            arr_id = (candidate.get("radarr_id")
                      if candidate["media_type"] == MediaType.MOVIE.value
                      else candidate.get("sonarr_id"))
            if manager is None or arr_id is None:
                files_pending = True
                outcome.error = "no download manager entry for this title, files left on disk"
            else:
                try:
                    manager.delete_files(arr_id)
                except Exception as exc:
                    files_pending = True
                    outcome.error = f"file deletion failed: {exc}"
                    outcome.retryable = True
                else:
                    outcome.files_deleted = True
                    deleted_from.append(manager.name)

        now = datetime.now(UTC).isoformat()
        with self.candidates.batch():
            self.logs.add_log(
                candidate,
                deleted_by=requested_by,
                library_removed=outcome.library_removed,
                files_deleted=outcome.files_deleted,
                deleted_from="+".join(deleted_from) or None,
                rule_name=self._rule_name(candidate["rule_id"]),
                job_id=job_id,
                attempt=attempt,
                error=outcome.error,
            )
            if library_ok and not files_pending:
                if self.candidates.transition(candidate_id, DELETABLE_STATUSES,
                                              ReviewStatus.DELETED, deleted_at=now,
                                              deletion_error=None):
                    outcome.status = ReviewStatus.DELETED.value
            elif library_ok:
                self.candidates.transition(candidate_id, DELETABLE_STATUSES,
                                           ReviewStatus.PARTIALLY_DELETED,
                                           deletion_error=outcome.error)
                outcome.status = ReviewStatus.PARTIALLY_DELETED.value
            else:
                self.candidates.set_deletion_error(candidate_id, outcome.error)

        if outcome.error:
            logger.warning("Deletion of '%s' (candidate %d) attempt %d: %s",
                           candidate["title"], candidate_id, attempt, outcome.error)
        else:
            logger.info("Deleted '%s' (candidate %d)%s", candidate["title"], candidate_id,
                        " with files" if outcome.files_deleted else "")
        return outcome


def run_deletion_job(payload: dict, job=None) -> dict:
    """Queue handler for deletion jobs."""
    job_id = job.id if job else None
    executor = DeletionExecutor()
    report = executor.run(
        candidate_ids=list(payload.get("candidate_ids") or []),
        delete_files=bool(payload.get("delete_files", True)),
        requested_by=payload.get("requested_by") or "system",
        job_id=job_id,
        attempt=job.attempts if job else 1,
    )
    if report["failed"]:
        raise DeletionRetryError(
            f"{len(report['failed'])} deletion(s) failed",
            failures={str(k): v for k, v in report["failed"].items()},
        )

    emit_event("deletion_complete", {
        "job_id": job_id,
        "deleted": len(report["deleted"]),
        "partially_deleted": len(report["partially_deleted"]),
        "skipped": len(report["skipped"]),
        "bytes_reclaimed": report["bytes_reclaimed"],
    })
    return report


def handle_deletion_failure(payload: dict, job, exc: Exception) -> None:
    """Called by the queue once a deletion job has used up its attempts."""
    repo = CandidateRepository()
    candidate_ids = list(payload.get("candidate_ids") or [])
    failures = getattr(exc, "failures", {}) or {}
    candidates = repo.get_candidates(candidate_ids)
    for candidate_id, candidate in candidates.items():
        if candidate["review_status"] in DELETABLE_STATUSES:
            reason = failures.get(str(candidate_id)) or str(exc)
            repo.set_deletion_error(
                candidate_id, f"gave up after {job.attempts} attempt(s): {reason}"
            )

    logger.error("Deletion job %s permanently failed after %d attempts (candidates %s): %s",
                 job.id, job.attempts, candidate_ids, exc)
    emit_event("deletion_failed", {
        "job_id": job.id,
        "candidate_ids": candidate_ids,
        "attempts": job.attempts,
        "error": str(exc),
    })


def trigger_deletion(candidate_ids: list[int], delete_files: bool = True,
                     requested_by: str = "admin", queue=None) -> dict:
    """Enqueue one deletion job for approved candidates.

    Raises:
        InvalidRequestError: no ids given.
        NotFoundError: some ids do not exist.
        InvalidTransitionError: some candidates are not APPROVED or PARTIALLY_DELETED.
    """
    ids = list(dict.fromkeys(int(i) for i in candidate_ids or []))
    if not ids:
        raise InvalidRequestError("candidate_ids must contain at least one id")

    candidates = CandidateRepository().get_candidates(ids)
    missing = [i for i in ids if i not in candidates]
    if missing:
        raise NotFoundError(f"Candidates not found: {missing}", context={"missing": missing})
    not_ready = {i: candidates[i]["review_status"] for i in ids
                 if candidates[i]["review_status"] not in DELETABLE_STATUSES}
    if not_ready:
        raise InvalidTransitionError(
            "Only APPROVED or PARTIALLY_DELETED candidates can be deleted",
            context={"candidates": {str(k): v for k, v in not_ready.items()}},
        )

    queue = queue or current_app.job_queue
    job_id = queue.enqueue(
        DELETION_JOB,
        {"candidate_ids": ids, "delete_files": bool(delete_files), "requested_by": requested_by},
        priority=PRIORITY_MANUAL,
    )
    logger.info("Deletion of %d candidate(s) queued as job %s by %s", len(ids), job_id, requested_by)
    return {"job_id": job_id, "candidate_ids": ids, "delete_files": bool(delete_files)}
