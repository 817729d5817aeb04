"""Candidate lifecycle: creation from scan matches and the review state machine.

    PENDING -> APPROVED | REJECTED
    APPROVED -> DELETED | PARTIALLY_DELETED
    PARTIALLY_DELETED -> DELETED

Every status change is a conditional UPDATE on the current status, so two
reviewers racing on the same candidate cannot both win. Approving commits
the status change and its deletion job in one transaction.
"""

import json
import logging
from datetime import UTC, datetime

from flask import current_app

from db.models.maintenance import ActionType, MediaType, ReviewStatus
from db.repositories.candidates import CandidateRepository
from db.repositories.deletions import DeletionLogRepository
from db.repositories.feedback import FeedbackRepository
from db.repositories.rules import RuleRepository
from db.repositories.scans import ScanRepository
from error_handler import (
    CandidateAlreadyReviewedError,
    CollaboratorError,
    ConflictError,
    InvalidRequestError,
    NotFoundError,
    PrunarrError,
)
from events import emit_event
from job_queue import PRIORITY_DEFAULT, PRIORITY_MANUAL
from maintenance import (
    AUTO_REVIEWER,
    DELETION_JOB,
    FEEDBACK_RULE_CRITERIA,
    FEEDBACK_RULE_NAME,
    REQUESTED_NOTE,
)
from maintenance.aggregator import MediaAggregator
from maintenance.collaborators import get_collaborators
from maintenance.criteria import dump_criteria, parse_criteria
from maintenance.feedback import build_feedback
from maintenance.media import MediaItem

logger = logging.getLogger(__name__)

MAX_PER_PAGE = 100


class CandidateManager:
    """Creates candidates for scan matches and applies review decisions."""

    def __init__(self, queue=None):
        self._queue = queue

    @property
    def queue(self):
        return self._queue or current_app.job_queue

    # ---- Scan side ---------------------------------------------------------

    def apply_matches(self, scan: dict, rule: dict,
                      matches: list[tuple[MediaItem, list[str]]]) -> dict:
        """Record a scan's matches according to the rule's action.

        Runs inside the scanner's transaction: nothing here commits on its
        own, so a failing scan leaves no candidates behind.

        Returns:
            dict with created candidate ids, auto-approved ids and the
            deletion job id (AUTO_DELETE only).
        """
        repo = CandidateRepository()
        auto = rule["action_type"] == ActionType.AUTO_DELETE.value
        seen = repo.get_open_title_keys(rule["id"], [item.title_key for item, _ in matches])

        created, auto_approved, rejected = [], [], []
        for item, reasons in matches:
            if item.title_key in seen or item.keep_forever:
                continue
            seen.add(item.title_key)

            status, reviewed_by, note = ReviewStatus.PENDING.value, None, None
            if auto:
                reviewed_by = AUTO_REVIEWER
                if item.is_requested:
                    status, note = ReviewStatus.REJECTED.value, REQUESTED_NOTE
                else:
                    status = ReviewStatus.APPROVED.value

            candidate_id = repo.add_candidate(
                scan_id=scan["id"],
                rule_id=rule["id"],
                title_key=item.title_key,
                media_type=item.media_type,
                snapshot=item.snapshot(),
                matched_reasons=reasons,
                review_status=status,
                reviewed_by=reviewed_by,
                review_note=note,
            )
            created.append(candidate_id)
            if status == ReviewStatus.APPROVED.value:
                auto_approved.append(candidate_id)
            elif status == ReviewStatus.REJECTED.value:
                rejected.append(candidate_id)

        job_id = None
        if auto_approved:
            job_id = self.queue.enqueue(
                DELETION_JOB,
                {
                    "candidate_ids": auto_approved,
                    "delete_files": bool(rule["delete_files"]),
                    "requested_by": AUTO_REVIEWER,
                },
                priority=PRIORITY_DEFAULT,
            )

        if rejected:
            logger.info("Scan %d: %d match(es) kept because they are actively requested",
                        scan["id"], len(rejected))
        return {"created": created, "auto_approved": auto_approved,
                "rejected": rejected, "deletion_job_id": job_id}

    # ---- Review side -------------------------------------------------------

    def _load(self, repo: CandidateRepository, candidate_id: int) -> dict:
        candidate = repo.get_candidate(candidate_id)
        if candidate is None:
            raise NotFoundError(f"Candidate {candidate_id} not found",
                                context={"candidate_id": candidate_id})
        return candidate

    def _review(self, candidate_id: int, to_status: str, reviewer: str, note: str | None,
                delete_files: bool = True) -> dict:
        repo = CandidateRepository()
        job_id = None
        with repo.batch():
            current = self._load(repo, candidate_id)
            values = {"reviewed_at": datetime.now(UTC).isoformat(), "reviewed_by": reviewer}
            if note is not None:
                values["review_note"] = note
            if not repo.transition(candidate_id, (ReviewStatus.PENDING,), to_status, **values):
                raise CandidateAlreadyReviewedError(
                    context={"candidate_id": candidate_id,
                             "review_status": current["review_status"]},
                )
            if to_status == ReviewStatus.APPROVED.value:
                job_id = self.queue.enqueue(
                    DELETION_JOB,
                    {"candidate_ids": [candidate_id], "delete_files": bool(delete_files),
                     "requested_by": reviewer},
                    priority=PRIORITY_MANUAL,
                )

        logger.info("Candidate %d %s by %s", candidate_id, to_status.lower(), reviewer)
        emit_event("candidate_reviewed", {
            "candidate_id": candidate_id,
            "review_status": to_status,
            "reviewed_by": reviewer,
        })
        candidate = repo.get_candidate(candidate_id)
        candidate["deletion_job_id"] = job_id
        return candidate

    def approve(self, candidate_id: int, reviewer: str, note: str = None,
                delete_files: bool = True) -> dict:
        """PENDING -> APPROVED and enqueue one deletion job.

        Raises:
            NotFoundError, CandidateAlreadyReviewedError
        """
        return self._review(candidate_id, ReviewStatus.APPROVED.value, reviewer, note,
                            delete_files)

    def reject(self, candidate_id: int, reviewer: str, note: str = None) -> dict:
        """PENDING -> REJECTED."""
        return self._review(candidate_id, ReviewStatus.REJECTED.value, reviewer, note)

    def bulk_review(self, candidate_ids: list[int], status: str, reviewer: str,
                    note: str = None, delete_files: bool = True) -> dict:
        """Apply one decision to many candidates, each in its own transaction."""
        if status not in (ReviewStatus.APPROVED.value, ReviewStatus.REJECTED.value):
            raise InvalidRequestError("status must be APPROVED or REJECTED",
                                      context={"status": status})

        results = []
        for candidate_id in dict.fromkeys(candidate_ids):
            try:
                if status == ReviewStatus.APPROVED.value:
                    candidate = self.approve(candidate_id, reviewer, note, delete_files)
                else:
                    candidate = self.reject(candidate_id, reviewer, note)
            except PrunarrError as exc:
                results.append({"id": candidate_id, "ok": False,
                                "error": str(exc), "code": exc.code})
            else:
                results.append({"id": candidate_id, "ok": True,
                                "status": candidate["review_status"]})

        succeeded = sum(1 for r in results if r["ok"])
        return {"results": results, "succeeded": succeeded,
                "failed": len(results) - succeeded}

    def update_note(self, candidate_id: int, note: str | None) -> dict:
        """Replace the review note. Last writer wins; status is untouched."""
        candidate = CandidateRepository().set_note(candidate_id, note)
        if candidate is None:
            raise NotFoundError(f"Candidate {candidate_id} not found",
                                context={"candidate_id": candidate_id})
        return candidate

    def queue_from_feedback(self, title_key: str, requested_by: str, note: str = None) -> dict:
        """Open a PENDING candidate for a title users have marked.

        The candidate hangs off a one-item COMPLETED scan of the disabled
        feedback rule for the title's media type, so it goes through the
        same review and deletion flow as scan results.

        Raises:
            NotFoundError: the title has no marks.
            ConflictError: the title is marked keep forever or already queued.
        """
        summaries = FeedbackRepository().get_title_summaries(title_key=title_key)
        if not summaries:
            raise NotFoundError(f"No feedback marks for title {title_key}",
                                context={"title_key": title_key})
        entry = summaries[0]
        feedback = build_feedback(entry["counts"], entry["unique_users"])
        if feedback.keep_forever:
            raise ConflictError("title is marked keep forever",
                                context={"title_key": title_key})

        snapshot = self._library_snapshot(title_key, entry["media_type"])
        if snapshot is None:
            snapshot = {"title": entry["title"]}
        snapshot["feedback_score"] = feedback.score

        candidates = CandidateRepository()
        with candidates.batch():
            rule = self._feedback_rule(entry["media_type"])
            if candidates.get_open_title_keys(rule["id"], [title_key]):
                raise ConflictError("title already queued for review",
                                    context={"title_key": title_key, "rule_id": rule["id"]})
            scans = ScanRepository()
            scan = scans.create_scan(rule["id"], manual_trigger=True)
            scans.complete_scan(scan["id"], items_scanned=1, items_flagged=1,
                                items_skipped=0, candidates_created=1)
            reason = (f"User feedback score {feedback.score} "
                      f"from {feedback.unique_users} user(s)")
            candidate_id = candidates.add_candidate(
                scan_id=scan["id"],
                rule_id=rule["id"],
                title_key=title_key,
                media_type=entry["media_type"],
                snapshot=snapshot,
                matched_reasons=[reason],
                review_status=ReviewStatus.PENDING.value,
                review_note=note,
            )

        logger.info("Title %s queued for review from feedback by %s (candidate %d)",
                    title_key, requested_by, candidate_id)
        emit_event("candidates_flagged", {
            "scan_id": scan["id"],
            "rule_id": rule["id"],
            "action_type": ActionType.FLAG_FOR_REVIEW.value,
            "count": 1,
            "candidate_ids": [candidate_id],
        })
        return candidates.get_candidate(candidate_id)

    @staticmethod
    def _library_snapshot(title_key: str, media_type: str) -> dict | None:
        """Current snapshot of the title from the library and its services, if listed."""
        try:
            result = MediaAggregator(get_collaborators()).build(media_type)
        except CollaboratorError as exc:
            logger.warning("Library unavailable, queueing %s from its marks only: %s",
                           title_key, exc)
            return None
        for item in result.items:
            if item.title_key == title_key:
                return item.snapshot()
        return None

    @staticmethod
    def _feedback_rule(media_type: str) -> dict:
        rules = RuleRepository()
        rule = rules.get_rule_by_name(FEEDBACK_RULE_NAME, media_type)
        if rule is None:
            criteria = dump_criteria(parse_criteria(FEEDBACK_RULE_CRITERIA, media_type))
            rule = rules.create_rule(
                name=FEEDBACK_RULE_NAME,
                media_type=media_type,
                criteria_json=json.dumps(criteria),
                action_type=ActionType.FLAG_FOR_REVIEW.value,
                description="Titles queued by hand from user feedback",
                enabled=False,
            )
        return rule

    # ---- Queries -----------------------------------------------------------

    def get_candidate(self, candidate_id: int) -> dict:
        repo = CandidateRepository()
        candidate = self._load(repo, candidate_id)
        candidate["deletion_logs"] = DeletionLogRepository().get_logs_for_candidate(candidate_id)
        return candidate

    def list_candidates(self, review_status: str = None, media_type: str = None,
                        scan_id: int = None, rule_id: int = None,
                        page: int = 1, per_page: int = 25) -> dict:
        if review_status and review_status not in {s.value for s in ReviewStatus}:
            raise InvalidRequestError(f"Unknown review status '{review_status}'")
        if media_type and media_type not in {m.value for m in MediaType}:
            raise InvalidRequestError(f"Unknown media type '{media_type}'")
        return CandidateRepository().get_candidates_page(
            review_status=review_status,
            media_type=media_type,
            scan_id=scan_id,
            rule_id=rule_id,
            page=page,
            per_page=min(max(1, per_page), MAX_PER_PAGE),
        )
