"""Tests for the candidate review state machine."""

import pytest

from db.repositories.queue import QueueRepository
from error_handler import CandidateAlreadyReviewedError, InvalidRequestError, NotFoundError
from maintenance.candidates import CandidateManager


@pytest.fixture
def pending(services, make_rule, run_scan):
    """Three PENDING candidates from one scan, returned as a list of ids."""
    for key, title in (("1", "One"), ("2", "Two"), ("3", "Three")):
        services.add_movie(key, title, arr_id=int(key))
    scan = run_scan(make_rule()["id"])
    items = CandidateManager().list_candidates(scan_id=scan["id"])["items"]
    return sorted(c["id"] for c in items)


def _deletion_jobs():
    return QueueRepository().get_jobs("queued", kind="deletion")


class TestReview:
    def test_approve_enqueues_deletion(self, pending):
        candidate = CandidateManager().approve(pending[0], "alice", note="bye")

        assert candidate["review_status"] == "APPROVED"
        assert candidate["reviewed_by"] == "alice"
        assert candidate["review_note"] == "bye"
        assert candidate["reviewed_at"] is not None
        jobs = _deletion_jobs()
        assert [j["id"] for j in jobs] == [candidate["deletion_job_id"]]

    def test_reject_does_not_enqueue(self, pending):
        candidate = CandidateManager().reject(pending[0], "bob", note="still good")
        assert candidate["review_status"] == "REJECTED"
        assert candidate["deletion_job_id"] is None
        assert _deletion_jobs() == []

    def test_second_approval_is_refused(self, pending):
        manager = CandidateManager()
        manager.approve(pending[0], "alice")

        with pytest.raises(CandidateAlreadyReviewedError) as exc_info:
            manager.approve(pending[0], "bob")

        assert str(exc_info.value) == "candidate already reviewed"
        assert exc_info.value.http_status == 409
        assert len(_deletion_jobs()) == 1
        assert manager.get_candidate(pending[0])["reviewed_by"] == "alice"

    def test_reject_after_approve_is_refused(self, pending):
        manager = CandidateManager()
        manager.approve(pending[0], "alice")
        with pytest.raises(CandidateAlreadyReviewedError):
            manager.reject(pending[0], "bob")

    def test_unknown_candidate(self, app):
        with pytest.raises(NotFoundError):
            CandidateManager().approve(999, "alice")

    def test_delete_files_flag_reaches_the_job(self, pending, queue):
        candidate = CandidateManager().approve(pending[1], "alice", delete_files=False)
        job = queue.get_job(candidate["deletion_job_id"])
        assert job.payload == {"candidate_ids": [pending[1]], "delete_files": False,
                               "requested_by": "alice"}
        assert job.priority == 1

    def test_note_update_keeps_status(self, pending):
        manager = CandidateManager()
        manager.reject(pending[0], "bob")
        candidate = manager.update_note(pending[0], "checked again")
        assert candidate["review_note"] == "checked again"
        assert candidate["review_status"] == "REJECTED"

    def test_note_update_unknown_candidate(self, app):
        with pytest.raises(NotFoundError):
            CandidateManager().update_note(12345, "x")


class TestBulkReview:
    def test_partial_success(self, pending):
        manager = CandidateManager()
        manager.reject(pending[0], "bob")

        result = manager.bulk_review(pending + [999], "APPROVED", "alice")

        assert result["succeeded"] == 2
        assert result["failed"] == 2
        by_id = {r["id"]: r for r in result["results"]}
        assert by_id[pending[0]]["code"] == "CAND_001"
        assert by_id[999]["code"] == "NF_001"
        assert by_id[pending[1]] == {"id": pending[1], "ok": True, "status": "APPROVED"}
        assert len(_deletion_jobs()) == 2

    def test_duplicate_ids_are_reviewed_once(self, pending):
        result = CandidateManager().bulk_review([pending[0], pending[0]], "REJECTED", "bob")
        assert result["succeeded"] == 1
        assert result["failed"] == 0

    def test_invalid_status(self, pending):
        with pytest.raises(InvalidRequestError):
            CandidateManager().bulk_review(pending, "DELETED", "alice")


class TestListing:
    def test_filters_and_rule_name(self, pending):
        manager = CandidateManager()
        manager.approve(pending[0], "alice")

        page = manager.list_candidates(review_status="PENDING")
        assert page["total"] == 2
        assert all(item["rule_name"] == "Unwatched movies" for item in page["items"])

        approved = manager.list_candidates(review_status="APPROVED")["items"]
        assert [c["id"] for c in approved] == [pending[0]]

    def test_pagination(self, pending):
        page = CandidateManager().list_candidates(page=2, per_page=2)
        assert page["total"] == 3
        assert len(page["items"]) == 1
        assert page["has_previous_page"] is True
        assert page["has_next_page"] is False

    def test_unknown_status_filter(self, app):
        with pytest.raises(InvalidRequestError):
            CandidateManager().list_candidates(review_status="MAYBE")

    def test_get_candidate_includes_deletion_logs(self, pending):
        candidate = CandidateManager().get_candidate(pending[0])
        assert candidate["deletion_logs"] == []
