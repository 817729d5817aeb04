"""Tests for the community feedback score, the feedback summary and queueing from feedback."""

import pytest

from error_handler import ConflictError, InvalidRequestError, NotFoundError
from maintenance.feedback import (
    build_feedback,
    calculate_score,
    get_feedback_summary,
    recommend,
)


@pytest.mark.parametrize("counts,users,expected", [
    ({"FINISHED_WATCHING": 1}, 1, 1),       # 3 * 0.2 = 0.6 -> 1
    ({"NOT_INTERESTED": 2}, 2, 3),          # 8 * 0.4 = 3.2 -> 3
    ({"POOR_QUALITY": 5}, 5, 25),           # 25 * 1.0
    ({"POOR_QUALITY": 10}, 20, 100),        # multiplier capped at 2
    ({"WRONG_VERSION": 1, "NOT_INTERESTED": 1}, 5, 8),
    ({"FINISHED_WATCHING": 5}, 5, 15),
    ({"REWATCH_CANDIDATE": 3}, 3, 0),       # negative is clamped
    ({"FINISHED_WATCHING": 1, "REWATCH_CANDIDATE": 1}, 5, 1),
    ({}, 0, 0),
])
def test_calculate_score(counts, users, expected):
    assert calculate_score(counts, users) == expected


@pytest.mark.parametrize("score,keep,expected", [
    (0, False, "none"),
    (7, False, "none"),
    (8, False, "review"),
    (14, False, "review"),
    (15, False, "delete"),
    (40, True, "keep"),
])
def test_recommend(score, keep, expected):
    assert recommend(score, keep) == expected


def test_keep_forever_zeroes_score():
    info = build_feedback({"POOR_QUALITY": 10, "KEEP_FOREVER": 1}, 10)
    assert info.keep_forever is True
    assert info.score == 0
    assert info.recommendation == "keep"
    assert info.counts == {"POOR_QUALITY": 10, "KEEP_FOREVER": 1}


def test_build_feedback_recommends_delete():
    info = build_feedback({"NOT_INTERESTED": 3, "POOR_QUALITY": 1}, 6)
    # (12 + 5) * 1.2 = 20.4 -> 20
    assert info.score == 20
    assert info.recommendation == "delete"
    assert info.unique_users == 6


@pytest.fixture
def marks(app):
    """Heat: five users dislike it. Ran: one user wants it kept. Dark: a finished series."""
    from db.repositories.feedback import FeedbackRepository

    repo = FeedbackRepository()
    for user in ("ann", "bob", "cid", "dee", "eve"):
        repo.add_mark(user, "MOVIE", "10", "POOR_QUALITY", title="Heat")
    repo.add_mark("ann", "MOVIE", "20", "NOT_INTERESTED", title="Ran")
    repo.add_mark("bob", "MOVIE", "20", "KEEP_FOREVER", title="Ran")
    repo.add_mark("ann", "TV_SERIES", "30", "FINISHED_WATCHING", title="Dark")
    return repo


class TestFeedbackSummary:
    def test_titles_ranked_by_score(self, marks):
        titles = get_feedback_summary()

        assert [t["title_key"] for t in titles][0] == "10"
        heat = titles[0]
        assert heat["title"] == "Heat"
        assert heat["counts"] == {"POOR_QUALITY": 5}
        assert heat["unique_users"] == 5
        assert heat["score"] == 25
        assert heat["recommendation"] == "delete"

        ran = next(t for t in titles if t["title_key"] == "20")
        assert ran["keep_forever"] is True
        assert ran["score"] == 0
        assert ran["recommendation"] == "keep"

    def test_mark_type_filter_keeps_full_counts(self, marks):
        titles = get_feedback_summary(mark_type="KEEP_FOREVER")
        assert [t["title_key"] for t in titles] == ["20"]
        assert titles[0]["counts"] == {"NOT_INTERESTED": 1, "KEEP_FOREVER": 1}

    def test_media_type_and_min_users(self, marks):
        assert [t["title_key"] for t in get_feedback_summary(media_type="TV_SERIES")] == ["30"]
        assert [t["title_key"] for t in get_feedback_summary(min_users=3)] == ["10"]

    def test_sort_by_title_ascending(self, marks):
        titles = get_feedback_summary(sort_by="title", descending=False)
        assert [t["title"] for t in titles] == ["Dark", "Heat", "Ran"]

    def test_bad_filters(self, marks):
        with pytest.raises(InvalidRequestError):
            get_feedback_summary(sort_by="size")
        with pytest.raises(InvalidRequestError):
            get_feedback_summary(mark_type="LOVE_IT")


class TestQueueFromFeedback:
    def test_marked_title_becomes_pending_candidate(self, marks, services):
        from db.repositories.rules import RuleRepository
        from db.repositories.scans import ScanRepository
        from maintenance.candidates import CandidateManager

        services.add_movie("10", "Heat", arr_id=5, file_size=2048)

        candidate = CandidateManager().queue_from_feedback("10", "alice", note="users hate it")

        assert candidate["review_status"] == "PENDING"
        assert candidate["title"] == "Heat"
        assert candidate["radarr_id"] == 5
        assert candidate["file_size"] == 2048
        assert candidate["feedback_score"] == 25
        assert candidate["review_note"] == "users hate it"
        assert candidate["matched_reasons"] == ["User feedback score 25 from 5 user(s)"]

        rule = RuleRepository().get_rule(candidate["rule_id"])
        assert rule["name"] == "User feedback review"
        assert rule["enabled"] is False
        scan = ScanRepository().get_scan(candidate["scan_id"])
        assert scan["status"] == "COMPLETED"
        assert scan["candidates_created"] == 1

    def test_queued_title_goes_through_review_and_deletion(self, marks, services, queue):
        from maintenance.candidates import CandidateManager

        services.add_movie("10", "Heat", arr_id=5)
        manager = CandidateManager()
        candidate = manager.queue_from_feedback("10", "alice")

        manager.approve(candidate["id"], "alice")
        queue.run_pending()

        assert manager.get_candidate(candidate["id"])["review_status"] == "DELETED"
        assert services.library.removed == ["10"]
        assert services.radarr.deleted == [5]

    def test_title_missing_from_library_uses_mark_data(self, marks):
        from maintenance.candidates import CandidateManager

        candidate = CandidateManager().queue_from_feedback("30", "alice")
        assert candidate["title"] == "Dark"
        assert candidate["media_type"] == "TV_SERIES"
        assert candidate["sonarr_id"] is None

    def test_refusals(self, marks):
        from maintenance.candidates import CandidateManager

        manager = CandidateManager()
        with pytest.raises(NotFoundError):
            manager.queue_from_feedback("404", "alice")
        with pytest.raises(ConflictError) as exc_info:
            manager.queue_from_feedback("20", "alice")
        assert str(exc_info.value) == "title is marked keep forever"

        manager.queue_from_feedback("10", "alice")
        with pytest.raises(ConflictError) as exc_info:
            manager.queue_from_feedback("10", "alice")
        assert str(exc_info.value) == "title already queued for review"
