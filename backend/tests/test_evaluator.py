"""Tests for maintenance/evaluator.py: operators, null handling, tree logic, reasons."""

from datetime import UTC, datetime, timedelta

import pytest

from maintenance.criteria import parse_criteria
from maintenance.evaluator import describe_node, evaluate
from maintenance.media import (
    DownloadInfo,
    FeedbackInfo,
    LibraryInfo,
    MediaItem,
    RequestInfo,
    WatchInfo,
)

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)


def make_item(**library_fields) -> MediaItem:
    watch = library_fields.pop("watch", None)
    request = library_fields.pop("request", None)
    download = library_fields.pop("download", None)
    feedback = library_fields.pop("feedback", None)
    media_type = library_fields.pop("media_type", "MOVIE")
    library = LibraryInfo(rating_key="1", title=library_fields.pop("title", "Heat"), **library_fields)
    return MediaItem(title_key="1", media_type=media_type, library=library, watch=watch,
                     request=request, download=download, feedback=feedback)


def cond(field, operator, value=None, unit=None, media_type="MOVIE"):
    node = {"type": "condition", "field": field, "operator": operator, "value": value}
    if unit:
        node["value_unit"] = unit
    return parse_criteria(node, media_type)


def matches(item, criteria) -> bool:
    return evaluate(item, criteria, NOW).matched


class TestNumberOperators:
    def test_comparisons(self):
        item = make_item(year=2010)
        assert matches(item, cond("year", "equals", 2010))
        assert matches(item, cond("year", "not_equals", 2011))
        assert matches(item, cond("year", "greater_than", 2009))
        assert not matches(item, cond("year", "greater_than", 2010))
        assert matches(item, cond("year", "greater_than_or_equal", 2010))
        assert matches(item, cond("year", "less_than", 2011))
        assert matches(item, cond("year", "less_than_or_equal", 2010))

    def test_between_is_inclusive(self):
        item = make_item(year=2010)
        assert matches(item, cond("year", "between", [2010, 2012]))
        assert matches(item, cond("year", "between", [2000, 2010]))
        assert not matches(item, cond("year", "between", [2011, 2012]))

    def test_in_and_not_in(self):
        item = make_item(year=2010)
        assert matches(item, cond("year", "in", [2009, 2010]))
        assert not matches(item, cond("year", "not_in", [2009, 2010]))

    def test_size_units_scale_the_value(self):
        item = make_item(file_size=5 * 1024 ** 3)
        assert matches(item, cond("file_size", "greater_than", 4, "GB"))
        assert not matches(item, cond("file_size", "greater_than", 6000, "MB"))
        assert matches(item, cond("file_size", "between", [1, 10], "GB"))

    def test_play_count_prefers_watch_history(self):
        item = make_item(view_count=9, watch=WatchInfo(play_count=0))
        assert matches(item, cond("play_count", "equals", 0))

    def test_play_count_falls_back_to_library(self):
        assert matches(make_item(view_count=3), cond("play_count", "equals", 3))
        assert matches(make_item(), cond("play_count", "equals", 0))


class TestMissingValues:
    def test_null_fails_every_comparison(self):
        item = make_item()  # no rating
        assert not matches(item, cond("rating", "less_than", 5))
        assert not matches(item, cond("rating", "greater_than", 5))
        assert not matches(item, cond("rating", "not_equals", 5))
        assert not matches(item, cond("content_rating", "not_equals", "R"))

    def test_null_operators(self):
        item = make_item(rating=7.5)
        assert matches(make_item(), cond("rating", "is_null"))
        assert not matches(item, cond("rating", "is_null"))
        assert matches(item, cond("rating", "not_null"))

    def test_missing_request_record_is_null(self):
        item = make_item()
        assert not matches(item, cond("request.is_requested", "equals", False))
        assert matches(item, cond("request.is_requested", "is_null"))

    def test_never_watched_counts_as_old(self):
        item = make_item(watch=WatchInfo(play_count=0))
        assert matches(item, cond("last_watched_at", "older_than", 90))
        assert not matches(item, cond("last_watched_at", "newer_than", 90))
        assert not matches(item, cond("last_watched_at", "before", "2026-01-01"))

    def test_missing_added_date_does_not_match_age(self):
        assert not matches(make_item(), cond("added_at", "older_than", 1))


class TestDateOperators:
    def test_older_and_newer_than(self):
        item = make_item(added_at=NOW - timedelta(days=200))
        assert matches(item, cond("added_at", "older_than", 180))
        assert not matches(item, cond("added_at", "older_than", 210))
        assert matches(item, cond("added_at", "newer_than", 30, "weeks"))
        assert matches(item, cond("added_at", "older_than", 6, "months"))

    def test_older_than_boundary_is_strict(self):
        item = make_item(added_at=NOW - timedelta(days=180))
        assert not matches(item, cond("added_at", "older_than", 180))
        assert matches(item, cond("added_at", "newer_than", 180))

    def test_absolute_dates(self):
        item = make_item(added_at=datetime(2024, 3, 15, tzinfo=UTC))
        assert matches(item, cond("added_at", "before", "2024-04-01"))
        assert matches(item, cond("added_at", "after", "2024-03-01T00:00:00+00:00"))
        assert matches(item, cond("added_at", "between", ["2024-01-01", "2024-12-31"]))

    def test_naive_item_dates_are_treated_as_utc(self):
        item = make_item(added_at=datetime(2024, 3, 15))
        assert matches(item, cond("added_at", "before", "2024-04-01"))

    def test_days_since_fields(self):
        item = make_item(added_at=NOW - timedelta(days=45),
                         watch=WatchInfo(play_count=1, last_watched_at=NOW - timedelta(days=10)))
        assert matches(item, cond("days_since_added", "greater_than_or_equal", 45))
        assert matches(item, cond("days_since_watched", "equals", 10))


class TestStringAndArrayOperators:
    def test_string_comparisons_ignore_case(self):
        item = make_item(title="The Matrix")
        assert matches(item, cond("title", "equals", "the matrix"))
        assert matches(item, cond("title", "contains", "MATRIX"))
        assert matches(item, cond("title", "starts_with", "the"))
        assert matches(item, cond("title", "ends_with", "Rix"))
        assert not matches(item, cond("title", "not_contains", "matrix"))
        assert matches(item, cond("title", "in", ["Heat", "the matrix"]))

    def test_regex(self):
        item = make_item(title="Alien: Covenant")
        assert matches(item, cond("title", "regex", r"^alien\b"))
        assert not matches(item, cond("title", "regex", r"^aliens"))

    def test_technical_fields_prefer_watch_history(self):
        item = make_item(resolution="720", watch=WatchInfo(play_count=0, resolution="1080"))
        assert matches(item, cond("resolution", "equals", "1080"))

    def test_array_operators(self):
        item = make_item(genres=["Action", "Thriller"])
        assert matches(item, cond("genres", "contains", "action"))
        assert matches(item, cond("genres", "not_contains", "Comedy"))
        assert matches(item, cond("genres", "contains_any", ["Comedy", "thriller"]))
        assert not matches(item, cond("genres", "contains_all", ["Action", "Comedy"]))
        assert matches(item, cond("labels", "is_empty"))
        assert matches(item, cond("genres", "is_not_empty"))

    def test_download_tags(self):
        item = make_item(download=DownloadInfo(arr_id=4, source="Radarr", tags=["keep", "4k"]))
        assert matches(item, cond("download.tags", "contains", "KEEP"))


class TestBooleanAndSubRecords:
    def test_requested_flag(self):
        item = make_item(request=RequestInfo(is_requested=True, request_count=2))
        assert matches(item, cond("request.is_requested", "equals", True))
        assert matches(item, cond("request.request_count", "greater_than", 1))
        assert matches(item, cond("is_requested", "not_equals", False))

    def test_feedback_score(self):
        item = make_item(feedback=FeedbackInfo(score=18, unique_users=6))
        assert matches(item, cond("feedback.score", "greater_than_or_equal", 15))

    def test_never_watched(self):
        assert matches(make_item(), cond("never_watched", "equals", True))
        assert not matches(make_item(view_count=1), cond("never_watched", "equals", True))


class TestGroups:
    def test_and_or_not(self):
        item = make_item(year=2010, title="Heat")
        tree = parse_criteria({
            "type": "group",
            "operator": "AND",
            "conditions": [
                {"field": "year", "operator": "less_than", "value": 2015},
                {
                    "type": "group",
                    "operator": "OR",
                    "conditions": [
                        {"field": "title", "operator": "equals", "value": "Ronin"},
                        {"field": "title", "operator": "equals", "value": "Heat"},
                    ],
                },
                {
                    "type": "group",
                    "operator": "NOT",
                    "conditions": [{"field": "rating", "operator": "not_null"}],
                },
            ],
        }, "MOVIE")
        result = evaluate(item, tree, NOW)
        assert result.matched
        assert "Year less than 2015" in result.reasons
        assert "Title equals Heat" in result.reasons
        assert "Title equals Ronin" not in result.reasons
        assert "NOT (Critic rating not null)" in result.reasons

    def test_reasons_empty_when_not_matched(self):
        tree = parse_criteria({
            "type": "group",
            "operator": "AND",
            "conditions": [
                {"field": "year", "operator": "less_than", "value": 2015},
                {"field": "year", "operator": "greater_than", "value": 2012},
            ],
        }, "MOVIE")
        result = evaluate(make_item(year=2010), tree, NOW)
        assert not result.matched
        assert result.reasons == []

    def test_evaluation_is_deterministic(self):
        item = make_item(added_at=NOW - timedelta(days=200), genres=["Drama"])
        tree = parse_criteria({"operator": "OR", "conditions": [
            {"field": "added_at", "operator": "older_than", "value": 100},
            {"field": "genres", "operator": "contains", "value": "drama"},
        ]}, "MOVIE")
        first = evaluate(item, tree, NOW)
        assert all(evaluate(item, tree, NOW) == first for _ in range(5))

    def test_describe_node(self):
        tree = parse_criteria({"operator": "OR", "conditions": [
            {"field": "play_count", "operator": "equals", "value": 0},
            {"field": "file_size", "operator": "greater_than", "value": 10, "value_unit": "GB"},
        ]}, "MOVIE")
        assert describe_node(tree) == "(Play count equals 0 OR File size greater than 10 GB)"


@pytest.mark.parametrize("media_type,field", [
    ("TV_SERIES", "download.episode_file_count"),
    ("MOVIE", "download.has_file"),
])
def test_type_specific_fields(media_type, field):
    value = 0 if field.endswith("count") else False
    download = DownloadInfo(arr_id=1, source="x", episode_file_count=0, has_file=False)
    item = make_item(media_type=media_type, download=download)
    assert matches(item, cond(field, "equals", value, media_type=media_type))
