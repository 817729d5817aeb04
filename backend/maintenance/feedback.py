"""Community feedback score derived from per-user marks.

Each mark type carries a weight; the weighted sum is scaled by how many
distinct users marked the title (capped at 2x for 10+ users) so a single
opinion counts for little. Any KEEP_FOREVER mark forces the score to 0
and protects the title from rules entirely.
"""

import math

from db.models.maintenance import MarkType, MediaType
from db.repositories.feedback import FeedbackRepository
from error_handler import InvalidRequestError
from maintenance.media import FeedbackInfo

MARK_WEIGHTS = {
    MarkType.FINISHED_WATCHING.value: 3,
    MarkType.NOT_INTERESTED.value: 4,
    MarkType.POOR_QUALITY.value: 5,
    MarkType.WRONG_VERSION.value: 4,
    MarkType.KEEP_FOREVER.value: -10,
    MarkType.REWATCH_CANDIDATE.value: -2,
}

USERS_FOR_FULL_WEIGHT = 5
MAX_USER_MULTIPLIER = 2

DELETE_THRESHOLD = 15
REVIEW_THRESHOLD = 8

SUMMARY_SORT_KEYS = {
    "score": lambda e: e["score"],
    "users": lambda e: e["unique_users"],
    "title": lambda e: (e["title"] or e["title_key"]).casefold(),
    "last_marked": lambda e: e["last_marked_at"] or "",
}


def calculate_score(counts: dict[str, int], unique_users: int) -> int:
    raw = sum(MARK_WEIGHTS.get(mark, 0) * n for mark, n in counts.items())
    multiplier = min(unique_users / USERS_FOR_FULL_WEIGHT, MAX_USER_MULTIPLIER)
    # half-up rounding, not banker's rounding
    return max(0, math.floor(raw * multiplier + 0.5))


def recommend(score: int, keep_forever: bool) -> str:
    if keep_forever:
        return "keep"
    if score >= DELETE_THRESHOLD:
        return "delete"
    if score >= REVIEW_THRESHOLD:
        return "review"
    return "none"


def build_feedback(counts: dict[str, int], unique_users: int) -> FeedbackInfo:
    keep_forever = counts.get(MarkType.KEEP_FOREVER.value, 0) > 0
    score = 0 if keep_forever else calculate_score(counts, unique_users)
    return FeedbackInfo(
        score=score,
        keep_forever=keep_forever,
        unique_users=unique_users,
        counts=dict(counts),
        recommendation=recommend(score, keep_forever),
    )


def get_feedback_summary(media_type: str = None, mark_type: str = None, min_users: int = 0,
                         sort_by: str = "score", descending: bool = True) -> list[dict]:
    """Marked titles with their score and recommendation, for the feedback review page.

    Raises:
        InvalidRequestError: on an unknown media type, mark type or sort key.
    """
    if media_type and media_type not in {m.value for m in MediaType}:
        raise InvalidRequestError(f"Unknown media type '{media_type}'")
    if mark_type and mark_type not in {m.value for m in MarkType}:
        raise InvalidRequestError(f"Unknown mark type '{mark_type}'")
    if sort_by not in SUMMARY_SORT_KEYS:
        raise InvalidRequestError(f"Unknown sort key '{sort_by}'",
                                  context={"allowed": sorted(SUMMARY_SORT_KEYS)})

    entries = []
    for entry in FeedbackRepository().get_title_summaries(media_type=media_type,
                                                          mark_type=mark_type):
        if entry["unique_users"] < min_users:
            continue
        info = build_feedback(entry["counts"], entry["unique_users"])
        entry.update(score=info.score, keep_forever=info.keep_forever,
                     recommendation=info.recommendation)
        entries.append(entry)

    entries.sort(key=SUMMARY_SORT_KEYS[sort_by], reverse=descending)
    return entries
