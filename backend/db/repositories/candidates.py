"""Candidate repository: candidate rows and their review-status transitions.

Status changes go through transition(), a conditional UPDATE that only
matches rows still in one of the expected source statuses. The caller
checks the returned flag to detect a lost race.
"""

import json
import logging

from sqlalchemy import func, select, update

from db.models.maintenance import MaintenanceCandidate, MaintenanceRule, ReviewStatus
from db.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


def _value(status) -> str:
    return getattr(status, "value", status)


class CandidateRepository(BaseRepository):
    """Repository for maintenance_candidates table operations."""

    def _candidate_dict(self, candidate: MaintenanceCandidate) -> dict | None:
        data = self._to_dict(candidate)
        if data is not None:
            data["matched_reasons"] = self._loads(data.pop("matched_reasons_json"), [])
        return data

    def get_candidate(self, candidate_id: int) -> dict | None:
        return self._candidate_dict(self.session.get(MaintenanceCandidate, candidate_id))

    def get_candidates(self, candidate_ids: list[int]) -> dict[int, dict]:
        """Fetch several candidates keyed by id (missing ids are absent)."""
        if not candidate_ids:
            return {}
        stmt = select(MaintenanceCandidate).where(MaintenanceCandidate.id.in_(candidate_ids))
        # Bypass the identity map so status written by other workers is visible
        stmt = stmt.execution_options(populate_existing=True)
        return {c.id: self._candidate_dict(c) for c in self.session.execute(stmt).scalars().all()}

    def get_open_title_keys(self, rule_id: int, title_keys: list[str] = None) -> set[str]:
        """Title keys that already have a non-DELETED candidate for the rule."""
        stmt = select(MaintenanceCandidate.title_key).where(
            MaintenanceCandidate.rule_id == rule_id,
            MaintenanceCandidate.review_status != ReviewStatus.DELETED.value,
        )
        if title_keys is not None:
            if not title_keys:
                return set()
            stmt = stmt.where(MaintenanceCandidate.title_key.in_(title_keys))
        return set(self.session.execute(stmt).scalars().all())

    def add_candidate(self, scan_id: int, rule_id: int, title_key: str, media_type: str,
                      snapshot: dict, matched_reasons: list[str], review_status: str,
                      reviewed_by: str = None, review_note: str = None) -> int:
        """Insert one candidate. Returns its id (flushes, commits outside batch mode)."""
        now = self._now()
        reviewed = review_status != ReviewStatus.PENDING.value
        candidate = MaintenanceCandidate(
            scan_id=scan_id,
            rule_id=rule_id,
            title_key=title_key,
            media_type=media_type,
            radarr_id=snapshot.get("radarr_id"),
            sonarr_id=snapshot.get("sonarr_id"),
            tmdb_id=snapshot.get("tmdb_id"),
            tvdb_id=snapshot.get("tvdb_id"),
            title=snapshot.get("title") or title_key,
            year=snapshot.get("year"),
            poster=snapshot.get("poster"),
            file_path=snapshot.get("file_path"),
            file_size=snapshot.get("file_size"),
            play_count=snapshot.get("play_count"),
            last_watched_at=snapshot.get("last_watched_at"),
            added_at=snapshot.get("added_at"),
            feedback_score=snapshot.get("feedback_score"),
            matched_reasons_json=json.dumps(matched_reasons),
            review_status=review_status,
            flagged_at=now,
            reviewed_at=now if reviewed else None,
            reviewed_by=reviewed_by if reviewed else None,
            review_note=review_note,
        )
        self.session.add(candidate)
        self.session.flush()
        candidate_id = candidate.id
        self._commit()
        return candidate_id

    def transition(self, candidate_id: int, from_statuses: tuple, to_status: str,
                   **values) -> bool:
        """Move a candidate to to_status only if it is currently in from_statuses."""
        result = self.session.execute(
            update(MaintenanceCandidate)
            .where(
                MaintenanceCandidate.id == candidate_id,
                MaintenanceCandidate.review_status.in_([_value(s) for s in from_statuses]),
            )
            .values(review_status=_value(to_status), **values)
        )
        self._commit()
        return result.rowcount == 1

    def set_note(self, candidate_id: int, note: str) -> dict | None:
        candidate = self.session.get(MaintenanceCandidate, candidate_id)
        if candidate is None:
            return None
        candidate.review_note = note
        self._commit()
        return self._candidate_dict(candidate)

    def set_deletion_error(self, candidate_id: int, error: str | None) -> None:
        self.session.execute(
            update(MaintenanceCandidate)
            .where(MaintenanceCandidate.id == candidate_id)
            .values(deletion_error=error[:2000] if error else None)
        )
        self._commit()

    def get_candidates_page(self, review_status: str = None, media_type: str = None,
                            scan_id: int = None, rule_id: int = None,
                            page: int = 1, per_page: int = 25) -> dict:
        """Filtered candidate listing, newest first, with the rule name attached."""
        conditions = []
        if review_status:
            conditions.append(MaintenanceCandidate.review_status == review_status)
        if media_type:
            conditions.append(MaintenanceCandidate.media_type == media_type)
        if scan_id is not None:
            conditions.append(MaintenanceCandidate.scan_id == scan_id)
        if rule_id is not None:
            conditions.append(MaintenanceCandidate.rule_id == rule_id)

        stmt = (
            select(MaintenanceCandidate)
            .where(*conditions)
            .order_by(MaintenanceCandidate.flagged_at.desc(), MaintenanceCandidate.id.desc())
        )
        count_stmt = select(func.count(MaintenanceCandidate.id)).where(*conditions)
        result = self._paginate(stmt, count_stmt, page, per_page)

        rule_ids = {item["rule_id"] for item in result["items"]}
        names = {}
        if rule_ids:
            names = dict(
                self.session.execute(
                    select(MaintenanceRule.id, MaintenanceRule.name)
                    .where(MaintenanceRule.id.in_(rule_ids))
                ).all()
            )
        for item in result["items"]:
            item["matched_reasons"] = self._loads(item.pop("matched_reasons_json"), [])
            item["rule_name"] = names.get(item["rule_id"])
        return result

    def count_by_status(self) -> dict:
        rows = self.session.execute(
            select(MaintenanceCandidate.review_status, func.count(MaintenanceCandidate.id))
            .group_by(MaintenanceCandidate.review_status)
        ).all()
        counts = {status.value: 0 for status in ReviewStatus}
        counts.update({status: count for status, count in rows})
        return counts

    def reclaimable_bytes(self) -> int:
        """Sum of snapshot file sizes for candidates still awaiting deletion."""
        return self.session.execute(
            select(func.coalesce(func.sum(MaintenanceCandidate.file_size), 0)).where(
                MaintenanceCandidate.review_status.in_(
                    [ReviewStatus.PENDING.value, ReviewStatus.APPROVED.value]
                )
            )
        ).scalar()
