"""Feedback mark repository: per-user marks and per-title aggregation."""

import logging
from collections import defaultdict

from sqlalchemy import delete, func, select

from db.models.maintenance import UserMediaMark
from db.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class FeedbackRepository(BaseRepository):
    """Repository for user_media_marks table operations."""

    def add_mark(self, user_id: str, media_type: str, title_key: str, mark_type: str,
                 title: str = None, note: str = None, marked_via: str = None) -> dict:
        """Insert a mark, or refresh it if the user already set the same mark."""
        stmt = select(UserMediaMark).where(
            UserMediaMark.user_id == user_id,
            UserMediaMark.title_key == title_key,
            UserMediaMark.mark_type == mark_type,
        )
        existing = self.session.execute(stmt).scalar_one_or_none()
        now = self._now()
        if existing:
            existing.note = note
            existing.marked_via = marked_via
            existing.marked_at = now
            if title:
                existing.title = title
            self._commit()
            return self._to_dict(existing)

        mark = UserMediaMark(
            user_id=user_id,
            media_type=media_type,
            title_key=title_key,
            title=title,
            mark_type=mark_type,
            note=note,
            marked_via=marked_via,
            marked_at=now,
        )
        self.session.add(mark)
        self._commit()
        return self._to_dict(mark)

    def remove_mark(self, user_id: str, title_key: str, mark_type: str) -> bool:
        result = self.session.execute(
            delete(UserMediaMark).where(
                UserMediaMark.user_id == user_id,
                UserMediaMark.title_key == title_key,
                UserMediaMark.mark_type == mark_type,
            )
        )
        self._commit()
        return result.rowcount > 0

    def get_marks(self, title_key: str = None, user_id: str = None,
                  media_type: str = None) -> list[dict]:
        conditions = []
        if title_key:
            conditions.append(UserMediaMark.title_key == title_key)
        if user_id:
            conditions.append(UserMediaMark.user_id == user_id)
        if media_type:
            conditions.append(UserMediaMark.media_type == media_type)
        stmt = select(UserMediaMark).where(*conditions).order_by(UserMediaMark.marked_at.desc())
        return [self._to_dict(m) for m in self.session.execute(stmt).scalars().all()]

    def get_mark_summary(self, media_type: str) -> dict[str, dict]:
        """Per title: mark counts by type and number of distinct users.

        Returns:
            {title_key: {"counts": {mark_type: n}, "unique_users": n}}
        """
        counts_rows = self.session.execute(
            select(UserMediaMark.title_key, UserMediaMark.mark_type, func.count(UserMediaMark.id))
            .where(UserMediaMark.media_type == media_type)
            .group_by(UserMediaMark.title_key, UserMediaMark.mark_type)
        ).all()
        users_rows = self.session.execute(
            select(UserMediaMark.title_key, func.count(func.distinct(UserMediaMark.user_id)))
            .where(UserMediaMark.media_type == media_type)
            .group_by(UserMediaMark.title_key)
        ).all()

        summary: dict[str, dict] = defaultdict(lambda: {"counts": {}, "unique_users": 0})
        for title_key, mark_type, count in counts_rows:
            summary[title_key]["counts"][mark_type] = count
        for title_key, users in users_rows:
            summary[title_key]["unique_users"] = users
        return dict(summary)

    def get_title_summaries(self, media_type: str = None, mark_type: str = None,
                            title_key: str = None) -> list[dict]:
        """One entry per marked title with its mark counts and distinct users.

        A mark_type filter selects the titles carrying that mark; their
        counts still cover every mark on them.
        """
        conditions = []
        if media_type:
            conditions.append(UserMediaMark.media_type == media_type)
        if title_key:
            conditions.append(UserMediaMark.title_key == title_key)
        if mark_type:
            conditions.append(UserMediaMark.title_key.in_(
                select(UserMediaMark.title_key).where(UserMediaMark.mark_type == mark_type)
            ))
        stmt = select(UserMediaMark).where(*conditions).order_by(UserMediaMark.marked_at)

        titles: dict[str, dict] = {}
        users: dict[str, set] = defaultdict(set)
        for mark in self.session.execute(stmt).scalars().all():
            entry = titles.setdefault(mark.title_key, {
                "title_key": mark.title_key,
                "media_type": mark.media_type,
                "title": None,
                "counts": {},
                "last_marked_at": None,
            })
            if mark.title:
                entry["title"] = mark.title
            entry["counts"][mark.mark_type] = entry["counts"].get(mark.mark_type, 0) + 1
            entry["last_marked_at"] = mark.marked_at
            users[mark.title_key].add(mark.user_id)

        for key, entry in titles.items():
            entry["unique_users"] = len(users[key])
        return list(titles.values())
