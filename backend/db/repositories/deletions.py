"""Deletion log repository: append-only audit rows and deletion statistics."""

import logging
from datetime import UTC, datetime

from sqlalchemy import case, func, select

from db.models.maintenance import MaintenanceDeletionLog
from db.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class DeletionLogRepository(BaseRepository):
    """Repository for maintenance_deletion_logs table operations."""

    def _log_dict(self, entry: MaintenanceDeletionLog) -> dict | None:
        data = self._to_dict(entry)
        if data is not None:
            data["files_deleted"] = bool(data["files_deleted"])
            data["library_removed"] = bool(data["library_removed"])
        return data

    def add_log(self, candidate: dict, deleted_by: str, library_removed: bool,
                files_deleted: bool, deleted_from: str = None, rule_name: str = None,
                job_id: str = None, attempt: int = 1, error: str = None) -> dict:
        """Append one attempt row for a candidate."""
        entry = MaintenanceDeletionLog(
            candidate_id=candidate.get("id"),
            job_id=job_id,
            attempt=attempt,
            media_type=candidate["media_type"],
            title=candidate["title"],
            year=candidate.get("year"),
            file_size=candidate.get("file_size"),
            library_removed=1 if library_removed else 0,
            files_deleted=1 if files_deleted else 0,
            deleted_by=deleted_by,
            deleted_from=deleted_from,
            rule_name=rule_name,
            error=error[:2000] if error else None,
            deleted_at=self._now(),
        )
        self.session.add(entry)
        self._commit()
        return self._log_dict(entry)

    def get_logs_for_candidate(self, candidate_id: int) -> list[dict]:
        stmt = (
            select(MaintenanceDeletionLog)
            .where(MaintenanceDeletionLog.candidate_id == candidate_id)
            .order_by(MaintenanceDeletionLog.id)
        )
        return [self._log_dict(e) for e in self.session.execute(stmt).scalars().all()]

    def _filters(self, media_type=None, deleted_by=None, files_deleted=None,
                 start=None, end=None) -> list:
        conditions = []
        if media_type:
            conditions.append(MaintenanceDeletionLog.media_type == media_type)
        if deleted_by:
            conditions.append(MaintenanceDeletionLog.deleted_by == deleted_by)
        if files_deleted is not None:
            conditions.append(MaintenanceDeletionLog.files_deleted == (1 if files_deleted else 0))
        if start:
            conditions.append(MaintenanceDeletionLog.deleted_at >= start)
        if end:
            conditions.append(MaintenanceDeletionLog.deleted_at <= end)
        return conditions

    def get_history(self, media_type: str = None, deleted_by: str = None,
                    files_deleted: bool = None, start: str = None, end: str = None,
                    page: int = 1, per_page: int = 50) -> dict:
        """Paginated deletion history, newest first."""
        conditions = self._filters(media_type, deleted_by, files_deleted, start, end)
        stmt = (
            select(MaintenanceDeletionLog)
            .where(*conditions)
            .order_by(MaintenanceDeletionLog.deleted_at.desc(), MaintenanceDeletionLog.id.desc())
        )
        count_stmt = select(func.count(MaintenanceDeletionLog.id)).where(*conditions)
        result = self._paginate(stmt, count_stmt, page, per_page)
        for item in result["items"]:
            item["files_deleted"] = bool(item["files_deleted"])
            item["library_removed"] = bool(item["library_removed"])
        return result

    def get_stats(self, start: str = None, end: str = None) -> dict:
        """Aggregate deletion statistics over successful and failed attempts.

        A row counts as a deletion when the library entry was removed;
        bytes are only counted as reclaimed when files were deleted too.
        """
        conditions = self._filters(start=start, end=end)
        removed = MaintenanceDeletionLog.library_removed == 1
        total, reclaimed, files, failed = self.session.execute(
            select(
                func.coalesce(func.sum(case((removed, 1), else_=0)), 0),
                func.coalesce(func.sum(
                    case((MaintenanceDeletionLog.files_deleted == 1,
                          func.coalesce(MaintenanceDeletionLog.file_size, 0)), else_=0)
                ), 0),
                func.coalesce(func.sum(MaintenanceDeletionLog.files_deleted), 0),
                func.coalesce(func.sum(
                    case((MaintenanceDeletionLog.error.is_not(None), 1), else_=0)
                ), 0),
            ).where(*conditions)
        ).one()

        month_start = datetime.now(UTC).replace(
            day=1, hour=0, minute=0, second=0, microsecond=0
        ).isoformat()
        this_month = self.session.execute(
            select(func.count(MaintenanceDeletionLog.id)).where(
                *conditions, removed, MaintenanceDeletionLog.deleted_at >= month_start
            )
        ).scalar()

        by_media_type = {
            media_type: {"count": count, "bytes": size}
            for media_type, count, size in self.session.execute(
                select(
                    MaintenanceDeletionLog.media_type,
                    func.count(MaintenanceDeletionLog.id),
                    func.coalesce(func.sum(MaintenanceDeletionLog.file_size), 0),
                )
                .where(*conditions, removed)
                .group_by(MaintenanceDeletionLog.media_type)
            ).all()
        }
        by_user = {
            user: count
            for user, count in self.session.execute(
                select(MaintenanceDeletionLog.deleted_by, func.count(MaintenanceDeletionLog.id))
                .where(*conditions, removed)
                .group_by(MaintenanceDeletionLog.deleted_by)
            ).all()
        }

        return {
            "total_deletions": total,
            "bytes_reclaimed": reclaimed,
            "files_deleted": files,
            "failed_attempts": failed,
            "deletions_this_month": this_month,
            "by_media_type": by_media_type,
            "by_user": by_user,
        }

    def count_deletions(self) -> int:
        return self.session.execute(
            select(func.count(MaintenanceDeletionLog.id))
            .where(MaintenanceDeletionLog.library_removed == 1)
        ).scalar()
