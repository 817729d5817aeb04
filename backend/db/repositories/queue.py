"""Queue repository: persisted job rows and the atomic claim operation."""

import json
import logging
import uuid

from sqlalchemy import delete, func, select, update

from db.models.queue import QueueJob
from db.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

# Attempts to claim before giving up when other workers keep winning the race
_CLAIM_RETRIES = 5


class QueueRepository(BaseRepository):
    """Repository for maintenance_queue_jobs table operations."""

    def insert_job(self, kind: str, payload: dict, priority: int, max_attempts: int,
                   job_id: str = None) -> dict:
        now = self._now()
        job = QueueJob(
            id=job_id or uuid.uuid4().hex,
            kind=kind,
            payload_json=json.dumps(payload),
            priority=priority,
            status="queued",
            attempts=0,
            max_attempts=max_attempts,
            run_after=now,
            enqueued_at=now,
        )
        self.session.add(job)
        self._commit()
        return self._to_dict(job)

    def get_job(self, job_id: str) -> dict | None:
        stmt = select(QueueJob).where(QueueJob.id == job_id).execution_options(populate_existing=True)
        return self._to_dict(self.session.execute(stmt).scalar_one_or_none())

    def claim_next(self, kind: str) -> dict | None:
        """Atomically move the next runnable job of a kind to 'running'.

        Picks the lowest priority value, then the oldest, among queued jobs
        whose run_after has passed. The conditional UPDATE guarantees that
        only one worker wins a given job.
        """
        for _ in range(_CLAIM_RETRIES):
            now = self._now()
            candidate_id = self.session.execute(
                select(QueueJob.id)
                .where(
                    QueueJob.kind == kind,
                    QueueJob.status == "queued",
                    QueueJob.run_after <= now,
                )
                .order_by(QueueJob.priority, QueueJob.enqueued_at, QueueJob.id)
                .limit(1)
            ).scalar_one_or_none()
            if candidate_id is None:
                self.session.commit()
                return None

            result = self.session.execute(
                update(QueueJob)
                .where(QueueJob.id == candidate_id, QueueJob.status == "queued")
                .values(
                    status="running",
                    started_at=now,
                    attempts=QueueJob.attempts + 1,
                ),
                execution_options={"synchronize_session": False},
            )
            self.session.commit()
            if result.rowcount == 1:
                return self.get_job(candidate_id)
        return None

    def mark_completed(self, job_id: str, result=None) -> None:
        self.session.execute(
            update(QueueJob)
            .where(QueueJob.id == job_id)
            .values(
                status="completed",
                completed_at=self._now(),
                result_json=json.dumps(result, default=str) if result is not None else None,
            ),
            execution_options={"synchronize_session": False},
        )
        self._commit()

    def mark_retry(self, job_id: str, error: str, run_after: str) -> None:
        self.session.execute(
            update(QueueJob)
            .where(QueueJob.id == job_id)
            .values(status="queued", last_error=error[:2000], run_after=run_after),
            execution_options={"synchronize_session": False},
        )
        self._commit()

    def mark_failed(self, job_id: str, error: str) -> None:
        self.session.execute(
            update(QueueJob)
            .where(QueueJob.id == job_id)
            .values(status="failed", last_error=error[:2000], completed_at=self._now()),
            execution_options={"synchronize_session": False},
        )
        self._commit()

    def cancel_job(self, job_id: str) -> bool:
        """queued -> cancelled. Jobs already picked up by a worker are not touched."""
        result = self.session.execute(
            update(QueueJob)
            .where(QueueJob.id == job_id, QueueJob.status == "queued")
            .values(status="cancelled", completed_at=self._now()),
            execution_options={"synchronize_session": False},
        )
        self._commit()
        return result.rowcount == 1

    def requeue_running(self) -> int:
        """Return jobs left 'running' by a dead process to the queue."""
        result = self.session.execute(
            update(QueueJob)
            .where(QueueJob.status == "running")
            .values(status="queued", run_after=self._now()),
            execution_options={"synchronize_session": False},
        )
        self._commit()
        return result.rowcount

    def count_by_status(self, kind: str = None) -> dict:
        stmt = select(QueueJob.status, func.count(QueueJob.id)).group_by(QueueJob.status)
        if kind:
            stmt = stmt.where(QueueJob.kind == kind)
        return {status: count for status, count in self.session.execute(stmt).all()}

    def get_jobs(self, status: str, kind: str = None, limit: int = 50) -> list[dict]:
        stmt = select(QueueJob).where(QueueJob.status == status)
        if kind:
            stmt = stmt.where(QueueJob.kind == kind)
        stmt = stmt.order_by(QueueJob.enqueued_at.desc()).limit(limit)
        stmt = stmt.execution_options(populate_existing=True)
        return [self._to_dict(j) for j in self.session.execute(stmt).scalars().all()]

    def delete_by_status(self, status: str) -> int:
        result = self.session.execute(delete(QueueJob).where(QueueJob.status == status))
        self._commit()
        return result.rowcount
