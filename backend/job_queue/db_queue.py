"""Database-backed job queue with per-kind worker pools.

Jobs are rows in maintenance_queue_jobs. Workers claim them with a
conditional UPDATE, run the registered handler inside an application
context and record the outcome. Failed jobs are retried with exponential
backoff until max_attempts, then marked failed and handed to the kind's
on_failure callback so the failure reaches the audit path.
"""

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from extensions import db
from job_queue import (
    PRIORITY_DEFAULT,
    CancelHandler,
    FailureHandler,
    JobHandler,
    JobInfo,
    JobStatus,
    QueueBackend,
)

logger = logging.getLogger(__name__)


@dataclass
class _KindSpec:
    handler: JobHandler
    workers: int
    max_attempts: int
    backoff_seconds: float
    on_failure: FailureHandler | None
    on_cancel: CancelHandler | None = None


def _to_info(row: dict) -> JobInfo:
    result = None
    if row.get("result_json"):
        try:
            result = json.loads(row["result_json"])
        except ValueError:
            result = row["result_json"]
    return JobInfo(
        id=row["id"],
        kind=row["kind"],
        status=JobStatus(row["status"]),
        enqueued_at=row["enqueued_at"],
        priority=row["priority"],
        attempts=row["attempts"],
        max_attempts=row["max_attempts"],
        payload=json.loads(row["payload_json"] or "{}"),
        started_at=row.get("started_at"),
        completed_at=row.get("completed_at"),
        result=result,
        error=row.get("last_error"),
    )


class DatabaseJobQueue(QueueBackend):
    """QueueBackend persisted in the application database.

    Call register_handler() for every kind before enqueueing it, then
    start() to launch the worker pools. Tests drive the queue
    synchronously with run_pending() instead of starting workers.
    """

    def __init__(self, app=None, poll_interval: float = 2.0):
        self._app = app
        self._poll_interval = poll_interval
        self._kinds: dict[str, _KindSpec] = {}
        self._wakeups: dict[str, threading.Event] = {}
        self._executors: dict[str, ThreadPoolExecutor] = {}
        self._stop = threading.Event()
        self._started = False
        self._lock = threading.Lock()

    # ---- Registration ----------------------------------------------------------

    def register_handler(self, kind, handler, workers=1, max_attempts=3,
                         backoff_seconds=2, on_failure=None, on_cancel=None) -> None:
        self._kinds[kind] = _KindSpec(
            handler=handler,
            workers=max(1, workers),
            max_attempts=max(1, max_attempts),
            backoff_seconds=backoff_seconds,
            on_failure=on_failure,
            on_cancel=on_cancel,
        )
        self._wakeups.setdefault(kind, threading.Event())
        logger.debug("Registered job handler for %s (workers=%d, attempts=%d)",
                     kind, workers, max_attempts)

    def _spec(self, kind: str) -> _KindSpec:
        spec = self._kinds.get(kind)
        if spec is None:
            raise ValueError(f"No handler registered for job kind '{kind}'")
        return spec

    # ---- Producer side ---------------------------------------------------------

    def enqueue(self, kind, payload, priority=PRIORITY_DEFAULT, job_id=None) -> str:
        """Insert a job row.

        Inside a repository batch() the row is only flushed, so the job
        becomes visible to workers together with the caller's other changes.
        """
        from db.repositories.queue import QueueRepository

        spec = self._spec(kind)
        row = QueueRepository().insert_job(
            kind=kind,
            payload=payload,
            priority=priority,
            max_attempts=spec.max_attempts,
            job_id=job_id,
        )
        self._wakeups[kind].set()
        logger.debug("Enqueued %s job %s (priority %d)", kind, row["id"], priority)
        return row["id"]

    # ---- Consumer side ---------------------------------------------------------

    def process_next(self, kind: str) -> JobInfo | None:
        """Claim and run one job of the given kind. Requires an app context.

        Returns:
            The job's final JobInfo after this attempt, or None if nothing was runnable.
        """
        from db.repositories.queue import QueueRepository

        spec = self._spec(kind)
        repo = QueueRepository()
        row = repo.claim_next(kind)
        if row is None:
            return None

        job = _to_info(row)
        logger.info("Running %s job %s (attempt %d/%d)",
                    kind, job.id, job.attempts, job.max_attempts)
        try:
            result = spec.handler(job.payload, job)
        except Exception as exc:
            db.session.rollback()
            self._handle_failure(repo, spec, job, exc)
        else:
            repo.mark_completed(job.id, result)
            logger.info("%s job %s completed", kind, job.id)
        return self.get_job(job.id)

    def _handle_failure(self, repo, spec: _KindSpec, job: JobInfo, exc: Exception) -> None:
        error = f"{exc.__class__.__name__}: {exc}"
        if job.attempts < job.max_attempts:
            delay = spec.backoff_seconds * (2 ** (job.attempts - 1))
            run_after = (datetime.now(UTC) + timedelta(seconds=delay)).isoformat()
            repo.mark_retry(job.id, error, run_after)
            logger.warning("%s job %s failed (attempt %d/%d), retrying in %.0fs: %s",
                           job.kind, job.id, job.attempts, job.max_attempts, delay, exc)
            return

        repo.mark_failed(job.id, error)
        logger.error("%s job %s permanently failed after %d attempts: %s",
                     job.kind, job.id, job.attempts, exc)
        if spec.on_failure is not None:
            job.error = error
            try:
                spec.on_failure(job.payload, job, exc)
            except Exception:
                db.session.rollback()
                logger.exception("on_failure callback for %s job %s raised", job.kind, job.id)

    def run_pending(self, kind: str = None, limit: int = 100) -> int:
        """Synchronously drain runnable jobs. Returns the number of attempts made."""
        kinds = [kind] if kind else list(self._kinds)
        processed = 0
        progress = True
        while progress and processed < limit:
            progress = False
            for name in kinds:
                if processed >= limit:
                    break
                if self.process_next(name) is not None:
                    processed += 1
                    progress = True
        return processed

    def recover_stale(self) -> int:
        """Re-queue jobs that were running when the previous process died."""
        from db.repositories.queue import QueueRepository

        count = QueueRepository().requeue_running()
        if count:
            logger.warning("Re-queued %d job(s) interrupted by a restart", count)
        return count

    # ---- Worker pools ----------------------------------------------------------

    def start(self) -> None:
        """Recover interrupted jobs and launch one worker pool per kind."""
        if self._app is None:
            raise RuntimeError("DatabaseJobQueue.start() needs the Flask app")
        with self._lock:
            if self._started:
                return
            with self._app.app_context():
                self.recover_stale()
            self._stop.clear()
            for kind, spec in self._kinds.items():
                executor = ThreadPoolExecutor(
                    max_workers=spec.workers, thread_name_prefix=f"prunarr-{kind}"
                )
                for _ in range(spec.workers):
                    executor.submit(self._worker_loop, kind)
                self._executors[kind] = executor
            self._started = True
        logger.info("Job queue started: %s",
                    ", ".join(f"{k}x{s.workers}" for k, s in self._kinds.items()))

    def stop(self, wait: bool = True) -> None:
        with self._lock:
            if not self._started:
                return
            self._stop.set()
            for event in self._wakeups.values():
                event.set()
            for executor in self._executors.values():
                executor.shutdown(wait=wait)
            self._executors = {}
            self._started = False
        logger.info("Job queue stopped")

    def _worker_loop(self, kind: str) -> None:
        wakeup = self._wakeups[kind]
        while not self._stop.is_set():
            job = None
            with self._app.app_context():
                try:
                    job = self.process_next(kind)
                except Exception:
                    db.session.rollback()
                    logger.exception("%s worker error", kind)
            if job is None:
                wakeup.wait(self._poll_interval)
                wakeup.clear()

    # ---- Introspection ---------------------------------------------------------

    def get_job(self, job_id):
        from db.repositories.queue import QueueRepository

        row = QueueRepository().get_job(job_id)
        return _to_info(row) if row else None

    def cancel_job(self, job_id) -> bool:
        from db.repositories.queue import QueueRepository

        cancelled = QueueRepository().cancel_job(job_id)
        if not cancelled:
            return False
        logger.info("Cancelled job %s", job_id)
        job = self.get_job(job_id)
        spec = self._kinds.get(job.kind)
        if spec is not None and spec.on_cancel is not None:
            spec.on_cancel(job.payload, job)
        return True

    def get_queue_length(self) -> int:
        from db.repositories.queue import QueueRepository

        return QueueRepository().count_by_status().get("queued", 0)

    def get_active_jobs(self):
        from db.repositories.queue import QueueRepository

        return [_to_info(r) for r in QueueRepository().get_jobs("running")]

    def get_failed_jobs(self, limit=50):
        from db.repositories.queue import QueueRepository

        return [_to_info(r) for r in QueueRepository().get_jobs("failed", limit=limit)]

    def clear_failed(self) -> int:
        from db.repositories.queue import QueueRepository

        return QueueRepository().delete_by_status("failed")

    def get_backend_info(self) -> dict:
        from db.repositories.queue import QueueRepository

        repo = QueueRepository()
        return {
            "type": "database",
            "running": self._started,
            "kinds": {
                kind: {
                    "workers": spec.workers,
                    "max_attempts": spec.max_attempts,
                    "backoff_seconds": spec.backoff_seconds,
                    "jobs": repo.count_by_status(kind),
                }
                for kind, spec in self._kinds.items()
            },
        }
