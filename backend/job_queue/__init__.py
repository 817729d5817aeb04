"""Job queue abstraction layer with a persisted database backend.

Package named 'job_queue' (not 'queue') to avoid shadowing Python's
stdlib queue module, which is used by concurrent.futures.

Jobs are typed by a `kind` ("scan", "deletion"); each kind has one
registered handler, its own worker pool and its own retry policy.
Delivery is at-least-once: a job interrupted by a restart runs again,
so handlers must be idempotent.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

# Lower values are claimed first
PRIORITY_MANUAL = 1
PRIORITY_DEFAULT = 5


class JobStatus(Enum):
    """Unified job status across all queue backends."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class JobInfo:
    """Unified job information across all queue backends."""

    id: str
    kind: str
    status: JobStatus
    enqueued_at: str
    priority: int = PRIORITY_DEFAULT
    attempts: int = 0
    max_attempts: int = 1
    payload: dict = field(default_factory=dict)
    started_at: str | None = None
    completed_at: str | None = None
    result: Any | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "status": self.status.value,
            "priority": self.priority,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "payload": self.payload,
            "enqueued_at": self.enqueued_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "result": self.result,
            "error": self.error,
        }


# handler(payload, job) -> result; on_failure(payload, job, exc) after the last attempt
JobHandler = Callable[[dict, JobInfo], Any]
FailureHandler = Callable[[dict, JobInfo, Exception], None]
CancelHandler = Callable[[dict, JobInfo], None]


class QueueBackend(ABC):
    """Abstract base class for job queue backends."""

    @abstractmethod
    def register_handler(self, kind: str, handler: JobHandler, workers: int = 1,
                         max_attempts: int = 3, backoff_seconds: float = 2,
                         on_failure: FailureHandler = None,
                         on_cancel: CancelHandler = None) -> None:
        """Bind a handler, its retry policy and its failure/cancel callbacks to a job kind."""

    @abstractmethod
    def enqueue(self, kind: str, payload: dict, priority: int = PRIORITY_DEFAULT,
                job_id: str = None) -> str:
        """Submit a job for background execution.

        Returns:
            The job ID (str).
        """

    @abstractmethod
    def get_job(self, job_id: str) -> JobInfo | None:
        """Get job status and metadata, or None if unknown."""

    @abstractmethod
    def cancel_job(self, job_id: str) -> bool:
        """Cancel a job that no worker has picked up yet.

        The kind's on_cancel callback runs after the status change.

        Returns:
            True if the job was cancelled.
        """

    @abstractmethod
    def get_queue_length(self) -> int:
        """Get number of pending (queued) jobs."""

    @abstractmethod
    def get_active_jobs(self) -> list[JobInfo]:
        """Get currently executing jobs."""

    @abstractmethod
    def get_failed_jobs(self, limit: int = 50) -> list[JobInfo]:
        """Get permanently failed jobs, newest first."""

    @abstractmethod
    def clear_failed(self) -> int:
        """Delete failed job records. Returns the number removed."""

    @abstractmethod
    def get_backend_info(self) -> dict:
        """Get backend type and status information.

        Returns:
            Dict with at least: type (str), plus backend-specific details.
        """


def create_job_queue(app=None, poll_interval: float = 2.0) -> QueueBackend:
    """Create the queue backend used by the application.

    Jobs live in the application database, so they survive restarts
    without extra infrastructure.
    """
    from job_queue.db_queue import DatabaseJobQueue

    return DatabaseJobQueue(app=app, poll_interval=poll_interval)
