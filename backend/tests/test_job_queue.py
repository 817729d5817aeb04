"""Tests for the database-backed job queue."""

import pytest

from db.repositories.queue import QueueRepository
from job_queue import PRIORITY_DEFAULT, PRIORITY_MANUAL, JobStatus


@pytest.fixture
def echo(queue):
    """Register an 'echo' kind whose handler records payloads and can be told to fail."""
    state = {"seen": [], "fail_times": 0, "failures": []}

    def handler(payload, job):
        state["seen"].append(payload["n"])
        if state["fail_times"] > 0:
            state["fail_times"] -= 1
            raise RuntimeError("transient")
        return {"echo": payload["n"]}

    def on_failure(payload, job, exc):
        state["failures"].append((payload["n"], job.attempts, str(exc)))

    queue.register_handler("echo", handler, workers=1, max_attempts=3,
                           backoff_seconds=0, on_failure=on_failure)
    return state


class TestOrdering:
    def test_manual_priority_runs_first(self, queue, echo):
        queue.enqueue("echo", {"n": 1}, priority=PRIORITY_DEFAULT)
        queue.enqueue("echo", {"n": 2}, priority=PRIORITY_DEFAULT)
        queue.enqueue("echo", {"n": 3}, priority=PRIORITY_MANUAL)

        queue.run_pending("echo")

        assert echo["seen"] == [3, 1, 2]

    def test_result_is_stored(self, queue, echo):
        job_id = queue.enqueue("echo", {"n": 7})
        job = queue.process_next("echo")
        assert job.id == job_id
        assert job.status is JobStatus.COMPLETED
        assert job.result == {"echo": 7}
        assert job.completed_at is not None

    def test_empty_queue(self, queue, echo):
        assert queue.process_next("echo") is None
        assert queue.run_pending("echo") == 0

    def test_unknown_kind(self, queue):
        with pytest.raises(ValueError):
            queue.enqueue("nope", {})


class TestRetries:
    def test_transient_failure_is_retried(self, queue, echo):
        echo["fail_times"] = 2
        job_id = queue.enqueue("echo", {"n": 1})

        queue.run_pending("echo")

        job = queue.get_job(job_id)
        assert job.status is JobStatus.COMPLETED
        assert job.attempts == 3
        assert echo["seen"] == [1, 1, 1]
        assert echo["failures"] == []

    def test_exhausted_job_fails_and_calls_on_failure(self, queue, echo):
        echo["fail_times"] = 10
        job_id = queue.enqueue("echo", {"n": 4})

        queue.run_pending("echo")

        job = queue.get_job(job_id)
        assert job.status is JobStatus.FAILED
        assert job.error == "RuntimeError: transient"
        assert echo["failures"] == [(4, 3, "transient")]
        assert [j.id for j in queue.get_failed_jobs()] == [job_id]

    def test_retry_waits_for_backoff(self, queue):
        calls = []

        def handler(payload, job):
            calls.append(job.attempts)
            raise RuntimeError("later")

        queue.register_handler("slow", handler, max_attempts=2, backoff_seconds=3600)
        job_id = queue.enqueue("slow", {})

        assert queue.run_pending("slow") == 1
        assert calls == [1]
        assert queue.get_job(job_id).status is JobStatus.QUEUED

    def test_clear_failed(self, queue, echo):
        echo["fail_times"] = 10
        queue.enqueue("echo", {"n": 1})
        queue.run_pending("echo")
        assert queue.clear_failed() == 1
        assert queue.get_failed_jobs() == []


class TestControl:
    def test_cancel_queued_job(self, queue, echo):
        job_id = queue.enqueue("echo", {"n": 1})
        assert queue.cancel_job(job_id) is True
        assert queue.get_job(job_id).status is JobStatus.CANCELLED
        assert queue.run_pending("echo") == 0
        assert echo["seen"] == []

    def test_cancel_runs_on_cancel_callback(self, queue):
        cancelled = []
        queue.register_handler("tidy", lambda payload, job: None,
                               on_cancel=lambda payload, job: cancelled.append((payload, job.status)))
        job_id = queue.enqueue("tidy", {"n": 9})

        assert queue.cancel_job(job_id) is True
        assert cancelled == [({"n": 9}, JobStatus.CANCELLED)]

    def test_cannot_cancel_finished_job(self, queue, echo):
        job_id = queue.enqueue("echo", {"n": 1})
        queue.run_pending("echo")
        assert queue.cancel_job(job_id) is False

    def test_recover_stale_requeues_running_jobs(self, queue, echo):
        job_id = queue.enqueue("echo", {"n": 5})
        # Simulate a worker that claimed the job and then died
        claimed = QueueRepository().claim_next("echo")
        assert claimed["id"] == job_id
        assert [j.id for j in queue.get_active_jobs()] == [job_id]

        assert queue.recover_stale() == 1
        assert queue.get_job(job_id).status is JobStatus.QUEUED

        queue.run_pending("echo")
        job = queue.get_job(job_id)
        assert job.status is JobStatus.COMPLETED
        assert job.attempts == 2

    def test_queue_length_and_backend_info(self, queue, echo):
        queue.enqueue("echo", {"n": 1})
        queue.enqueue("echo", {"n": 2})
        assert queue.get_queue_length() == 2

        info = queue.get_backend_info()
        assert info["type"] == "database"
        assert info["running"] is False
        assert info["kinds"]["echo"]["jobs"] == {"queued": 2}
        assert set(info["kinds"]) >= {"scan", "deletion", "echo"}

    def test_job_info_to_dict(self, queue, echo):
        job_id = queue.enqueue("echo", {"n": 1}, priority=PRIORITY_MANUAL)
        data = queue.get_job(job_id).to_dict()
        assert data["id"] == job_id
        assert data["kind"] == "echo"
        assert data["status"] == "queued"
        assert data["priority"] == PRIORITY_MANUAL
        assert data["payload"] == {"n": 1}
