"""Media maintenance engine: rules, scans, candidates and deletions.

Job kinds handled by the queue:
    scan      {rule_id, scan_id, manual_trigger}
    deletion  {candidate_ids, delete_files, requested_by}
"""

import logging

logger = logging.getLogger(__name__)

SCAN_JOB = "scan"
DELETION_JOB = "deletion"

AUTO_REVIEWER = "system:auto-delete"
REQUESTED_NOTE = "actively requested"

# Disabled holder rule for candidates queued by hand from user feedback
FEEDBACK_RULE_NAME = "User feedback review"
FEEDBACK_RULE_CRITERIA = {"field": "feedback.unique_users", "operator": "greater_than", "value": 0}


def register_job_handlers(queue, settings) -> None:
    """Attach the scan and deletion handlers to the job queue."""
    from maintenance.deleter import handle_deletion_failure, run_deletion_job
    from maintenance.scanner import handle_scan_cancelled, handle_scan_failure, run_scan_job

    queue.register_handler(
        SCAN_JOB,
        run_scan_job,
        workers=settings.scan_workers,
        max_attempts=settings.scan_max_attempts,
        backoff_seconds=settings.scan_backoff_seconds,
        on_failure=handle_scan_failure,
        on_cancel=handle_scan_cancelled,
    )
    queue.register_handler(
        DELETION_JOB,
        run_deletion_job,
        workers=settings.deletion_workers,
        max_attempts=settings.deletion_max_attempts,
        backoff_seconds=settings.deletion_backoff_seconds,
        on_failure=handle_deletion_failure,
    )
    logger.debug("Maintenance job handlers registered")
