"""Scan job handler: aggregate, evaluate and record candidates for one rule.

A scan is all-or-nothing. Candidate rows, the deletion job of an
AUTO_DELETE rule and the COMPLETED status are written in one transaction;
if anything fails before that commit the scan ends FAILED with no
candidates. A title whose evaluation errors is skipped, not fatal.

Redelivered jobs are safe: a finished scan is left alone and a RUNNING
scan from an interrupted worker is recomputed.
"""

import logging
import time
from datetime import UTC, datetime

from db.models.maintenance import ScanStatus
from db.repositories.rules import RuleRepository
from db.repositories.scans import ScanRepository
from error_handler import EvaluationError, PrunarrError
from events import emit_event
from extensions import db
from maintenance.aggregator import MediaAggregator
from maintenance.candidates import CandidateManager
from maintenance.collaborators import Collaborators, get_collaborators
from maintenance.criteria import ConditionGroup, parse_criteria
from maintenance.evaluator import evaluate
from maintenance.media import MediaItem

logger = logging.getLogger(__name__)


def match_items(items: list[MediaItem], criteria: ConditionGroup, now: datetime):
    """Evaluate every item. Keep-forever titles are never matched.

    Returns:
        (matches, skipped, protected) where matches is a list of (item, reasons).
    """
    matches, skipped, protected = [], 0, 0
    for item in items:
        if item.keep_forever:
            protected += 1
            continue
        try:
            result = evaluate(item, criteria, now)
        except EvaluationError as exc:
            skipped += 1
            logger.warning("Skipping %s (%s): %s", item.title, item.title_key, exc)
            continue
        if result.matched:
            matches.append((item, result.reasons))
    return matches, skipped, protected


def execute_scan(scan: dict, rule: dict, collaborators: Collaborators = None,
                 manager: CandidateManager = None, now: datetime = None) -> dict:
    """Run one scan to completion and commit its outcome.

    Raises:
        PrunarrError: configuration or collaborator failure; nothing is written.
    """
    now = now or datetime.now(UTC)
    collaborators = collaborators or get_collaborators()
    manager = manager or CandidateManager()
    scans = ScanRepository()

    criteria = parse_criteria(rule["criteria"], rule["media_type"])
    aggregation = MediaAggregator(collaborators).build(rule["media_type"])
    matches, skipped, protected = match_items(aggregation.items, criteria, now)

    with scans.batch():
        outcome = manager.apply_matches(scan, rule, matches)
        scans.complete_scan(
            scan["id"],
            items_scanned=len(aggregation.items),
            items_flagged=len(matches),
            items_skipped=skipped,
            candidates_created=len(outcome["created"]),
        )
        RuleRepository().set_run_times(rule["id"], last_run_at=now.isoformat())

    return {
        "scan_id": scan["id"],
        "items_scanned": len(aggregation.items),
        "items_flagged": len(matches),
        "items_skipped": skipped,
        "items_protected": protected,
        "candidates_created": len(outcome["created"]),
        "candidate_ids": outcome["created"],
        "deletion_job_id": outcome["deletion_job_id"],
        "sources": aggregation.sources,
    }


def run_scan_job(payload: dict, job=None) -> dict:
    """Queue handler for scan jobs."""
    scan_id = payload["scan_id"]
    scans = ScanRepository()
    scan = scans.get_scan(scan_id)
    if scan is None:
        logger.warning("Scan %s no longer exists, dropping job", scan_id)
        return {"scan_id": scan_id, "skipped": "scan not found"}
    if not scans.mark_running(scan_id):
        logger.info("Scan %d already %s, nothing to do", scan_id, scan["status"])
        return {"scan_id": scan_id, "skipped": f"scan already {scan['status']}"}

    rule = RuleRepository().get_rule(payload.get("rule_id", scan["rule_id"]))
    if rule is None:
        scans.fail_scan(scan_id, "rule no longer exists")
        return {"scan_id": scan_id, "status": ScanStatus.FAILED.value}

    emit_event("scan_started", {
        "scan_id": scan_id,
        "rule_id": rule["id"],
        "rule_name": rule["name"],
        "manual_trigger": bool(payload.get("manual_trigger")),
    })
    started = time.monotonic()

    try:
        summary = execute_scan(scan, rule)
    except PrunarrError as exc:
        db.session.rollback()
        logger.error("Scan %d for rule '%s' failed: %s", scan_id, rule["name"], exc)
        scans.fail_scan(scan_id, str(exc))
        emit_event("scan_failed", {"scan_id": scan_id, "rule_id": rule["id"],
                                   "rule_name": rule["name"], "error": str(exc)})
        return {"scan_id": scan_id, "status": ScanStatus.FAILED.value, "error": str(exc)}

    duration_ms = int((time.monotonic() - started) * 1000)
    logger.info("Scan %d for rule '%s': %d scanned, %d flagged, %d skipped, %d new (%dms)",
                scan_id, rule["name"], summary["items_scanned"], summary["items_flagged"],
                summary["items_skipped"], summary["candidates_created"], duration_ms)

    emit_event("scan_complete", {
        "scan_id": scan_id,
        "rule_id": rule["id"],
        "rule_name": rule["name"],
        "items_scanned": summary["items_scanned"],
        "items_flagged": summary["items_flagged"],
        "items_skipped": summary["items_skipped"],
        "candidates_created": summary["candidates_created"],
        "duration_ms": duration_ms,
    })
    if summary["candidate_ids"]:
        emit_event("candidates_flagged", {
            "scan_id": scan_id,
            "rule_id": rule["id"],
            "action_type": rule["action_type"],
            "count": len(summary["candidate_ids"]),
            "candidate_ids": summary["candidate_ids"],
        })

    summary["status"] = ScanStatus.COMPLETED.value
    summary["duration_ms"] = duration_ms
    return summary


def handle_scan_failure(payload: dict, job, exc: Exception) -> None:
    """Called by the queue once a scan job has used up its attempts."""
    scans = ScanRepository()
    scan = scans.get_scan(payload["scan_id"])
    if scan is None or scan["status"] not in (ScanStatus.PENDING.value, ScanStatus.RUNNING.value):
        return
    scans.fail_scan(scan["id"], job.error or str(exc))
    emit_event("scan_failed", {"scan_id": scan["id"], "rule_id": scan["rule_id"],
                               "error": job.error or str(exc)})


def handle_scan_cancelled(payload: dict, job) -> None:
    """A queued scan job was cancelled: close its PENDING scan so the rule can run again."""
    scans = ScanRepository()
    scan = scans.get_scan(payload["scan_id"])
    if scan is None or scan["status"] != ScanStatus.PENDING.value:
        return
    scans.fail_scan(scan["id"], "cancelled before start")
    logger.info("Scan %s cancelled before it started", scan["id"])
