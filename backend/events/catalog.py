"""Event catalog: discoverable registry of all Prunarr internal events.

Defines blinker signals in a Namespace and an EVENT_CATALOG dict mapping
event names to metadata (label, description, payload keys). This is the
single source of truth for what events exist in the system.

Payload keys omit secrets and absolute filesystem paths.
"""

from blinker import Namespace

prunarr_signals = Namespace()

# Bumped whenever a payload shape changes
CATALOG_VERSION = 1

# ---- Signal definitions --------------------------------------------------------

scan_started = prunarr_signals.signal("scan_started")
scan_complete = prunarr_signals.signal("scan_complete")
scan_failed = prunarr_signals.signal("scan_failed")
candidates_flagged = prunarr_signals.signal("candidates_flagged")
candidate_reviewed = prunarr_signals.signal("candidate_reviewed")
deletion_complete = prunarr_signals.signal("deletion_complete")
deletion_failed = prunarr_signals.signal("deletion_failed")

# ---- Catalog dict (machine-readable metadata) ----------------------------------

EVENT_CATALOG: dict[str, dict] = {
    "scan_started": {
        "signal": scan_started,
        "label": "Scan Started",
        "description": "A queue worker picked up a scan job and began evaluating the library.",
        "payload_keys": ["scan_id", "rule_id", "rule_name", "manual_trigger"],
    },
    "scan_complete": {
        "signal": scan_complete,
        "label": "Scan Complete",
        "description": "A rule scan finished and its candidates were recorded.",
        "payload_keys": [
            "scan_id",
            "rule_id",
            "rule_name",
            "items_scanned",
            "items_flagged",
            "items_skipped",
            "candidates_created",
            "duration_ms",
        ],
    },
    "scan_failed": {
        "signal": scan_failed,
        "label": "Scan Failed",
        "description": "A rule scan failed; no candidates were created for it.",
        "payload_keys": ["scan_id", "rule_id", "rule_name", "error"],
    },
    "candidates_flagged": {
        "signal": candidates_flagged,
        "label": "Candidates Flagged",
        "description": "A scan produced new candidates for review or automatic deletion.",
        "payload_keys": ["scan_id", "rule_id", "action_type", "count", "candidate_ids"],
    },
    "candidate_reviewed": {
        "signal": candidate_reviewed,
        "label": "Candidate Reviewed",
        "description": "A reviewer approved or rejected a pending candidate.",
        "payload_keys": ["candidate_id", "review_status", "reviewed_by"],
    },
    "deletion_complete": {
        "signal": deletion_complete,
        "label": "Deletion Complete",
        "description": "A deletion job finished processing all of its candidates.",
        "payload_keys": ["job_id", "deleted", "partially_deleted", "skipped", "bytes_reclaimed"],
    },
    "deletion_failed": {
        "signal": deletion_failed,
        "label": "Deletion Failed",
        "description": "A deletion job exhausted its retries; candidates were left for manual follow-up.",
        "payload_keys": ["job_id", "candidate_ids", "attempts", "error"],
    },
}
