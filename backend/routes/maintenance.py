"""Maintenance API endpoints -- rules, scans, candidates, deletions, stats, marks.

Blueprint: /api/v1/maintenance

Errors are raised as PrunarrError subclasses and rendered by the global
error handlers, so handlers here only deal with the success path.
"""

import logging

from flask import Blueprint, jsonify, request

from error_handler import InvalidRequestError, NotFoundError

bp = Blueprint("maintenance", __name__, url_prefix="/api/v1/maintenance")
logger = logging.getLogger(__name__)

DEFAULT_REVIEWER = "admin"


# ---- Request helpers -----------------------------------------------------------


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    return data


def _int_arg(name: str, default: int = None) -> int | None:
    value = request.args.get(name)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except ValueError:
        raise InvalidRequestError(f"{name} must be an integer", context={name: value}) from None


def _bool_arg(name: str) -> bool | None:
    value = request.args.get(name)
    if value in (None, ""):
        return None
    if value.lower() in ("1", "true", "yes"):
        return True
    if value.lower() in ("0", "false", "no"):
        return False
    raise InvalidRequestError(f"{name} must be true or false", context={name: value})


def _id_list(data: dict, key: str = "candidate_ids") -> list[int]:
    ids = data.get(key)
    if not isinstance(ids, list) or not ids:
        raise InvalidRequestError(f"{key} must be a non-empty list of ids")
    try:
        return [int(i) for i in ids]
    except (TypeError, ValueError):
        raise InvalidRequestError(f"{key} must contain integer ids") from None


def _reviewer(data: dict) -> str:
    reviewer = data.get("reviewed_by") or data.get("requested_by") or DEFAULT_REVIEWER
    return str(reviewer)[:100]


# ---- Rules ---------------------------------------------------------------------


@bp.route("/rules", methods=["GET"])
def list_rules():
    """List maintenance rules with their latest scan.
    ---
    get:
      tags:
        - Maintenance
      summary: List rules
      description: Returns every rule with its lifetime scan count and most recent scan summary.
      responses:
        200:
          description: Rule list
          content:
            application/json:
              schema:
                type: object
                properties:
                  rules:
                    type: array
                    items:
                      type: object
    """
    from maintenance import rules

    return jsonify({"rules": rules.list_rules()})


@bp.route("/rules", methods=["POST"])
def create_rule():
    """Create a maintenance rule.
    ---
    post:
      tags:
        - Maintenance
      summary: Create rule
      description: Validates criteria against the field registry for the media type and the cron schedule, then registers the rule with the scheduler.
      requestBody:
        required: true
        content:
          application/json:
            schema:
              type: object
              required: [name, media_type, criteria]
              properties:
                name:
                  type: string
                description:
                  type: string
                media_type:
                  type: string
                  enum: [MOVIE, TV_SERIES, EPISODE]
                action_type:
                  type: string
                  enum: [FLAG_FOR_REVIEW, AUTO_DELETE]
                criteria:
                  type: object
                schedule:
                  type: string
                  description: 5-field cron expression
                enabled:
                  type: boolean
                delete_files:
                  type: boolean
      responses:
        201:
          description: Rule created
        400:
          description: Validation failed (context.errors lists each problem)
    """
    from maintenance import rules

    rule = rules.create_rule(_json_body())
    return jsonify(rule), 201


@bp.route("/rules/<int:rule_id>", methods=["GET"])
def get_rule(rule_id):
    """Get one rule.
    ---
    get:
      tags:
        - Maintenance
      summary: Get rule
      responses:
        200:
          description: Rule
        404:
          description: Rule not found
    """
    from maintenance import rules

    return jsonify(rules.get_rule(rule_id))


@bp.route("/rules/<int:rule_id>", methods=["PUT"])
def update_rule(rule_id):
    """Update a rule (partial payloads keep the other fields).
    ---
    put:
      tags:
        - Maintenance
      summary: Update rule
      responses:
        200:
          description: Updated rule
        400:
          description: Validation failed
        404:
          description: Rule not found
    """
    from maintenance import rules

    return jsonify(rules.update_rule(rule_id, _json_body()))


@bp.route("/rules/<int:rule_id>", methods=["DELETE"])
def delete_rule(rule_id):
    """Delete a rule together with its scans and candidates.
    ---
    delete:
      tags:
        - Maintenance
      summary: Delete rule
      responses:
        200:
          description: Rule deleted
        404:
          description: Rule not found
    """
    from maintenance import rules

    rules.delete_rule(rule_id)
    return jsonify({"status": "deleted", "rule_id": rule_id})


@bp.route("/rules/<int:rule_id>/toggle", methods=["POST"])
def toggle_rule(rule_id):
    """Enable or disable a rule.
    ---
    post:
      tags:
        - Maintenance
      summary: Toggle rule
      requestBody:
        content:
          application/json:
            schema:
              type: object
              properties:
                enabled:
                  type: boolean
      responses:
        200:
          description: Updated rule
    """
    from maintenance import rules

    data = _json_body()
    if "enabled" in data:
        enabled = data["enabled"]
    else:
        enabled = not rules.get_rule(rule_id)["enabled"]
    return jsonify(rules.toggle_rule(rule_id, enabled))


@bp.route("/rules/<int:rule_id>/preview", methods=["POST"])
def preview_rule(rule_id):
    """Dry-run a saved rule against the live library.
    ---
    post:
      tags:
        - Maintenance
      summary: Preview rule matches
      description: Aggregates and evaluates without creating a scan or candidates.
      responses:
        200:
          description: Matching titles with reasons
        502:
          description: Library server unavailable
    """
    from maintenance import rules

    limit = _int_arg("limit", rules.PREVIEW_LIMIT)
    return jsonify(rules.preview_rule(rule_id=rule_id, limit=limit))


@bp.route("/rules/preview", methods=["POST"])
def preview_draft():
    """Dry-run an unsaved rule payload."""
    from maintenance import rules

    limit = _int_arg("limit", rules.PREVIEW_LIMIT)
    return jsonify(rules.preview_rule(draft=_json_body(), limit=limit))


@bp.route("/rules/<int:rule_id>/scan", methods=["POST"])
def trigger_scan(rule_id):
    """Trigger a manual scan for a rule.
    ---
    post:
      tags:
        - Maintenance
      summary: Trigger scan
      description: Creates a PENDING scan and queues it ahead of scheduled scans.
      responses:
        202:
          description: Scan queued
        404:
          description: Rule not found
        409:
          description: Rule is disabled or a scan is already in progress
    """
    from maintenance.scheduler import trigger_scan as _trigger

    return jsonify(_trigger(rule_id, manual=True)), 202


@bp.route("/fields", methods=["GET"])
def list_fields():
    """Fields and operators available to rule criteria, optionally per media type."""
    from maintenance.fields import FIELDS, fields_for

    media_type = request.args.get("media_type")
    fields = fields_for(media_type) if media_type else list(FIELDS.values())
    return jsonify({"fields": [f.describe() for f in fields]})


@bp.route("/schedules", methods=["GET"])
def list_schedules():
    """Rules currently registered with the scheduler and their next run."""
    from maintenance.scheduler import get_scan_scheduler

    return jsonify({"schedules": get_scan_scheduler().get_active_schedules()})


# ---- Scans ---------------------------------------------------------------------


@bp.route("/scans", methods=["GET"])
def list_scans():
    """Scan history.
    ---
    get:
      tags:
        - Maintenance
      summary: List scans
      parameters:
        - in: query
          name: rule_id
          schema:
            type: integer
        - in: query
          name: status
          schema:
            type: string
            enum: [PENDING, RUNNING, COMPLETED, FAILED]
        - in: query
          name: start
          schema:
            type: string
            format: date-time
        - in: query
          name: end
          schema:
            type: string
            format: date-time
        - in: query
          name: page
          schema:
            type: integer
        - in: query
          name: per_page
          schema:
            type: integer
      responses:
        200:
          description: Paginated scans
    """
    from maintenance import stats

    return jsonify(stats.get_scan_history(
        rule_id=_int_arg("rule_id"),
        status=request.args.get("status"),
        start=request.args.get("start"),
        end=request.args.get("end"),
        page=_int_arg("page", 1),
        per_page=_int_arg("per_page", 50),
    ))


@bp.route("/scans/<int:scan_id>", methods=["GET"])
def get_scan(scan_id):
    from db.repositories.scans import ScanRepository

    scan = ScanRepository().get_scan(scan_id)
    if scan is None:
        raise NotFoundError(f"Scan {scan_id} not found", context={"scan_id": scan_id})
    return jsonify(scan)


# ---- Candidates ----------------------------------------------------------------


@bp.route("/candidates", methods=["GET"])
def list_candidates():
    """List candidates, newest first.
    ---
    get:
      tags:
        - Maintenance
      summary: List candidates
      parameters:
        - in: query
          name: review_status
          schema:
            type: string
            enum: [PENDING, APPROVED, REJECTED, PARTIALLY_DELETED, DELETED]
        - in: query
          name: media_type
          schema:
            type: string
        - in: query
          name: scan_id
          schema:
            type: integer
        - in: query
          name: rule_id
          schema:
            type: integer
        - in: query
          name: page
          schema:
            type: integer
        - in: query
          name: per_page
          schema:
            type: integer
            maximum: 100
      responses:
        200:
          description: Paginated candidates
    """
    from maintenance.candidates import CandidateManager

    return jsonify(CandidateManager().list_candidates(
        review_status=request.args.get("review_status"),
        media_type=request.args.get("media_type"),
        scan_id=_int_arg("scan_id"),
        rule_id=_int_arg("rule_id"),
        page=_int_arg("page", 1),
        per_page=_int_arg("per_page", 25),
    ))


@bp.route("/candidates/<int:candidate_id>", methods=["GET"])
def get_candidate(candidate_id):
    """One candidate with its deletion attempts."""
    from maintenance.candidates import CandidateManager

    return jsonify(CandidateManager().get_candidate(candidate_id))


@bp.route("/candidates/<int:candidate_id>/approve", methods=["POST"])
def approve_candidate(candidate_id):
    """Approve a pending candidate and queue its deletion.
    ---
    post:
      tags:
        - Maintenance
      summary: Approve candidate
      requestBody:
        content:
          application/json:
            schema:
              type: object
              properties:
                reviewed_by:
                  type: string
                note:
                  type: string
                delete_files:
                  type: boolean
                  default: true
      responses:
        200:
          description: Approved candidate with deletion_job_id
        409:
          description: Candidate already reviewed
    """
    from maintenance.candidates import CandidateManager

    data = _json_body()
    return jsonify(CandidateManager().approve(
        candidate_id,
        reviewer=_reviewer(data),
        note=data.get("note"),
        delete_files=bool(data.get("delete_files", True)),
    ))


@bp.route("/candidates/<int:candidate_id>/reject", methods=["POST"])
def reject_candidate(candidate_id):
    """Reject a pending candidate.
    ---
    post:
      tags:
        - Maintenance
      summary: Reject candidate
      responses:
        200:
          description: Rejected candidate
        409:
          description: Candidate already reviewed
    """
    from maintenance.candidates import CandidateManager

    data = _json_body()
    return jsonify(CandidateManager().reject(
        candidate_id, reviewer=_reviewer(data), note=data.get("note"),
    ))


@bp.route("/candidates/bulk", methods=["POST"])
def bulk_review():
    """Approve or reject many candidates; each id succeeds or fails on its own.
    ---
    post:
      tags:
        - Maintenance
      summary: Bulk review
      requestBody:
        required: true
        content:
          application/json:
            schema:
              type: object
              required: [candidate_ids, status]
              properties:
                candidate_ids:
                  type: array
                  items:
                    type: integer
                status:
                  type: string
                  enum: [APPROVED, REJECTED]
                note:
                  type: string
      responses:
        200:
          description: Per-item results
    """
    from maintenance.candidates import CandidateManager

    data = _json_body()
    return jsonify(CandidateManager().bulk_review(
        _id_list(data),
        status=str(data.get("status", "")).upper(),
        reviewer=_reviewer(data),
        note=data.get("note"),
        delete_files=bool(data.get("delete_files", True)),
    ))


@bp.route("/candidates/<int:candidate_id>/note", methods=["PUT"])
def update_note(candidate_id):
    """Replace a candidate's review note."""
    from maintenance.candidates import CandidateManager

    note = _json_body().get("note")
    if note is not None and not isinstance(note, str):
        raise InvalidRequestError("note must be a string")
    return jsonify(CandidateManager().update_note(candidate_id, note))


# ---- Deletions -----------------------------------------------------------------


@bp.route("/deletions", methods=["POST"])
def trigger_deletion():
    """Queue deletion of approved candidates.
    ---
    post:
      tags:
        - Maintenance
      summary: Trigger deletion
      requestBody:
        required: true
        content:
          application/json:
            schema:
              type: object
              required: [candidate_ids]
              properties:
                candidate_ids:
                  type: array
                  items:
                    type: integer
                delete_files:
                  type: boolean
                requested_by:
                  type: string
      responses:
        202:
          description: Deletion job queued
        404:
          description: Unknown candidate ids
        409:
          description: Some candidates are not approved
    """
    from maintenance.deleter import trigger_deletion as _trigger

    data = _json_body()
    result = _trigger(
        _id_list(data),
        delete_files=bool(data.get("delete_files", True)),
        requested_by=_reviewer(data),
    )
    return jsonify(result), 202


@bp.route("/deletions/history", methods=["GET"])
def deletion_history():
    """Deletion log, newest first, filterable by media type, user, outcome and date."""
    from maintenance import stats

    return jsonify(stats.get_deletion_history(
        media_type=request.args.get("media_type"),
        deleted_by=request.args.get("deleted_by"),
        files_deleted=_bool_arg("files_deleted"),
        start=request.args.get("start"),
        end=request.args.get("end"),
        page=_int_arg("page", 1),
        per_page=_int_arg("per_page", 50),
    ))


@bp.route("/deletions/stats", methods=["GET"])
def deletion_stats():
    """Deletion totals and breakdowns.
    ---
    get:
      tags:
        - Maintenance
      summary: Deletion statistics
      responses:
        200:
          description: Totals, bytes reclaimed, per media type and per user
    """
    from maintenance import stats

    return jsonify(stats.get_deletion_stats(
        start=request.args.get("start"), end=request.args.get("end"),
    ))


# ---- Overview and jobs ---------------------------------------------------------


@bp.route("/overview", methods=["GET"])
def overview():
    from maintenance import stats

    return jsonify(stats.get_overview())


@bp.route("/jobs/failed", methods=["GET"])
def failed_jobs():
    """Queue jobs that gave up after their last retry."""
    from maintenance import stats

    return jsonify({"jobs": stats.get_failed_jobs(limit=_int_arg("limit", 50))})


@bp.route("/jobs/<job_id>", methods=["GET"])
def get_job(job_id):
    from flask import current_app

    job = current_app.job_queue.get_job(job_id)
    if job is None:
        raise NotFoundError(f"Job {job_id} not found", context={"job_id": job_id})
    return jsonify(job.to_dict())


@bp.route("/jobs/<job_id>", methods=["DELETE"])
def cancel_job(job_id):
    """Cancel a job that no worker has picked up yet.
    ---
    delete:
      tags:
        - Maintenance
      summary: Cancel queued job
      responses:
        200:
          description: Job cancelled
        409:
          description: Job is already running or finished
    """
    from flask import current_app

    from error_handler import ConflictError

    queue = current_app.job_queue
    if queue.get_job(job_id) is None:
        raise NotFoundError(f"Job {job_id} not found", context={"job_id": job_id})
    if not queue.cancel_job(job_id):
        raise ConflictError("Only queued jobs can be cancelled", context={"job_id": job_id})
    return jsonify({"status": "cancelled", "job_id": job_id})


# ---- Feedback marks ------------------------------------------------------------


@bp.route("/marks", methods=["POST"])
def add_mark():
    """Record a user's mark on a title (idempotent per user, title and mark).
    ---
    post:
      tags:
        - Maintenance
      summary: Add feedback mark
      requestBody:
        required: true
        content:
          application/json:
            schema:
              type: object
              required: [user_id, media_type, title_key, mark_type]
              properties:
                user_id:
                  type: string
                media_type:
                  type: string
                title_key:
                  type: string
                mark_type:
                  type: string
                  enum: [FINISHED_WATCHING, NOT_INTERESTED, KEEP_FOREVER, REWATCH_CANDIDATE, POOR_QUALITY, WRONG_VERSION]
                title:
                  type: string
                note:
                  type: string
      responses:
        201:
          description: Mark stored
    """
    from db.models.maintenance import MarkType, MediaType
    from db.repositories.feedback import FeedbackRepository

    data = _json_body()
    missing = [k for k in ("user_id", "media_type", "title_key", "mark_type") if not data.get(k)]
    if missing:
        raise InvalidRequestError(f"Missing required fields: {', '.join(missing)}")
    if data["media_type"] not in {m.value for m in MediaType}:
        raise InvalidRequestError(f"Unknown media type '{data['media_type']}'")
    if data["mark_type"] not in {m.value for m in MarkType}:
        raise InvalidRequestError(f"Unknown mark type '{data['mark_type']}'")

    mark = FeedbackRepository().add_mark(
        user_id=str(data["user_id"]),
        media_type=data["media_type"],
        title_key=str(data["title_key"]),
        mark_type=data["mark_type"],
        title=data.get("title"),
        note=data.get("note"),
        marked_via=data.get("marked_via") or "api",
    )
    return jsonify(mark), 201


@bp.route("/marks", methods=["GET"])
def list_marks():
    """Marks filtered by title, user or media type."""
    from db.repositories.feedback import FeedbackRepository

    return jsonify({"marks": FeedbackRepository().get_marks(
        title_key=request.args.get("title_key"),
        user_id=request.args.get("user_id"),
        media_type=request.args.get("media_type"),
    )})


@bp.route("/marks", methods=["DELETE"])
def remove_mark():
    from db.repositories.feedback import FeedbackRepository

    data = _json_body()
    missing = [k for k in ("user_id", "title_key", "mark_type") if not data.get(k)]
    if missing:
        raise InvalidRequestError(f"Missing required fields: {', '.join(missing)}")
    if not FeedbackRepository().remove_mark(str(data["user_id"]), str(data["title_key"]),
                                            data["mark_type"]):
        raise NotFoundError("Mark not found")
    return jsonify({"status": "deleted"})


@bp.route("/marks/summary", methods=["GET"])
def feedback_summary():
    """Per-title feedback summary with deletion score and recommendation.
    ---
    get:
      tags:
        - Maintenance
      summary: Feedback summary
      parameters:
        - in: query
          name: media_type
          schema:
            type: string
        - in: query
          name: mark_type
          schema:
            type: string
        - in: query
          name: min_users
          schema:
            type: integer
        - in: query
          name: sort_by
          schema:
            type: string
            enum: [score, users, title, last_marked]
        - in: query
          name: order
          schema:
            type: string
            enum: [asc, desc]
      responses:
        200:
          description: Marked titles
    """
    from maintenance.feedback import get_feedback_summary

    order = request.args.get("order", "desc").lower()
    if order not in ("asc", "desc"):
        raise InvalidRequestError("order must be asc or desc", context={"order": order})
    titles = get_feedback_summary(
        media_type=request.args.get("media_type"),
        mark_type=request.args.get("mark_type"),
        min_users=_int_arg("min_users", 0),
        sort_by=request.args.get("sort_by", "score"),
        descending=order == "desc",
    )
    return jsonify({"titles": titles, "total": len(titles)})


@bp.route("/marks/<title_key>/queue", methods=["POST"])
def queue_marked_title(title_key):
    """Queue a marked title for review as a PENDING candidate.
    ---
    post:
      tags:
        - Maintenance
      summary: Queue title from feedback
      requestBody:
        content:
          application/json:
            schema:
              type: object
              properties:
                note:
                  type: string
                requested_by:
                  type: string
      responses:
        201:
          description: Candidate created
        404:
          description: Title has no marks
        409:
          description: Title is kept forever or already queued
    """
    from maintenance.candidates import CandidateManager

    data = _json_body()
    note = data.get("note")
    if note is not None and not isinstance(note, str):
        raise InvalidRequestError("note must be a string")
    candidate = CandidateManager().queue_from_feedback(title_key, _reviewer(data), note)
    return jsonify(candidate), 201
