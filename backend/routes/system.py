"""System routes: /health, /health/detailed, /config, /logs, /events, /openapi.json."""

import logging
import os

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import text

from version import __version__

bp = Blueprint("system", __name__, url_prefix="/api/v1")
logger = logging.getLogger(__name__)


def _service_status(client) -> str:
    if client is None:
        return "not configured"
    check = getattr(client, "health_check", None)
    if check is None:
        return "configured"
    try:
        healthy, message = check()
    except Exception as e:
        logger.warning("Health check for %s raised: %s", type(client).__name__, e)
        return "error"
    return message if healthy else f"unhealthy: {message}"


@bp.route("/health", methods=["GET"])
def health():
    """Health check endpoint (no auth required).
    ---
    get:
      tags:
        - System
      summary: Basic health check
      description: Returns overall health status, version, and connectivity of each configured service. The library server and database must be reachable for the system to count as healthy.
      responses:
        200:
          description: System is healthy
          content:
            application/json:
              schema:
                type: object
                properties:
                  status:
                    type: string
                    enum: [healthy, unhealthy]
                  version:
                    type: string
                  services:
                    type: object
                    additionalProperties:
                      type: string
        503:
          description: System is unhealthy
    """
    from extensions import db
    from maintenance.collaborators import get_collaborators

    service_status = {}
    healthy = True

    try:
        db.session.execute(text("SELECT 1"))
        service_status["database"] = "ok"
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        service_status["database"] = f"unhealthy: {e}"
        healthy = False

    collaborators = get_collaborators()
    for key, client in [
        ("library", collaborators.library),
        ("watch_history", collaborators.watch_history),
        ("requests", collaborators.requests),
        ("radarr", collaborators.movies),
        ("sonarr", collaborators.series),
    ]:
        service_status[key] = _service_status(client)

    library = service_status["library"]
    if library == "not configured" or library == "error" or library.startswith("unhealthy"):
        healthy = False

    status_code = 200 if healthy else 503
    return jsonify({
        "status": "healthy" if healthy else "unhealthy",
        "version": __version__,
        "services": service_status,
    }), status_code


@bp.route("/health/detailed", methods=["GET"])
def health_detailed():
    """Detailed health check with queue and scheduler state (authenticated).
    ---
    get:
      tags:
        - System
      summary: Detailed health check
      security:
        - apiKeyAuth: []
      responses:
        200:
          description: Subsystem status
    """
    from maintenance.scheduler import get_scan_scheduler

    queue = current_app.job_queue
    scheduler = get_scan_scheduler()
    return jsonify({
        "version": __version__,
        "queue": {
            **queue.get_backend_info(),
            "length": queue.get_queue_length(),
            "active": [job.to_dict() for job in queue.get_active_jobs()],
        },
        "scheduler": {
            "running": scheduler.running,
            "schedules": scheduler.get_active_schedules(),
        },
    })


@bp.route("/config", methods=["GET"])
def get_config():
    """Get current configuration (without secrets).
    ---
    get:
      tags:
        - Config
      summary: Get configuration
      description: Returns the current application configuration with API keys and tokens masked.
      security:
        - apiKeyAuth: []
      responses:
        200:
          description: Configuration object
    """
    from config import get_settings

    return jsonify(get_settings().get_safe_config())


@bp.route("/config", methods=["PUT"])
def update_config():
    """Apply configuration overrides and reconnect the external services.
    ---
    put:
      tags:
        - Config
      summary: Update configuration
      description: >
        Reloads settings with the given overrides and invalidates the cached
        Plex, Tautulli, Overseerr, Radarr and Sonarr clients. Masked values
        ('***configured***') are skipped.
      security:
        - apiKeyAuth: []
      responses:
        200:
          description: Updated configuration
    """
    import overseerr_client
    import plex_client
    import radarr_client
    import sonarr_client
    import tautulli_client
    from config import get_settings, reload_settings
    from error_handler import InvalidRequestError
    from maintenance.collaborators import set_collaborators

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidRequestError("Request body must be a JSON object")

    current = get_settings().model_dump()
    overrides = {**current}
    for key, value in data.items():
        if value == "***configured***":
            continue
        overrides[key] = value

    settings = reload_settings(overrides)
    for module in (plex_client, tautulli_client, overseerr_client, radarr_client, sonarr_client):
        module.invalidate_client()
    set_collaborators(None)

    logger.info("Configuration updated: %s", ", ".join(sorted(data)) or "no changes")
    return jsonify(settings.get_safe_config())


@bp.route("/logs", methods=["GET"])
def get_logs():
    """Get recent log entries.
    ---
    get:
      tags:
        - System
      summary: Get recent logs
      security:
        - apiKeyAuth: []
      parameters:
        - in: query
          name: lines
          schema:
            type: integer
            default: 200
        - in: query
          name: level
          schema:
            type: string
            enum: [DEBUG, INFO, WARNING, ERROR, CRITICAL]
      responses:
        200:
          description: Log entries
    """
    from config import get_settings

    log_file = get_settings().log_file
    lines = request.args.get("lines", 200, type=int)
    level = request.args.get("level", "").upper()

    log_entries = []
    if os.path.exists(log_file):
        try:
            with open(log_file, "r", encoding="utf-8") as f:
                recent = f.readlines()[-lines:]
            for line in recent:
                if level and f"[{level}]" not in line:
                    continue
                log_entries.append(line.strip())
        except OSError as e:
            logger.warning("Failed to read log file: %s", e)

    return jsonify({"entries": log_entries, "total": len(log_entries)})


@bp.route("/openapi.json", methods=["GET"])
def openapi_spec():
    """Serve the OpenAPI 3.0.3 document as JSON."""
    from openapi import spec
    return jsonify(spec.to_dict())


@bp.route("/events", methods=["GET"])
def event_catalog():
    """List the events pushed over Socket.IO.
    ---
    get:
      tags:
        - System
      summary: Event catalog
      security:
        - apiKeyAuth: []
      responses:
        200:
          description: Event names with their payload keys
    """
    from events import list_events

    return jsonify(list_events())
