"""Prunarr exception hierarchy and the Flask handlers that render it.

Every PrunarrError carries a stable code, the HTTP status it maps to, an
optional context dict and a troubleshooting hint. Route code raises them;
register_error_handlers() turns them into JSON bodies of the form
{error, code, timestamp, request_id, context, troubleshooting}.
"""

import uuid
import logging
from datetime import datetime, timezone
from typing import Optional

from flask import jsonify, g

logger = logging.getLogger(__name__)


# ---- Exceptions --------------------------------------------------------------


class PrunarrError(Exception):
    """Base exception for all Prunarr application errors.

    Attributes:
        code: Machine-readable error code (e.g. "SCAN_001")
        http_status: HTTP status code to return
        context: Additional context data for debugging
        troubleshooting: Human-readable hint for resolving the issue
    """

    code: str = "PRUNARR_000"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        http_status: Optional[int] = None,
        context: Optional[dict] = None,
        troubleshooting: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.context = context or {}
        self.troubleshooting = troubleshooting


class ConfigurationError(PrunarrError):
    """Configuration validation errors."""

    code = "CFG_001"
    http_status = 400


class RuleValidationError(ConfigurationError):
    """A rule failed validation at save time (criteria, schedule, enums)."""

    code = "CFG_002"
    http_status = 400

    def __init__(self, message: str, errors: Optional[list] = None, **kwargs: object) -> None:
        context = {"errors": errors} if errors else None
        super().__init__(
            message,
            context=context,
            troubleshooting="Fix the listed fields and save the rule again.",
            **kwargs,  # type: ignore[arg-type]
        )
        self.errors = errors or []


class InvalidRequestError(PrunarrError):
    """Malformed request payload or query parameters."""

    code = "REQ_001"
    http_status = 400


class NotFoundError(PrunarrError):
    """Referenced rule, scan, candidate or job does not exist."""

    code = "NF_001"
    http_status = 404


class ConflictError(PrunarrError):
    """Operation conflicts with the current state of a record."""

    code = "CONFLICT_001"
    http_status = 409


class ScanInProgressError(ConflictError):
    """A scan for the rule is already PENDING or RUNNING."""

    code = "SCAN_001"

    def __init__(self, message: str = "scan already in progress", **kwargs: object) -> None:
        super().__init__(
            message,
            troubleshooting="Wait for the current scan to finish before triggering another one.",
            **kwargs,  # type: ignore[arg-type]
        )


class RuleDisabledError(ConflictError):
    """Scan requested for a disabled rule."""

    code = "SCAN_002"

    def __init__(self, message: str = "rule is disabled", **kwargs: object) -> None:
        super().__init__(
            message,
            troubleshooting="Enable the rule before triggering a scan.",
            **kwargs,  # type: ignore[arg-type]
        )


class CandidateAlreadyReviewedError(ConflictError):
    """Candidate left PENDING before this review could be applied."""

    code = "CAND_001"

    def __init__(self, message: str = "candidate already reviewed", **kwargs: object) -> None:
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class InvalidTransitionError(ConflictError):
    """Requested status change is not allowed from the current status."""

    code = "CAND_002"


class CollaboratorError(PrunarrError):
    """An external service (Plex, Tautulli, Overseerr, *arr) failed."""

    code = "EXT_001"
    http_status = 502

    def __init__(self, service: str, message: str, **kwargs: object) -> None:
        super().__init__(
            f"{service}: {message}",
            troubleshooting=f"Check that {service} is reachable and the credentials in Settings are correct.",
            **kwargs,  # type: ignore[arg-type]
        )
        self.service = service


class EvaluationError(PrunarrError):
    """Unexpected failure while evaluating one title against a rule."""

    code = "EVAL_001"
    http_status = 500


class DeletionRetryError(PrunarrError):
    """One or more deletions in a job failed and should be retried."""

    code = "DEL_001"
    http_status = 502

    def __init__(self, message: str, failures: Optional[dict] = None, **kwargs: object) -> None:
        super().__init__(message, context={"failures": failures or {}}, **kwargs)  # type: ignore[arg-type]
        self.failures = failures or {}


# ---- JSON rendering ------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def error_body(error: PrunarrError) -> dict:
    """JSON body for a PrunarrError; empty optional parts are left out."""
    body: dict = {"error": str(error), "code": error.code, "timestamp": _now_iso()}
    optional = {
        "request_id": getattr(g, "request_id", None),
        "context": error.context,
        "troubleshooting": error.troubleshooting,
    }
    body.update({key: value for key, value in optional.items() if value})
    return body


def register_error_handlers(app) -> None:
    """Install the request-id hook and the PrunarrError / catch-all handlers."""
    from werkzeug.exceptions import HTTPException

    @app.before_request
    def _assign_request_id() -> None:
        g.request_id = uuid.uuid4().hex[:8]

    @app.errorhandler(PrunarrError)
    def _render_prunarr_error(error: PrunarrError):
        logger.warning("%s %s: %s (request %s)", error.code, type(error).__name__,
                       error, getattr(g, "request_id", "-"))
        return jsonify(error_body(error)), error.http_status

    @app.errorhandler(Exception)
    def _render_unexpected(error: Exception):
        # werkzeug errors (404 for unknown URLs, 405, ...) keep their own rendering
        if isinstance(error, HTTPException):
            return error
        request_id = getattr(g, "request_id", "-")
        logger.exception("Unhandled error in request %s: %s", request_id, error)
        return jsonify({
            "error": "Internal server error",
            "code": "INTERNAL_ERROR",
            "request_id": request_id,
            "timestamp": _now_iso(),
        }), 500
