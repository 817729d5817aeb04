"""Optional API key authentication for the Prunarr API.

If PRUNARR_API_KEY is set, every /api/ request must carry the key either
as an X-Api-Key header or as an ?apikey= query parameter. The health
endpoint stays open so container probes keep working.
"""

import hmac
import logging

from flask import request, jsonify

from config import get_settings

logger = logging.getLogger(__name__)

_OPEN_PATHS = frozenset({"/api/v1/health"})


def _provided_key():
    return request.headers.get("X-Api-Key") or request.args.get("apikey")


def init_auth(app):
    """Install a before_request hook enforcing the API key on /api/ routes.

    The key is read on each request, so reload_settings() takes effect
    without re-creating the app.
    """
    logger.info("API key authentication hook registered (active when PRUNARR_API_KEY is set)")

    @app.before_request
    def check_api_key():
        expected = get_settings().api_key
        if not expected:
            return None

        path = request.path
        if not path.startswith("/api/") or path in _OPEN_PATHS:
            return None

        provided = _provided_key()
        if not provided:
            logger.warning("API request without key from %s", request.remote_addr)
            return jsonify({"error": "API key required"}), 401

        if not hmac.compare_digest(provided, expected):
            logger.warning("Invalid API key from %s", request.remote_addr)
            return jsonify({"error": "Invalid API key"}), 401

        return None
