"""OpenAPI document for the Prunarr API.

Views opt in by putting a YAML block after a ``---`` line in their
docstring. register_all_paths() walks the Prunarr blueprints once they are
registered; the Swagger UI blueprint and other helpers stay undocumented.
Shared schemas below mirror error_handler.error_body() and the page
envelope returned by the paginated listings.
"""

import logging

import yaml
from apispec import APISpec
from apispec.exceptions import APISpecError
from apispec_webframeworks.flask import FlaskPlugin

from version import __version__

logger = logging.getLogger(__name__)

DOCUMENTED_BLUEPRINTS = ("maintenance", "system")

API_TAGS = [
    {"name": "Maintenance",
     "description": "Rules, scans, review candidates, deletions and feedback marks"},
    {"name": "System", "description": "Health, configuration, logs and event catalog"},
]

spec = APISpec(
    title="Prunarr API",
    version=__version__,
    openapi_version="3.0.3",
    info={"description": "Rule-driven cleanup of Plex libraries backed by Radarr and Sonarr"},
    plugins=[FlaskPlugin()],
    tags=API_TAGS,
    security=[{"apiKeyAuth": []}, {"apiKeyQuery": []}],
)

spec.components.security_scheme("apiKeyAuth", {
    "type": "apiKey",
    "in": "header",
    "name": "X-Api-Key",
    "description": "Required when PRUNARR_API_KEY is set",
})
spec.components.security_scheme("apiKeyQuery", {
    "type": "apiKey",
    "in": "query",
    "name": "apikey",
})

spec.components.schema("Error", {
    "type": "object",
    "required": ["error", "code", "timestamp"],
    "properties": {
        "error": {"type": "string", "example": "scan already in progress"},
        "code": {"type": "string", "example": "SCAN_001"},
        "timestamp": {"type": "string", "format": "date-time"},
        "request_id": {"type": "string"},
        "context": {"type": "object"},
        "troubleshooting": {"type": "string"},
    },
})
spec.components.schema("Page", {
    "type": "object",
    "properties": {
        "items": {"type": "array", "items": {"type": "object"}},
        "total": {"type": "integer"},
        "page": {"type": "integer"},
        "per_page": {"type": "integer"},
        "total_pages": {"type": "integer"},
    },
})


def _is_documented(endpoint: str, view_func) -> bool:
    if endpoint.split(".", 1)[0] not in DOCUMENTED_BLUEPRINTS:
        return False
    return "---" in (getattr(view_func, "__doc__", None) or "")


def register_all_paths(app) -> int:
    """Add every documented Prunarr view to the OpenAPI document; returns the count."""
    registered = 0
    with app.test_request_context():
        for endpoint, view_func in app.view_functions.items():
            if not _is_documented(endpoint, view_func):
                continue
            try:
                spec.path(view=view_func)
            except (APISpecError, yaml.YAMLError) as exc:
                logger.warning("OpenAPI block of %s is invalid: %s", endpoint, exc)
                continue
            registered += 1

    logger.info("OpenAPI: %d documented endpoint(s)", registered)
    return registered
