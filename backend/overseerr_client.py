"""Overseerr API client: which titles users have requested.

Pages through /api/v1/request and folds the requests into one
RequestInfo per catalog id ("tmdb:<id>" for movies, "tvdb:<id>" for series
with a TMDB fallback). Declined requests do not count as requested.
"""

import logging

from config import get_settings
from db.models.maintenance import MediaType
from maintenance.aggregator import catalog_key
from maintenance.collaborators import RequestTracker
from maintenance.media import RequestInfo
from service_client import ServiceClient, parse_timestamp

logger = logging.getLogger(__name__)

PAGE_SIZE = 100

REQUEST_STATUS = {1: "pending", 2: "approved", 3: "declined", 4: "failed", 5: "completed"}
DECLINED = 3

_client = None


def get_overseerr_client():
    """Get or create the Overseerr client. Returns None if not configured."""
    global _client
    if _client is not None:
        return _client

    settings = get_settings()
    if not settings.overseerr_url or not settings.overseerr_api_key:
        logger.debug("Overseerr not configured (overseerr_url or overseerr_api_key missing)")
        return None
    _client = OverseerrClient(settings.overseerr_url, settings.overseerr_api_key)
    return _client


def invalidate_client():
    global _client
    _client = None


class OverseerrClient(ServiceClient, RequestTracker):
    """Overseerr v1 API client."""

    service_name = "Overseerr"
    api_prefix = "/api/v1"

    def __init__(self, url, api_key):
        super().__init__(url, api_key)
        self.session.headers["X-Api-Key"] = api_key

    def _health_probe(self):
        self._get("/status")

    def iter_requests(self):
        skip = 0
        while True:
            body = self._get("/request", params={"take": PAGE_SIZE, "skip": skip,
                                                 "filter": "all", "sort": "added"}) or {}
            results = body.get("results") or []
            yield from results
            skip += len(results)
            total = (body.get("pageInfo") or {}).get("results", 0)
            if not results or skip >= total:
                break

    def get_request_status(self, media_type):
        wanted = "movie" if media_type == MediaType.MOVIE.value else "tv"
        statuses: dict[str, RequestInfo] = {}
        for request in self.iter_requests():
            media = request.get("media") or {}
            if media.get("mediaType") != wanted or request.get("status") == DECLINED:
                continue
            key = catalog_key(media_type, media.get("tmdbId"), media.get("tvdbId"))
            if key is None:
                continue

            info = statuses.setdefault(key, RequestInfo(is_requested=True))
            info.request_count += 1
            user = (request.get("requestedBy") or {}).get("displayName")
            if user and user not in info.requested_by:
                info.requested_by.append(user)
            created = parse_timestamp(request.get("createdAt"))
            if created and (info.last_requested_at is None or created > info.last_requested_at):
                info.last_requested_at = created
                info.status = REQUEST_STATUS.get(request.get("status"), "unknown")

        logger.debug("Overseerr returned %d requested %s title(s)", len(statuses), wanted)
        return statuses
