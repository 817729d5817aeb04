"""Radarr v3 API client: the download manager for movies.

Lists movies with their on-disk state for rule evaluation and deletes a
movie together with its files when a candidate is executed.
"""

import logging

from config import get_settings
from maintenance.collaborators import DownloadManager
from maintenance.media import DownloadInfo
from service_client import ServiceClient, parse_timestamp

logger = logging.getLogger(__name__)

_client = None


def get_radarr_client():
    """Get or create the Radarr client. Returns None if not configured."""
    global _client
    if _client is not None:
        return _client

    settings = get_settings()
    if not settings.radarr_url or not settings.radarr_api_key:
        logger.debug("Radarr not configured (radarr_url or radarr_api_key missing)")
        return None
    _client = RadarrClient(settings.radarr_url, settings.radarr_api_key)
    return _client


def invalidate_client():
    """Reset the client so the next call picks up changed settings."""
    global _client
    _client = None


class RadarrClient(ServiceClient, DownloadManager):
    """Radarr v3 REST API Client."""

    service_name = "Radarr"
    name = "Radarr"
    api_prefix = "/api/v3"

    def __init__(self, url, api_key):
        super().__init__(url, api_key)
        self.session.headers["X-Api-Key"] = api_key

    def _health_probe(self):
        self._get("/system/status")

    def get_tags(self):
        """Returns {tag_id: label}."""
        return {t["id"]: t["label"] for t in self._get("/tag") or []}

    def get_items(self):
        tags = self.get_tags()
        items = []
        for movie in self._get("/movie") or []:
            items.append(DownloadInfo(
                arr_id=movie["id"],
                source=self.name,
                title=movie.get("title"),
                year=movie.get("year") or None,
                monitored=movie.get("monitored"),
                has_file=movie.get("hasFile"),
                size_on_disk=movie.get("sizeOnDisk"),
                quality_profile_id=movie.get("qualityProfileId"),
                status=movie.get("status"),
                tags=[tags.get(t, str(t)) for t in movie.get("tags", [])],
                path=movie.get("path"),
                added_at=parse_timestamp(movie.get("added")),
                tmdb_id=movie.get("tmdbId") or None,
            ))
        logger.debug("Radarr returned %d movies", len(items))
        return items

    def delete_files(self, arr_id):
        """Delete a movie and its files. A movie Radarr no longer knows is treated as deleted."""
        self._request(
            "DELETE",
            f"/movie/{arr_id}",
            params={"deleteFiles": "true", "addImportExclusion": "false"},
            allow_404=True,
        )
        logger.info("Radarr: deleted movie %s with files", arr_id)
