"""Sonarr v3 API client: the download manager for series.

Series statistics (episode file count, size on disk) feed rule
evaluation; deletion removes the series and its files.
"""

import logging

from config import get_settings
from maintenance.collaborators import DownloadManager
from maintenance.media import DownloadInfo
from service_client import ServiceClient, parse_timestamp

logger = logging.getLogger(__name__)

_client = None


def get_sonarr_client():
    """Get or create the Sonarr client. Returns None if not configured."""
    global _client
    if _client is not None:
        return _client

    settings = get_settings()
    if not settings.sonarr_url or not settings.sonarr_api_key:
        logger.debug("Sonarr not configured (sonarr_url or sonarr_api_key missing)")
        return None
    _client = SonarrClient(settings.sonarr_url, settings.sonarr_api_key)
    return _client


def invalidate_client():
    """Reset the client so the next call picks up changed settings."""
    global _client
    _client = None


class SonarrClient(ServiceClient, DownloadManager):
    """Sonarr v3 REST API Client."""

    service_name = "Sonarr"
    name = "Sonarr"
    api_prefix = "/api/v3"

    def __init__(self, url, api_key):
        super().__init__(url, api_key)
        self.session.headers["X-Api-Key"] = api_key

    def _health_probe(self):
        self._get("/system/status")

    def get_tags(self):
        return {t["id"]: t["label"] for t in self._get("/tag") or []}

    def get_items(self):
        tags = self.get_tags()
        items = []
        for series in self._get("/series") or []:
            stats = series.get("statistics") or {}
            items.append(DownloadInfo(
                arr_id=series["id"],
                source=self.name,
                title=series.get("title"),
                year=series.get("year") or None,
                monitored=series.get("monitored"),
                has_file=stats.get("episodeFileCount", 0) > 0,
                size_on_disk=stats.get("sizeOnDisk"),
                quality_profile_id=series.get("qualityProfileId"),
                status=series.get("status"),
                tags=[tags.get(t, str(t)) for t in series.get("tags", [])],
                episode_file_count=stats.get("episodeFileCount"),
                percent_of_episodes=stats.get("percentOfEpisodes"),
                path=series.get("path"),
                added_at=parse_timestamp(series.get("added")),
                tmdb_id=series.get("tmdbId") or None,
                tvdb_id=series.get("tvdbId") or None,
            ))
        logger.debug("Sonarr returned %d series", len(items))
        return items

    def delete_files(self, arr_id):
        """Delete a series and its files. A series Sonarr no longer knows is treated as deleted."""
        self._request(
            "DELETE",
            f"/series/{arr_id}",
            params={"deleteFiles": "true", "addImportListExclusion": "false"},
            allow_404=True,
        )
        logger.info("Sonarr: deleted series %s with files", arr_id)
