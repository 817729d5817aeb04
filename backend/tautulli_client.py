"""Tautulli API client: play counts and last-watched dates per library item.

Uses the v2 command API (/api/v2?cmd=...). Movies are read from
get_library_media_info per section; watch statistics for series and
episodes are aggregated the same way by Tautulli itself.
"""

import logging

from config import get_settings
from db.models.maintenance import MediaType
from error_handler import CollaboratorError
from maintenance.collaborators import WatchHistoryService
from maintenance.media import WatchInfo
from service_client import ServiceClient, parse_timestamp

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000

_SECTION_TYPES = {
    MediaType.MOVIE.value: "movie",
    MediaType.TV_SERIES.value: "show",
    MediaType.EPISODE.value: "show",
}

_client = None


def get_tautulli_client():
    """Get or create the Tautulli client. Returns None if not configured."""
    global _client
    if _client is not None:
        return _client

    settings = get_settings()
    if not settings.tautulli_url or not settings.tautulli_api_key:
        logger.debug("Tautulli not configured (tautulli_url or tautulli_api_key missing)")
        return None
    _client = TautulliClient(settings.tautulli_url, settings.tautulli_api_key)
    return _client


def invalidate_client():
    global _client
    _client = None


class TautulliClient(ServiceClient, WatchHistoryService):
    """Tautulli v2 API client."""

    service_name = "Tautulli"
    api_prefix = "/api/v2"

    def _command(self, cmd, **params):
        body = self._get("", params={"apikey": self.api_key, "cmd": cmd, **params}) or {}
        response = body.get("response") or {}
        if response.get("result") != "success":
            raise CollaboratorError(self.service_name,
                                    response.get("message") or f"{cmd} failed")
        return response.get("data")

    def _health_probe(self):
        self._command("arnold")

    def get_sections(self, section_type):
        sections = self._command("get_libraries") or []
        return [s["section_id"] for s in sections if s.get("section_type") == section_type]

    def _iter_media(self, section_id, media_type):
        params = {"section_id": section_id, "length": PAGE_SIZE}
        if media_type == MediaType.EPISODE.value:
            params["section_type"] = "episode"
        start = 0
        while True:
            data = self._command("get_library_media_info", start=start, **params) or {}
            rows = data.get("data") or []
            yield from rows
            start += len(rows)
            if not rows or start >= int(data.get("recordsFiltered") or 0):
                break

    def get_watch_stats(self, media_type):
        stats = {}
        for section_id in self.get_sections(_SECTION_TYPES[media_type]):
            for row in self._iter_media(section_id, media_type):
                stats[str(row["rating_key"])] = WatchInfo(
                    play_count=int(row.get("play_count") or 0),
                    last_watched_at=parse_timestamp(row.get("last_played")),
                    added_at=parse_timestamp(row.get("added_at")),
                    file_size=int(row["file_size"]) if row.get("file_size") else None,
                    resolution=row.get("video_resolution") or None,
                    video_codec=row.get("video_codec") or None,
                    audio_codec=row.get("audio_codec") or None,
                    container=row.get("container") or None,
                    bitrate=int(row["bitrate"]) if row.get("bitrate") else None,
                )
        logger.debug("Tautulli returned watch stats for %d %s item(s)", len(stats), media_type)
        return stats
