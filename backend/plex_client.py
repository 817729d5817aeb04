"""Plex library client built on plexapi.

Lists movies, shows or episodes across all matching library sections and
removes items by rating key. The rating key is the title key used
throughout the maintenance engine.
"""

import logging
import threading
from datetime import UTC

from plexapi import exceptions as plex_exceptions
from plexapi.server import PlexServer
from requests.exceptions import RequestException

from config import get_settings
from db.models.maintenance import MediaType
from error_handler import CollaboratorError
from maintenance.collaborators import LibraryService
from maintenance.media import LibraryInfo

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30

_SECTION_TYPES = {
    MediaType.MOVIE.value: ("movie", "movie"),
    MediaType.TV_SERIES.value: ("show", "show"),
    MediaType.EPISODE.value: ("show", "episode"),
}

_client = None


def get_plex_client():
    """Get or create the Plex client. Returns None if not configured."""
    global _client
    if _client is not None:
        return _client

    settings = get_settings()
    if not settings.plex_url or not settings.plex_token:
        logger.debug("Plex not configured (plex_url or plex_token missing)")
        return None
    _client = PlexClient(settings.plex_url, settings.plex_token)
    return _client


def invalidate_client():
    global _client
    _client = None


def _aware(value):
    # plexapi returns naive local datetimes
    if value is None:
        return None
    return value.astimezone(UTC)


def _external_id(item, scheme):
    for guid in getattr(item, "guids", None) or []:
        if guid.id.startswith(f"{scheme}://"):
            try:
                return int(guid.id.split("://", 1)[1])
            except ValueError:
                return None
    return None


class PlexClient(LibraryService):
    """LibraryService backed by a Plex Media Server."""

    name = "Plex"

    def __init__(self, url, token):
        self.url = url.rstrip("/")
        self.token = token
        self._server = None
        self._lock = threading.Lock()

    def _get_server(self):
        """Lazily create and cache the plexapi connection."""
        with self._lock:
            if self._server is None:
                try:
                    self._server = PlexServer(self.url, self.token, timeout=REQUEST_TIMEOUT)
                except (plex_exceptions.PlexApiException, RequestException) as e:
                    raise CollaboratorError("Plex", f"cannot connect to {self.url}: {e}") from e
            return self._server

    def health_check(self):
        try:
            server = self._get_server()
        except CollaboratorError as e:
            return False, str(e)
        return True, f"Plex {server.version} ({server.friendlyName})"

    def list_titles(self, media_type):
        section_type, libtype = _SECTION_TYPES[media_type]
        server = self._get_server()
        titles = []
        try:
            for section in server.library.sections():
                if section.type != section_type:
                    continue
                series_ids = (self._series_ids(section)
                              if media_type == MediaType.EPISODE.value else None)
                for item in section.all(libtype=libtype):
                    titles.append(self._to_info(item, section, media_type, series_ids))
        except (plex_exceptions.PlexApiException, RequestException) as e:
            raise CollaboratorError("Plex", f"listing {media_type} failed: {e}") from e
        logger.debug("Plex returned %d %s title(s)", len(titles), media_type)
        return titles

    @staticmethod
    def _series_ids(section):
        """Show rating key -> (tmdb_id, tvdb_id) for one TV section."""
        return {
            str(show.ratingKey): (_external_id(show, "tmdb"), _external_id(show, "tvdb"))
            for show in section.all(libtype="show")
        }

    def _to_info(self, item, section, media_type, series_ids=None):
        series_tmdb_id = series_tvdb_id = None
        if media_type == MediaType.EPISODE.value and series_ids:
            series_tmdb_id, series_tvdb_id = series_ids.get(
                str(getattr(item, "grandparentRatingKey", "")), (None, None))
        media = (getattr(item, "media", None) or [None])[0]
        part = (media.parts or [None])[0] if media is not None else None
        if media_type == MediaType.TV_SERIES.value:
            view_count = getattr(item, "viewedLeafCount", None)
        else:
            view_count = getattr(item, "viewCount", None)
        duration = getattr(item, "duration", None)
        return LibraryInfo(
            rating_key=str(item.ratingKey),
            title=item.title if media_type != MediaType.EPISODE.value
            else f"{item.grandparentTitle} - {item.seasonEpisode} - {item.title}",
            year=getattr(item, "year", None),
            library_id=str(section.key),
            view_count=view_count,
            last_viewed_at=_aware(getattr(item, "lastViewedAt", None)),
            added_at=_aware(getattr(item, "addedAt", None)),
            file_size=getattr(part, "size", None),
            file_path=getattr(part, "file", None),
            duration=round(duration / 60000) if duration else None,
            rating=getattr(item, "rating", None),
            audience_rating=getattr(item, "audienceRating", None),
            content_rating=getattr(item, "contentRating", None),
            genres=[g.tag for g in getattr(item, "genres", None) or []],
            labels=[lb.tag for lb in getattr(item, "labels", None) or []],
            resolution=getattr(media, "videoResolution", None),
            video_codec=getattr(media, "videoCodec", None),
            audio_codec=getattr(media, "audioCodec", None),
            container=getattr(media, "container", None),
            bitrate=getattr(media, "bitrate", None),
            poster=getattr(item, "thumb", None),
            tmdb_id=_external_id(item, "tmdb"),
            tvdb_id=_external_id(item, "tvdb"),
            series_tmdb_id=series_tmdb_id,
            series_tvdb_id=series_tvdb_id,
        )

    def remove_from_library(self, title_key):
        server = self._get_server()
        try:
            item = server.fetchItem(int(title_key))
        except plex_exceptions.NotFound:
            logger.info("Plex item %s already gone", title_key)
            return
        except (plex_exceptions.PlexApiException, RequestException) as e:
            raise CollaboratorError("Plex", f"lookup of {title_key} failed: {e}") from e
        try:
            item.delete()
        except (plex_exceptions.PlexApiException, RequestException) as e:
            raise CollaboratorError("Plex", f"removing {title_key} failed: {e}") from e
        logger.info("Plex: removed '%s' (%s)", item.title, title_key)
