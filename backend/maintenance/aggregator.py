"""Builds the per-scan universe of MediaItems for one media type.

The library list is authoritative: if it cannot be fetched the scan
fails. Every other source is fetched once per build as a keyed map and
joined per title. A source that errors is logged and treated as absent
for every title, so one flaky service never aborts a scan.
"""

import logging
from dataclasses import dataclass, field

from error_handler import CollaboratorError
from db.models.maintenance import MediaType
from maintenance.collaborators import Collaborators
from maintenance.feedback import build_feedback
from maintenance.media import DownloadInfo, LibraryInfo, MediaItem

logger = logging.getLogger(__name__)

SOURCE_OK = "ok"
SOURCE_MISSING = "not_configured"
SOURCE_FAILED = "failed"


@dataclass
class AggregationResult:
    items: list[MediaItem]
    sources: dict[str, str] = field(default_factory=dict)


def catalog_key(media_type: str, tmdb_id=None, tvdb_id=None) -> str | None:
    """Key used by the request tracker: TMDB for movies, TVDB for series."""
    if media_type == MediaType.MOVIE.value:
        return f"tmdb:{tmdb_id}" if tmdb_id else None
    if tvdb_id:
        return f"tvdb:{tvdb_id}"
    return f"tmdb:{tmdb_id}" if tmdb_id else None


class _DownloadIndex:
    """Lookup of download-manager entries by catalog id, then title and year."""

    def __init__(self, items: list[DownloadInfo]):
        self._by_tmdb = {i.tmdb_id: i for i in items if i.tmdb_id}
        self._by_tvdb = {i.tvdb_id: i for i in items if i.tvdb_id}
        self._by_title = {}
        for i in items:
            if i.title:
                self._by_title.setdefault((i.title.casefold(), i.year), i)

    def find(self, library: LibraryInfo) -> DownloadInfo | None:
        if library.tvdb_id and library.tvdb_id in self._by_tvdb:
            return self._by_tvdb[library.tvdb_id]
        if library.tmdb_id and library.tmdb_id in self._by_tmdb:
            return self._by_tmdb[library.tmdb_id]
        return self._by_title.get((library.title.casefold(), library.year))


class MediaAggregator:
    """Joins library titles with watch, request, download and feedback data."""

    def __init__(self, collaborators: Collaborators):
        self.collaborators = collaborators

    def build(self, media_type: str) -> AggregationResult:
        """Fetch and merge every source for a media type.

        Raises:
            CollaboratorError: if the library cannot be listed.
        """
        library = self.collaborators.library
        if library is None:
            raise CollaboratorError("library", "no library server configured")
        try:
            titles = library.list_titles(media_type)
        except CollaboratorError:
            raise
        except Exception as exc:
            raise CollaboratorError("library", str(exc)) from exc

        sources = {"library": SOURCE_OK}
        watch = self._fetch(sources, "watch_history", self.collaborators.watch_history,
                            lambda s: s.get_watch_stats(media_type), {})
        requests = self._fetch(sources, "requests", self.collaborators.requests,
                               lambda s: s.get_request_status(media_type), {})
        downloads = self._fetch(sources, "download",
                                self.collaborators.download_manager_for(media_type),
                                lambda s: s.get_items(), [])
        marks = self._fetch(sources, "feedback", self.collaborators.feedback,
                            lambda s: s.get_mark_counts(media_type), {})

        index = _DownloadIndex(downloads)
        # Episodes are removed one by one; their files belong to the series in Sonarr
        per_title_download = media_type != MediaType.EPISODE.value

        items = []
        for info in titles:
            title_key = str(info.rating_key)
            request_key = self._request_key(media_type, info)
            summary = marks.get(title_key)
            download = index.find(info) if per_title_download else None
            items.append(MediaItem(
                title_key=title_key,
                media_type=media_type,
                library=info,
                watch=watch.get(title_key),
                request=requests.get(request_key) if request_key else None,
                download=download,
                feedback=build_feedback(summary["counts"], summary["unique_users"])
                if summary else None,
            ))

        logger.info("Aggregated %d %s title(s); sources: %s", len(items), media_type, sources)
        return AggregationResult(items=items, sources=sources)

    @staticmethod
    def _request_key(media_type: str, info: LibraryInfo) -> str | None:
        # Requests are tracked per series, so episodes inherit their show's request
        if media_type == MediaType.EPISODE.value:
            return catalog_key(media_type, info.series_tmdb_id, info.series_tvdb_id)
        return catalog_key(media_type, info.tmdb_id, info.tvdb_id)

    @staticmethod
    def _fetch(sources: dict, name: str, service, call, empty):
        if service is None:
            sources[name] = SOURCE_MISSING
            return empty
        try:
            result = call(service)
        except Exception as exc:
            logger.warning("Source %s unavailable, treating as absent: %s", name, exc)
            sources[name] = SOURCE_FAILED
            return empty
        sources[name] = SOURCE_OK
        return result if result is not None else empty
