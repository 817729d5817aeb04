"""Contracts for the external services a scan reads from and deletions act on.

The engine never touches media files itself. It reads the library, watch
history, request state and download-manager metadata through these
interfaces and asks the library and download managers to remove titles.
Adapters live in the *_client modules; tests install fakes with
set_collaborators().
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from db.models.maintenance import MediaType
from maintenance.media import DownloadInfo, LibraryInfo, RequestInfo, WatchInfo

logger = logging.getLogger(__name__)


class LibraryService(ABC):
    """Media library server (Plex)."""

    name = "library"

    @abstractmethod
    def list_titles(self, media_type: str) -> list[LibraryInfo]:
        """All titles of the media type. Raises CollaboratorError on failure."""
        ...

    @abstractmethod
    def remove_from_library(self, title_key: str) -> None:
        """Remove a title from the library. Removing a missing title is not an error."""
        ...


class WatchHistoryService(ABC):
    """Playback statistics (Tautulli)."""

    name = "watch_history"

    @abstractmethod
    def get_watch_stats(self, media_type: str) -> dict[str, WatchInfo]:
        """Watch statistics keyed by library rating key."""
        ...


class RequestTracker(ABC):
    """Request management (Overseerr)."""

    name = "requests"

    @abstractmethod
    def get_request_status(self, media_type: str) -> dict[str, RequestInfo]:
        """Request state keyed by "tmdb:<id>" or "tvdb:<id>"."""
        ...


class DownloadManager(ABC):
    """Download manager owning the files of one media type (Radarr, Sonarr)."""

    name = "download"

    @abstractmethod
    def get_items(self) -> list[DownloadInfo]:
        ...

    @abstractmethod
    def delete_files(self, arr_id: int) -> None:
        """Delete the title and its files. Deleting a missing title is not an error."""
        ...


class FeedbackStore(ABC):
    """Per-user marks on titles."""

    name = "feedback"

    @abstractmethod
    def get_mark_counts(self, media_type: str) -> dict[str, dict]:
        """{title_key: {"counts": {mark_type: n}, "unique_users": n}}"""
        ...


class DatabaseFeedbackStore(FeedbackStore):
    """FeedbackStore backed by the user_media_marks table."""

    def get_mark_counts(self, media_type: str) -> dict[str, dict]:
        from db.repositories.feedback import FeedbackRepository

        return FeedbackRepository().get_mark_summary(media_type)


@dataclass
class Collaborators:
    """The set of services a scan and a deletion run against.

    Only the library is mandatory; a missing secondary service is treated
    like one that returned nothing.
    """

    library: LibraryService | None = None
    watch_history: WatchHistoryService | None = None
    requests: RequestTracker | None = None
    movies: DownloadManager | None = None
    series: DownloadManager | None = None
    feedback: FeedbackStore | None = field(default_factory=DatabaseFeedbackStore)

    def download_manager_for(self, media_type: str) -> DownloadManager | None:
        if media_type == MediaType.MOVIE.value:
            return self.movies
        return self.series

    def describe(self) -> dict:
        return {
            "library": type(self.library).__name__ if self.library else None,
            "watch_history": type(self.watch_history).__name__ if self.watch_history else None,
            "requests": type(self.requests).__name__ if self.requests else None,
            "movies": type(self.movies).__name__ if self.movies else None,
            "series": type(self.series).__name__ if self.series else None,
            "feedback": type(self.feedback).__name__ if self.feedback else None,
        }


_collaborators: Collaborators | None = None
_lock = threading.Lock()


def build_default_collaborators() -> Collaborators:
    """Create adapters for every service configured in Settings."""
    from overseerr_client import get_overseerr_client
    from plex_client import get_plex_client
    from radarr_client import get_radarr_client
    from sonarr_client import get_sonarr_client
    from tautulli_client import get_tautulli_client

    collaborators = Collaborators(
        library=get_plex_client(),
        watch_history=get_tautulli_client(),
        requests=get_overseerr_client(),
        movies=get_radarr_client(),
        series=get_sonarr_client(),
    )
    logger.info("Collaborators: %s", collaborators.describe())
    return collaborators


def get_collaborators() -> Collaborators:
    global _collaborators
    with _lock:
        if _collaborators is None:
            _collaborators = build_default_collaborators()
        return _collaborators


def set_collaborators(collaborators: Collaborators | None) -> None:
    """Replace the active collaborators (None rebuilds from Settings on next use)."""
    global _collaborators
    with _lock:
        _collaborators = collaborators
