"""Per-scan media records assembled from the library and its satellite services.

A MediaItem always carries the library record. Every other source is an
optional sub-record: None means the source had nothing for the title (or
was unavailable), which rules see as a missing value rather than zero.
"""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class LibraryInfo:
    """Title as listed by the library server (Plex)."""

    rating_key: str
    title: str
    year: int | None = None
    library_id: str | None = None
    view_count: int | None = None
    last_viewed_at: datetime | None = None
    added_at: datetime | None = None
    file_size: int | None = None
    file_path: str | None = None
    duration: int | None = None  # minutes
    rating: float | None = None
    audience_rating: float | None = None
    content_rating: str | None = None
    genres: list[str] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)
    resolution: str | None = None
    video_codec: str | None = None
    audio_codec: str | None = None
    container: str | None = None
    bitrate: int | None = None
    poster: str | None = None
    tmdb_id: int | None = None
    tvdb_id: int | None = None
    # Episodes only: catalog ids of the parent series
    series_tmdb_id: int | None = None
    series_tvdb_id: int | None = None


@dataclass
class WatchInfo:
    """Playback statistics from the watch-history service (Tautulli)."""

    play_count: int = 0
    last_watched_at: datetime | None = None
    added_at: datetime | None = None
    file_size: int | None = None
    file_path: str | None = None
    duration: int | None = None
    resolution: str | None = None
    video_codec: str | None = None
    audio_codec: str | None = None
    container: str | None = None
    bitrate: int | None = None


@dataclass
class RequestInfo:
    """Request state from the request tracker (Overseerr)."""

    is_requested: bool = False
    request_count: int = 0
    requested_by: list[str] = field(default_factory=list)
    status: str | None = None
    last_requested_at: datetime | None = None


@dataclass
class DownloadInfo:
    """Entry in the download manager responsible for the title (Radarr/Sonarr)."""

    arr_id: int | None
    source: str
    title: str | None = None
    year: int | None = None
    monitored: bool | None = None
    has_file: bool | None = None
    size_on_disk: int | None = None
    quality_profile_id: int | None = None
    status: str | None = None
    tags: list[str] = field(default_factory=list)
    episode_file_count: int | None = None
    percent_of_episodes: float | None = None
    path: str | None = None
    added_at: datetime | None = None
    tmdb_id: int | None = None
    tvdb_id: int | None = None


@dataclass
class FeedbackInfo:
    """Aggregated user marks for the title."""

    score: int = 0
    keep_forever: bool = False
    unique_users: int = 0
    counts: dict[str, int] = field(default_factory=dict)
    recommendation: str = "none"


@dataclass
class MediaItem:
    """One title with everything known about it during a scan."""

    title_key: str
    media_type: str
    library: LibraryInfo
    watch: WatchInfo | None = None
    request: RequestInfo | None = None
    download: DownloadInfo | None = None
    feedback: FeedbackInfo | None = None

    @property
    def title(self) -> str:
        return self.library.title

    @property
    def play_count(self) -> int:
        if self.watch is not None:
            return self.watch.play_count
        return self.library.view_count or 0

    @property
    def last_watched_at(self) -> datetime | None:
        if self.watch is not None and self.watch.last_watched_at is not None:
            return self.watch.last_watched_at
        return self.library.last_viewed_at

    @property
    def added_at(self) -> datetime | None:
        for value in (
            self.watch.added_at if self.watch else None,
            self.library.added_at,
            self.download.added_at if self.download else None,
        ):
            if value is not None:
                return value
        return None

    @property
    def file_size(self) -> int | None:
        for value in (
            self.watch.file_size if self.watch else None,
            self.library.file_size,
            self.download.size_on_disk if self.download else None,
        ):
            if value is not None:
                return value
        return None

    @property
    def file_path(self) -> str | None:
        if self.watch is not None and self.watch.file_path:
            return self.watch.file_path
        if self.library.file_path:
            return self.library.file_path
        return self.download.path if self.download else None

    def _technical(self, name: str):
        value = getattr(self.watch, name, None) if self.watch else None
        return value if value is not None else getattr(self.library, name)

    @property
    def resolution(self) -> str | None:
        return self._technical("resolution")

    @property
    def video_codec(self) -> str | None:
        return self._technical("video_codec")

    @property
    def audio_codec(self) -> str | None:
        return self._technical("audio_codec")

    @property
    def container(self) -> str | None:
        return self._technical("container")

    @property
    def bitrate(self) -> int | None:
        return self._technical("bitrate")

    @property
    def duration(self) -> int | None:
        return self._technical("duration")

    @property
    def is_requested(self) -> bool:
        return bool(self.request and self.request.is_requested)

    @property
    def keep_forever(self) -> bool:
        return bool(self.feedback and self.feedback.keep_forever)

    def snapshot(self) -> dict:
        """Attribute values stored on a candidate at flag time."""
        source = self.download.source if self.download else None
        arr_id = self.download.arr_id if self.download else None
        return {
            "title": self.title,
            "year": self.library.year,
            "poster": self.library.poster,
            "file_path": self.file_path,
            "file_size": self.file_size,
            "play_count": self.play_count,
            "last_watched_at": _iso(self.last_watched_at),
            "added_at": _iso(self.added_at),
            "feedback_score": self.feedback.score if self.feedback else None,
            "radarr_id": arr_id if source == "Radarr" else None,
            "sonarr_id": arr_id if source == "Sonarr" else None,
            "tmdb_id": self.library.tmdb_id or (self.download.tmdb_id if self.download else None),
            "tvdb_id": self.library.tvdb_id or (self.download.tvdb_id if self.download else None),
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
