"""Registry of attributes a rule may test, per media type.

Every field has a value type, the media types it applies to and a getter
that reads it from a MediaItem. The criteria model validates conditions
against this registry when a rule is saved, so the evaluator only ever
sees known fields with operators that fit their type.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from db.models.maintenance import MediaType
from maintenance.media import MediaItem


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"
    ARRAY = "array"


OPERATORS_BY_TYPE: dict[FieldType, frozenset[str]] = {
    FieldType.STRING: frozenset({
        "equals", "not_equals", "contains", "not_contains", "starts_with",
        "ends_with", "regex", "in", "not_in", "is_null", "not_null",
    }),
    FieldType.NUMBER: frozenset({
        "equals", "not_equals", "greater_than", "greater_than_or_equal",
        "less_than", "less_than_or_equal", "between", "in", "not_in",
        "is_null", "not_null",
    }),
    FieldType.DATE: frozenset({
        "before", "after", "between", "older_than", "newer_than",
        "is_null", "not_null",
    }),
    FieldType.BOOLEAN: frozenset({"equals", "not_equals", "is_null", "not_null"}),
    FieldType.ARRAY: frozenset({
        "contains", "not_contains", "contains_any", "contains_all",
        "is_empty", "is_not_empty",
    }),
}

ALL_MEDIA = frozenset(m.value for m in MediaType)
MOVIES = frozenset({MediaType.MOVIE.value})
SERIES = frozenset({MediaType.TV_SERIES.value})
# Titles with an entry of their own in Radarr or Sonarr
ARR_MEDIA = MOVIES | SERIES

DAY_SECONDS = 86400
TIME_UNITS = {"days": 1, "weeks": 7, "months": 30, "years": 365}
SIZE_UNITS = {"B": 1, "KB": 1024, "MB": 1024 ** 2, "GB": 1024 ** 3, "TB": 1024 ** 4}

# Ordered from lowest to highest
RESOLUTIONS = ("sd", "480", "576", "720", "1080", "4k")


@dataclass(frozen=True)
class FieldDef:
    name: str
    type: FieldType
    label: str
    getter: Callable[[MediaItem], Any]
    media_types: frozenset = ALL_MEDIA
    size: bool = False  # accepts B/KB/MB/GB/TB units
    uses_now: bool = False  # getter takes (item, now)

    def read(self, item: MediaItem, now: datetime):
        return self.getter(item, now) if self.uses_now else self.getter(item)

    @property
    def operators(self) -> frozenset[str]:
        return OPERATORS_BY_TYPE[self.type]

    def describe(self) -> dict:
        return {
            "name": self.name,
            "type": self.type.value,
            "label": self.label,
            "media_types": sorted(self.media_types),
            "operators": sorted(self.operators),
            "units": sorted(SIZE_UNITS) if self.size else (
                sorted(TIME_UNITS) if self.type is FieldType.DATE else []
            ),
        }


def _sub(record: str, attr: str) -> Callable[[MediaItem], Any]:
    def getter(item: MediaItem):
        sub = getattr(item, record)
        return None if sub is None else getattr(sub, attr)
    return getter


def _lib(attr: str) -> Callable[[MediaItem], Any]:
    return lambda item: getattr(item.library, attr)


def _days_since(value: datetime | None, now: datetime) -> int | None:
    if value is None:
        return None
    return (now - value).days


FIELDS: dict[str, FieldDef] = {f.name: f for f in (
    # Library / watch history
    FieldDef("title", FieldType.STRING, "Title", lambda i: i.title),
    FieldDef("year", FieldType.NUMBER, "Year", _lib("year")),
    FieldDef("rating", FieldType.NUMBER, "Critic rating", _lib("rating")),
    FieldDef("audience_rating", FieldType.NUMBER, "Audience rating", _lib("audience_rating")),
    FieldDef("content_rating", FieldType.STRING, "Content rating", _lib("content_rating")),
    FieldDef("genres", FieldType.ARRAY, "Genres", _lib("genres")),
    FieldDef("labels", FieldType.ARRAY, "Labels", _lib("labels")),
    FieldDef("library_id", FieldType.STRING, "Library section", _lib("library_id")),
    FieldDef("play_count", FieldType.NUMBER, "Play count", lambda i: i.play_count),
    FieldDef("never_watched", FieldType.BOOLEAN, "Never watched", lambda i: i.play_count == 0),
    FieldDef("last_watched_at", FieldType.DATE, "Last watched", lambda i: i.last_watched_at),
    FieldDef("added_at", FieldType.DATE, "Date added", lambda i: i.added_at),
    FieldDef("days_since_watched", FieldType.NUMBER, "Days since last watched",
             lambda i, now: _days_since(i.last_watched_at, now), uses_now=True),
    FieldDef("days_since_added", FieldType.NUMBER, "Days since added",
             lambda i, now: _days_since(i.added_at, now), uses_now=True),
    FieldDef("file_size", FieldType.NUMBER, "File size", lambda i: i.file_size, size=True),
    FieldDef("file_path", FieldType.STRING, "File path", lambda i: i.file_path),
    FieldDef("duration", FieldType.NUMBER, "Duration (minutes)", lambda i: i.duration),
    FieldDef("resolution", FieldType.STRING, "Resolution", lambda i: i.resolution),
    FieldDef("video_codec", FieldType.STRING, "Video codec", lambda i: i.video_codec),
    FieldDef("audio_codec", FieldType.STRING, "Audio codec", lambda i: i.audio_codec),
    FieldDef("container", FieldType.STRING, "Container", lambda i: i.container),
    FieldDef("bitrate", FieldType.NUMBER, "Bitrate (kbps)", lambda i: i.bitrate),
    # Request tracker
    FieldDef("request.is_requested", FieldType.BOOLEAN, "Actively requested",
             _sub("request", "is_requested")),
    FieldDef("request.request_count", FieldType.NUMBER, "Request count",
             _sub("request", "request_count")),
    FieldDef("request.requested_by", FieldType.ARRAY, "Requested by",
             _sub("request", "requested_by")),
    # Download manager
    FieldDef("download.monitored", FieldType.BOOLEAN, "Monitored", _sub("download", "monitored"),
             media_types=ARR_MEDIA),
    FieldDef("download.has_file", FieldType.BOOLEAN, "Has file on disk",
             _sub("download", "has_file"), media_types=MOVIES),
    FieldDef("download.size_on_disk", FieldType.NUMBER, "Size on disk",
             _sub("download", "size_on_disk"), size=True, media_types=ARR_MEDIA),
    FieldDef("download.quality_profile_id", FieldType.NUMBER, "Quality profile",
             _sub("download", "quality_profile_id"), media_types=ARR_MEDIA),
    FieldDef("download.status", FieldType.STRING, "Download manager status",
             _sub("download", "status"), media_types=ARR_MEDIA),
    FieldDef("download.tags", FieldType.ARRAY, "Download manager tags", _sub("download", "tags"),
             media_types=ARR_MEDIA),
    FieldDef("download.episode_file_count", FieldType.NUMBER, "Episode files",
             _sub("download", "episode_file_count"), media_types=SERIES),
    FieldDef("download.percent_of_episodes", FieldType.NUMBER, "Percent of episodes",
             _sub("download", "percent_of_episodes"), media_types=SERIES),
    # Feedback marks
    FieldDef("feedback.score", FieldType.NUMBER, "Feedback score", _sub("feedback", "score")),
    FieldDef("feedback.unique_users", FieldType.NUMBER, "Users who marked",
             _sub("feedback", "unique_users")),
    FieldDef("feedback.keep_forever", FieldType.BOOLEAN, "Marked keep forever",
             _sub("feedback", "keep_forever")),
)}

# Names used by older rule payloads
FIELD_ALIASES = {
    "playCount": "play_count",
    "neverWatched": "never_watched",
    "lastWatchedAt": "last_watched_at",
    "addedAt": "added_at",
    "daysSinceAdded": "days_since_added",
    "daysSinceWatched": "days_since_watched",
    "is_requested": "request.is_requested",
    "isRequested": "request.is_requested",
    "fileSize": "file_size",
    "filePath": "file_path",
    "audienceRating": "audience_rating",
    "contentRating": "content_rating",
    "libraryId": "library_id",
    "videoCodec": "video_codec",
    "audioCodec": "audio_codec",
    "radarr.hasFile": "download.has_file",
    "radarr.monitored": "download.monitored",
    "radarr.qualityProfileId": "download.quality_profile_id",
    "sonarr.monitored": "download.monitored",
    "sonarr.status": "download.status",
    "sonarr.episodeFileCount": "download.episode_file_count",
    "sonarr.percentOfEpisodes": "download.percent_of_episodes",
}


def get_field(name: str) -> FieldDef | None:
    return FIELDS.get(FIELD_ALIASES.get(name, name))


def fields_for(media_type: str) -> list[FieldDef]:
    return [f for f in FIELDS.values() if media_type in f.media_types]
