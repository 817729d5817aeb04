"""Shared pytest fixtures for all tests.

The app fixture builds a real application on a temporary SQLite file with
fake collaborators installed, so scans and deletions run end to end
without Plex, Tautulli, Overseerr or the *arr services. Tests drive the
job queue synchronously with app.job_queue.run_pending().
"""

from datetime import UTC, datetime, timedelta

import pytest

from db.models.maintenance import MediaType
from error_handler import CollaboratorError
from maintenance.collaborators import (
    Collaborators,
    DownloadManager,
    LibraryService,
    RequestTracker,
    WatchHistoryService,
    set_collaborators,
)
from maintenance.media import DownloadInfo, LibraryInfo, RequestInfo, WatchInfo


# ---- Fake collaborators --------------------------------------------------------


class FakeLibrary(LibraryService):
    name = "FakePlex"

    def __init__(self):
        self.titles = {m.value: [] for m in MediaType}
        self.removed = []
        self.list_error = None
        self.fail_remove = set()

    def add(self, info: LibraryInfo, media_type: str = MediaType.MOVIE.value) -> LibraryInfo:
        self.titles[media_type].append(info)
        return info

    def list_titles(self, media_type):
        if self.list_error:
            raise CollaboratorError("FakePlex", self.list_error)
        return list(self.titles[media_type])

    def remove_from_library(self, title_key):
        if title_key in self.fail_remove:
            raise CollaboratorError("FakePlex", f"cannot remove {title_key}")
        self.removed.append(title_key)


class FakeWatchHistory(WatchHistoryService):
    name = "FakeTautulli"

    def __init__(self):
        self.stats = {}
        self.error = None

    def get_watch_stats(self, media_type):
        if self.error:
            raise CollaboratorError("FakeTautulli", self.error)
        return dict(self.stats)


class FakeRequests(RequestTracker):
    name = "FakeOverseerr"

    def __init__(self):
        self.requests = {}

    def get_request_status(self, media_type):
        return dict(self.requests)


class FakeDownloadManager(DownloadManager):
    def __init__(self, name: str):
        self.name = name
        self.items = []
        self.deleted = []
        self.fail_delete = set()

    def add(self, **kwargs) -> DownloadInfo:
        item = DownloadInfo(source=self.name, **kwargs)
        self.items.append(item)
        return item

    def get_items(self):
        return list(self.items)

    def delete_files(self, arr_id):
        if arr_id in self.fail_delete:
            raise CollaboratorError(self.name, f"cannot delete files of {arr_id}")
        self.deleted.append(arr_id)


class FakeServices:
    """The fakes installed for one test, with helpers to populate them."""

    def __init__(self):
        self.library = FakeLibrary()
        self.watch = FakeWatchHistory()
        self.requests = FakeRequests()
        self.radarr = FakeDownloadManager("Radarr")
        self.sonarr = FakeDownloadManager("Sonarr")

    def collaborators(self, feedback=True) -> Collaborators:
        collaborators = Collaborators(
            library=self.library,
            watch_history=self.watch,
            requests=self.requests,
            movies=self.radarr,
            series=self.sonarr,
        )
        if not feedback:
            collaborators.feedback = None
        return collaborators

    def add_movie(self, key: str, title: str, plays: int = 0, added_days_ago: int = 200,
                  file_size: int = 4 * 1024 ** 3, tmdb_id: int = None, arr_id: int = None,
                  last_watched_days_ago: int = None, requested: bool = False,
                  **library_fields) -> LibraryInfo:
        now = datetime.now(UTC)
        tmdb_id = tmdb_id or 1000 + int(key)
        info = self.library.add(LibraryInfo(
            rating_key=key,
            title=title,
            year=library_fields.pop("year", 2015),
            added_at=now - timedelta(days=added_days_ago),
            file_size=file_size,
            tmdb_id=tmdb_id,
            **library_fields,
        ))
        self.watch.stats[key] = WatchInfo(
            play_count=plays,
            last_watched_at=(now - timedelta(days=last_watched_days_ago)
                             if last_watched_days_ago is not None else None),
        )
        if arr_id is not None:
            self.radarr.add(arr_id=arr_id, title=title, year=info.year, tmdb_id=tmdb_id,
                            has_file=True, monitored=True, size_on_disk=file_size)
        if requested:
            self.requests.requests[f"tmdb:{tmdb_id}"] = RequestInfo(
                is_requested=True, request_count=1, requested_by=["alice"], status="approved",
            )
        return info


# ---- App fixtures --------------------------------------------------------------


@pytest.fixture
def services():
    return FakeServices()


@pytest.fixture
def app(tmp_path, monkeypatch, services):
    """Application on a temporary database with fake collaborators, inside an app context."""
    monkeypatch.setenv("PRUNARR_DB_PATH", str(tmp_path / "prunarr.db"))
    monkeypatch.setenv("PRUNARR_API_KEY", "")
    monkeypatch.setenv("PRUNARR_LOG_LEVEL", "ERROR")
    monkeypatch.setenv("PRUNARR_LOG_FILE", str(tmp_path / "prunarr.log"))
    monkeypatch.setenv("PRUNARR_SCAN_BACKOFF_SECONDS", "0")
    monkeypatch.setenv("PRUNARR_DELETION_BACKOFF_SECONDS", "0")

    from config import reload_settings
    reload_settings()

    from app import create_app
    from extensions import db as sa_db
    from maintenance.scheduler import stop_scan_scheduler

    application = create_app(testing=True)
    set_collaborators(services.collaborators())

    with application.app_context():
        yield application
        sa_db.session.remove()
        sa_db.engine.dispose()

    set_collaborators(None)
    stop_scan_scheduler()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def queue(app):
    return app.job_queue


# ---- Rule helpers --------------------------------------------------------------


UNWATCHED_OLD_MOVIES = {
    "type": "group",
    "operator": "AND",
    "conditions": [
        {"type": "condition", "field": "play_count", "operator": "equals", "value": 0},
        {"type": "condition", "field": "added_at", "operator": "older_than",
         "value": 180, "value_unit": "days"},
    ],
}


def rule_payload(**overrides) -> dict:
    payload = {
        "name": "Unwatched movies",
        "media_type": "MOVIE",
        "action_type": "FLAG_FOR_REVIEW",
        "criteria": UNWATCHED_OLD_MOVIES,
        "delete_files": True,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_rule(app):
    from maintenance.rules import create_rule

    def _make(**overrides):
        return create_rule(rule_payload(**overrides))
    return _make


@pytest.fixture
def run_scan(app, queue):
    """Trigger a manual scan for a rule and drain the queue. Returns the finished scan."""
    from db.repositories.scans import ScanRepository
    from maintenance.scheduler import trigger_scan

    def _run(rule_id: int) -> dict:
        queued = trigger_scan(rule_id, manual=True)
        queue.run_pending()
        return ScanRepository().get_scan(queued["scan_id"])
    return _run
