"""Tests for the HTTP service clients with a mocked requests session."""

import json
from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests

from error_handler import CollaboratorError
from overseerr_client import OverseerrClient
from radarr_client import RadarrClient
from service_client import parse_timestamp
from sonarr_client import SonarrClient
from tautulli_client import TautulliClient


def _response(status=200, body=None, headers=None):
    resp = requests.Response()
    resp.status_code = status
    resp._content = json.dumps(body).encode() if body is not None else b""
    resp.headers.update(headers or {})
    resp.url = "http://service.test"
    return resp


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr("service_client.time.sleep", lambda seconds: None)


def _mock_session(client, *responses):
    client.session.request = MagicMock(side_effect=list(responses))
    return client.session.request


class TestServiceClient:
    def test_retries_server_errors(self):
        client = RadarrClient("http://radarr:7878/", "key")
        request = _mock_session(client, _response(503), _response(200, {"version": "5"}))

        assert client.health_check() == (True, "OK")
        assert request.call_count == 2
        method, url = request.call_args.args
        assert (method, url) == ("GET", "http://radarr:7878/api/v3/system/status")

    def test_gives_up_after_retries(self):
        client = RadarrClient("http://radarr:7878", "key")
        _mock_session(client, *[requests.ConnectionError("refused")] * 3)

        healthy, message = client.health_check()

        assert healthy is False
        assert message.startswith("Radarr: GET /system/status: connection failed")

    def test_client_error_is_not_retried(self):
        client = RadarrClient("http://radarr:7878", "key")
        request = _mock_session(client, _response(401))
        with pytest.raises(CollaboratorError) as exc_info:
            client.get_tags()
        assert exc_info.value.http_status == 502
        assert request.call_count == 1

    def test_rate_limit_honours_retry_after(self, monkeypatch):
        waits = []
        monkeypatch.setattr("service_client.time.sleep", waits.append)
        client = RadarrClient("http://radarr:7878", "key")
        _mock_session(client, _response(429, headers={"Retry-After": "7"}), _response(200, []))

        assert client.get_tags() == {}
        assert waits == [7]

    @pytest.mark.parametrize("value,expected", [
        (None, None),
        ("", None),
        (0, None),
        (1767225600, datetime(2026, 1, 1, tzinfo=UTC)),
        ("1767225600", datetime(2026, 1, 1, tzinfo=UTC)),
        ("2026-01-01T00:00:00Z", datetime(2026, 1, 1, tzinfo=UTC)),
        ("2026-01-01T00:00:00", datetime(2026, 1, 1, tzinfo=UTC)),
        ("yesterday", None),
    ])
    def test_parse_timestamp(self, value, expected):
        assert parse_timestamp(value) == expected


class TestArrClients:
    def test_radarr_items(self):
        client = RadarrClient("http://radarr:7878", "key")
        _mock_session(
            client,
            _response(200, [{"id": 3, "label": "keep"}]),
            _response(200, [{
                "id": 11, "title": "Heat", "year": 1995, "monitored": True, "hasFile": True,
                "sizeOnDisk": 1234, "qualityProfileId": 4, "status": "released",
                "tags": [3, 9], "path": "/movies/Heat (1995)",
                "added": "2024-05-01T10:00:00Z", "tmdbId": 949,
            }]),
        )

        item, = client.get_items()

        assert item.arr_id == 11
        assert item.source == "Radarr"
        assert item.has_file is True
        assert item.tags == ["keep", "9"]
        assert item.tmdb_id == 949
        assert item.added_at == datetime(2024, 5, 1, 10, tzinfo=UTC)

    def test_radarr_delete_treats_missing_movie_as_deleted(self):
        client = RadarrClient("http://radarr:7878", "key")
        request = _mock_session(client, _response(404))

        client.delete_files(11)

        assert request.call_args.kwargs["params"]["deleteFiles"] == "true"

    def test_sonarr_items_use_statistics(self):
        client = SonarrClient("http://sonarr:8989", "key")
        _mock_session(
            client,
            _response(200, []),
            _response(200, [{
                "id": 5, "title": "Lost", "year": 2004, "tvdbId": 73739,
                "statistics": {"episodeFileCount": 0, "sizeOnDisk": 0,
                               "percentOfEpisodes": 0.0},
            }]),
        )

        item, = client.get_items()

        assert item.has_file is False
        assert item.episode_file_count == 0
        assert item.tvdb_id == 73739
        assert item.tmdb_id is None


class TestTautulli:
    def test_watch_stats_are_paged_per_section(self):
        client = TautulliClient("http://tautulli:8181", "key")

        def ok(data):
            return _response(200, {"response": {"result": "success", "data": data}})

        _mock_session(
            client,
            ok([{"section_id": 1, "section_type": "movie"},
                {"section_id": 2, "section_type": "show"}]),
            ok({"recordsFiltered": 1, "data": [{
                "rating_key": 42, "play_count": 3, "last_played": 1767225600,
                "file_size": "2048", "video_resolution": "1080",
            }]}),
        )

        stats = client.get_watch_stats("MOVIE")

        assert list(stats) == ["42"]
        assert stats["42"].play_count == 3
        assert stats["42"].last_watched_at == datetime(2026, 1, 1, tzinfo=UTC)
        assert stats["42"].file_size == 2048
        assert stats["42"].resolution == "1080"

    def test_command_failure(self):
        client = TautulliClient("http://tautulli:8181", "key")
        _mock_session(client, _response(200, {"response": {"result": "error",
                                                           "message": "Invalid apikey"}}))
        assert client.health_check() == (False, "Tautulli: Invalid apikey")


class TestOverseerr:
    def test_requests_fold_per_title(self):
        client = OverseerrClient("http://overseerr:5055", "key")
        _mock_session(client, _response(200, {
            "pageInfo": {"results": 4},
            "results": [
                {"status": 2, "createdAt": "2026-01-01T00:00:00Z",
                 "requestedBy": {"displayName": "alice"},
                 "media": {"mediaType": "movie", "tmdbId": 949}},
                {"status": 5, "createdAt": "2026-02-01T00:00:00Z",
                 "requestedBy": {"displayName": "bob"},
                 "media": {"mediaType": "movie", "tmdbId": 949}},
                {"status": 3, "createdAt": "2026-03-01T00:00:00Z",
                 "requestedBy": {"displayName": "carol"},
                 "media": {"mediaType": "movie", "tmdbId": 500}},
                {"status": 2, "media": {"mediaType": "tv", "tvdbId": 73739}},
            ],
        }))

        statuses = client.get_request_status("MOVIE")

        assert list(statuses) == ["tmdb:949"]
        info = statuses["tmdb:949"]
        assert info.is_requested is True
        assert info.request_count == 2
        assert info.requested_by == ["alice", "bob"]
        assert info.status == "completed"
        assert info.last_requested_at == datetime(2026, 2, 1, tzinfo=UTC)


class TestPlex:
    def _client(self, server):
        from plex_client import PlexClient

        client = PlexClient("http://plex:32400", "token")
        client._server = server
        return client

    def test_movies_from_matching_sections(self):
        added = datetime(2025, 3, 1, tzinfo=UTC)
        part = SimpleNamespace(size=4096, file="/movies/Heat.mkv")
        movie = SimpleNamespace(
            ratingKey=101, title="Heat", year=1995, viewCount=2, addedAt=added,
            lastViewedAt=None, duration=10_200_000, rating=8.1,
            media=[SimpleNamespace(parts=[part], videoResolution="1080", videoCodec="h264")],
            genres=[SimpleNamespace(tag="Crime")], labels=[],
            guids=[SimpleNamespace(id="imdb://tt0113277"), SimpleNamespace(id="tmdb://949")],
        )
        movies = SimpleNamespace(type="movie", key=1, all=lambda libtype: [movie])
        shows = SimpleNamespace(type="show", key=2, all=lambda libtype: pytest.fail("wrong section"))
        server = SimpleNamespace(library=SimpleNamespace(sections=lambda: [movies, shows]))

        info, = self._client(server).list_titles("MOVIE")

        assert info.rating_key == "101"
        assert info.library_id == "1"
        assert info.view_count == 2
        assert info.added_at == added
        assert info.file_size == 4096
        assert info.duration == 170
        assert info.genres == ["Crime"]
        assert info.tmdb_id == 949
        assert info.tvdb_id is None

    def test_episodes_carry_series_ids(self):
        show = SimpleNamespace(ratingKey=40, guids=[SimpleNamespace(id="tvdb://123"),
                                                    SimpleNamespace(id="tmdb://66732")])
        episode = SimpleNamespace(
            ratingKey=501, grandparentRatingKey=40, grandparentTitle="Stranger Things",
            seasonEpisode="s01e01", title="The Vanishing", viewCount=0,
            guids=[SimpleNamespace(id="tvdb://777001")],
        )
        shows = SimpleNamespace(type="show", key=2,
                                all=lambda libtype: [show] if libtype == "show" else [episode])
        server = SimpleNamespace(library=SimpleNamespace(sections=lambda: [shows]))

        info, = self._client(server).list_titles("EPISODE")

        assert info.title == "Stranger Things - s01e01 - The Vanishing"
        assert info.tvdb_id == 777001
        assert info.series_tvdb_id == 123
        assert info.series_tmdb_id == 66732

    def test_remove_missing_item_is_ignored(self):
        from plexapi.exceptions import NotFound

        server = MagicMock()
        server.fetchItem.side_effect = NotFound("gone")
        self._client(server).remove_from_library("101")
        server.fetchItem.assert_called_once_with(101)

    def test_remove_failure_raises(self):
        from plexapi.exceptions import BadRequest

        server = MagicMock()
        server.fetchItem.return_value.delete.side_effect = BadRequest("locked")
        with pytest.raises(CollaboratorError) as exc_info:
            self._client(server).remove_from_library("101")
        assert str(exc_info.value).startswith("Plex: removing 101 failed")
