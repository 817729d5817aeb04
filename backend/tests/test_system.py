"""Tests for the system endpoints: health, config, logs and the OpenAPI document."""

import json

from maintenance.collaborators import Collaborators, set_collaborators


class TestHealth:
    def test_healthy_with_library(self, client):
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["status"] == "healthy"
        assert data["services"]["database"] == "ok"
        assert data["services"]["library"] == "configured"
        assert "version" in data

    def test_unhealthy_without_library(self, client):
        set_collaborators(Collaborators(library=None))
        response = client.get("/api/v1/health")
        assert response.status_code == 503
        data = json.loads(response.data)
        assert data["status"] == "unhealthy"
        assert data["services"]["library"] == "not configured"
        assert data["services"]["radarr"] == "not configured"

    def test_health_check_message_is_reported(self, client, services):
        services.library.health_check = lambda: (False, "token rejected")
        response = client.get("/api/v1/health")
        assert response.status_code == 503
        assert json.loads(response.data)["services"]["library"] == "unhealthy: token rejected"

    def test_detailed_health(self, client):
        data = json.loads(client.get("/api/v1/health/detailed").data)
        assert data["queue"]["type"] == "database"
        assert data["queue"]["length"] == 0
        assert data["queue"]["active"] == []
        assert data["scheduler"]["schedules"] == []


class TestConfigEndpoints:
    def test_secrets_are_masked(self, client, monkeypatch):
        from config import reload_settings

        monkeypatch.setenv("PRUNARR_RADARR_API_KEY", "secret")
        reload_settings()

        data = json.loads(client.get("/api/v1/config").data)
        assert data["radarr_api_key"] == "***configured***"
        assert data["sonarr_api_key"] == ""
        assert data["plex_token"] == ""
        assert data["port"] == 5766

    def test_update_applies_overrides(self, client):
        from config import get_settings

        response = client.put("/api/v1/config", json={
            "scheduler_timezone": "Europe/Berlin",
            "deletion_workers": "4",
            "plex_token": "***configured***",
        })
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["scheduler_timezone"] == "Europe/Berlin"
        assert data["deletion_workers"] == 4
        assert get_settings().deletion_workers == 4
        assert get_settings().plex_token == ""

    def test_update_requires_object(self, client):
        response = client.put("/api/v1/config", json=["port"])
        assert response.status_code == 400


class TestLogsAndDocs:
    def test_logs_filtered_by_level(self, client):
        from config import get_settings

        with open(get_settings().log_file, "a", encoding="utf-8") as f:
            f.write("2026-01-01 [INFO] scanner: scan started\n")
            f.write("2026-01-01 [ERROR] deleter: file deletion failed\n")

        data = json.loads(client.get("/api/v1/logs?level=error").data)
        assert data["total"] == 1
        assert "file deletion failed" in data["entries"][0]

    def test_openapi_document(self, client):
        data = json.loads(client.get("/api/v1/openapi.json").data)
        assert data["info"]["title"] == "Prunarr API"
        assert "/api/v1/maintenance/rules" in data["paths"]
        assert "/api/v1/health" in data["paths"]
        assert "/api/v1/maintenance/marks/summary" in data["paths"]
        assert {t["name"] for t in data["tags"]} == {"Maintenance", "System"}
        assert data["components"]["schemas"]["Error"]["required"] == ["error", "code", "timestamp"]
        assert set(data["components"]["securitySchemes"]) == {"apiKeyAuth", "apiKeyQuery"}
        assert not any(p.startswith("/api/docs") for p in data["paths"])

    def test_event_catalog(self, client):
        data = json.loads(client.get("/api/v1/events").data)
        names = {e["name"] for e in data["events"]}
        assert {"scan_complete", "deletion_failed", "candidate_reviewed"} <= names
        assert all("signal" not in e for e in data["events"])
