"""Tests for auth.py: the optional API key hook."""

import json

import pytest

from config import reload_settings


@pytest.fixture
def secured(app, monkeypatch):
    monkeypatch.setenv("PRUNARR_API_KEY", "test-key-123")
    reload_settings()
    yield app.test_client()
    monkeypatch.setenv("PRUNARR_API_KEY", "")
    reload_settings()


def test_open_when_key_empty(client):
    assert client.get("/api/v1/maintenance/rules").status_code == 200


def test_missing_key_rejected(secured):
    response = secured.get("/api/v1/maintenance/rules")
    assert response.status_code == 401
    assert json.loads(response.data) == {"error": "API key required"}


def test_wrong_key_rejected(secured):
    response = secured.get("/api/v1/maintenance/rules", headers={"X-Api-Key": "nope"})
    assert response.status_code == 401
    assert json.loads(response.data) == {"error": "Invalid API key"}


def test_header_key_accepted(secured):
    response = secured.get("/api/v1/maintenance/rules", headers={"X-Api-Key": "test-key-123"})
    assert response.status_code == 200


def test_query_key_accepted(secured):
    assert secured.get("/api/v1/maintenance/rules?apikey=test-key-123").status_code == 200


def test_health_stays_open(secured):
    assert secured.get("/api/v1/health").status_code == 200
    assert secured.get("/api/v1/health/detailed").status_code == 401
