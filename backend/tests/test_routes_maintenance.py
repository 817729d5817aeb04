"""API tests for the /api/v1/maintenance blueprint."""

import json

from conftest import rule_payload

BASE = "/api/v1/maintenance"


def _post(client, path, body=None):
    return client.post(f"{BASE}{path}", json=body if body is not None else {})


def _create_rule(client, **overrides):
    response = _post(client, "/rules", rule_payload(**overrides))
    assert response.status_code == 201
    return json.loads(response.data)


def _scan(client, queue, rule_id):
    response = _post(client, f"/rules/{rule_id}/scan")
    assert response.status_code == 202
    queue.run_pending()
    return json.loads(response.data)


class TestRuleEndpoints:
    def test_create_and_list(self, client):
        rule = _create_rule(client)
        assert rule["name"] == "Unwatched movies"

        data = json.loads(client.get(f"{BASE}/rules").data)
        assert [r["id"] for r in data["rules"]] == [rule["id"]]
        assert data["rules"][0]["scan_count"] == 0

    def test_validation_error_shape(self, client):
        response = _post(client, "/rules", rule_payload(
            criteria={"field": "title", "operator": "greater_than", "value": 3}))
        assert response.status_code == 400
        data = json.loads(response.data)
        assert data["code"] == "CFG_002"
        assert data["error"] == "Invalid rule"
        assert data["context"]["errors"][0]["loc"].startswith("criteria")
        assert "request_id" in data
        assert "timestamp" in data

    def test_non_object_body(self, client):
        response = client.post(f"{BASE}/rules", json=["not", "an", "object"])
        assert response.status_code == 400
        assert json.loads(response.data)["code"] == "REQ_001"

    def test_update_toggle_delete(self, client):
        rule = _create_rule(client)
        rule_url = f"{BASE}/rules/{rule['id']}"

        response = client.put(rule_url, json={"description": "tidy"})
        assert json.loads(response.data)["description"] == "tidy"

        toggled = json.loads(_post(client, f"/rules/{rule['id']}/toggle").data)
        assert toggled["enabled"] is False
        toggled = json.loads(_post(client, f"/rules/{rule['id']}/toggle", {"enabled": True}).data)
        assert toggled["enabled"] is True

        response = client.delete(rule_url)
        assert json.loads(response.data) == {"status": "deleted", "rule_id": rule["id"]}
        assert client.get(rule_url).status_code == 404

    def test_preview_endpoints(self, client, services):
        services.add_movie("1", "Forgotten")
        rule = _create_rule(client)

        saved = json.loads(_post(client, f"/rules/{rule['id']}/preview").data)
        draft = json.loads(_post(client, "/rules/preview", rule_payload()).data)

        assert saved["items_matched"] == draft["items_matched"] == 1

    def test_fields_catalogue(self, client):
        data = json.loads(client.get(f"{BASE}/fields?media_type=TV_SERIES").data)
        names = {f["name"] for f in data["fields"]}
        assert "download.episode_file_count" in names
        assert "download.has_file" not in names
        play_count = next(f for f in data["fields"] if f["name"] == "play_count")
        assert "greater_than" in play_count["operators"]

    def test_schedules(self, client):
        rule = _create_rule(client, schedule="15 2 * * *")
        data = json.loads(client.get(f"{BASE}/schedules").data)
        assert [s["rule_id"] for s in data["schedules"]] == [rule["id"]]


class TestScanEndpoints:
    def test_trigger_and_history(self, client, queue, services):
        services.add_movie("1", "Forgotten")
        rule = _create_rule(client)
        queued = _scan(client, queue, rule["id"])

        scan = json.loads(client.get(f"{BASE}/scans/{queued['scan_id']}").data)
        assert scan["status"] == "COMPLETED"

        history = json.loads(client.get(f"{BASE}/scans?rule_id={rule['id']}").data)
        assert history["total"] == 1
        assert history["items"][0]["rule_name"] == "Unwatched movies"

    def test_conflicting_trigger(self, client):
        rule = _create_rule(client)
        assert _post(client, f"/rules/{rule['id']}/scan").status_code == 202
        response = _post(client, f"/rules/{rule['id']}/scan")
        assert response.status_code == 409
        data = json.loads(response.data)
        assert data["code"] == "SCAN_001"
        assert data["error"] == "scan already in progress"

    def test_trigger_while_scan_running(self, client):
        from db.repositories.scans import ScanRepository

        rule = _create_rule(client)
        queued = json.loads(_post(client, f"/rules/{rule['id']}/scan").data)
        ScanRepository().mark_running(queued["scan_id"])

        response = _post(client, f"/rules/{rule['id']}/scan")
        assert response.status_code == 409
        assert json.loads(response.data)["error"] == "scan already in progress"

    def test_disabled_rule_trigger(self, client):
        rule = _create_rule(client, enabled=False)
        response = _post(client, f"/rules/{rule['id']}/scan")
        assert response.status_code == 409
        assert json.loads(response.data)["error"] == "rule is disabled"

    def test_unknown_scan(self, client):
        assert client.get(f"{BASE}/scans/999").status_code == 404

    def test_bad_status_filter(self, client):
        assert client.get(f"{BASE}/scans?status=SLEEPING").status_code == 400
        assert client.get(f"{BASE}/scans?page=two").status_code == 400


class TestCandidateEndpoints:
    def _flag(self, client, queue, services):
        services.add_movie("1", "One", arr_id=1)
        services.add_movie("2", "Two", arr_id=2)
        rule = _create_rule(client)
        _scan(client, queue, rule["id"])
        data = json.loads(client.get(f"{BASE}/candidates?review_status=PENDING").data)
        return sorted(c["id"] for c in data["items"])

    def test_approve_then_delete(self, client, queue, services):
        first, _ = self._flag(client, queue, services)

        response = _post(client, f"/candidates/{first}/approve", {"reviewed_by": "alice"})
        assert response.status_code == 200
        approved = json.loads(response.data)
        assert approved["review_status"] == "APPROVED"
        assert approved["deletion_job_id"]

        job = json.loads(client.get(f"{BASE}/jobs/{approved['deletion_job_id']}").data)
        assert job["kind"] == "deletion"
        assert job["status"] == "queued"

        queue.run_pending()
        candidate = json.loads(client.get(f"{BASE}/candidates/{first}").data)
        assert candidate["review_status"] == "DELETED"
        assert len(candidate["deletion_logs"]) == 1

        history = json.loads(client.get(f"{BASE}/deletions/history?files_deleted=true").data)
        assert history["total"] == 1
        assert history["items"][0]["deleted_by"] == "alice"

        stats = json.loads(client.get(f"{BASE}/deletions/stats").data)
        assert stats["total_deletions"] == 1

    def test_double_approve_conflict(self, client, queue, services):
        first, _ = self._flag(client, queue, services)
        _post(client, f"/candidates/{first}/approve")
        response = _post(client, f"/candidates/{first}/approve")
        assert response.status_code == 409
        data = json.loads(response.data)
        assert data["code"] == "CAND_001"
        assert data["error"] == "candidate already reviewed"

    def test_reject_and_note(self, client, queue, services):
        first, _ = self._flag(client, queue, services)
        rejected = json.loads(_post(client, f"/candidates/{first}/reject",
                                    {"note": "still popular"}).data)
        assert rejected["review_status"] == "REJECTED"
        assert rejected["reviewed_by"] == "admin"

        response = client.put(f"{BASE}/candidates/{first}/note", json={"note": "rechecked"})
        assert json.loads(response.data)["review_note"] == "rechecked"
        response = client.put(f"{BASE}/candidates/{first}/note", json={"note": 5})
        assert response.status_code == 400

    def test_bulk_review(self, client, queue, services):
        ids = self._flag(client, queue, services)
        response = _post(client, "/candidates/bulk",
                         {"candidate_ids": ids + [999], "status": "rejected"})
        data = json.loads(response.data)
        assert data["succeeded"] == 2
        assert data["failed"] == 1

    def test_bulk_requires_ids(self, client):
        response = _post(client, "/candidates/bulk", {"status": "APPROVED"})
        assert response.status_code == 400

    def test_delete_pending_candidate_refused(self, client, queue, services):
        first, _ = self._flag(client, queue, services)
        response = _post(client, "/deletions", {"candidate_ids": [first]})
        assert response.status_code == 409
        assert json.loads(response.data)["code"] == "CAND_002"

    def test_unknown_candidate(self, client):
        assert client.get(f"{BASE}/candidates/4040").status_code == 404
        assert _post(client, "/candidates/4040/approve").status_code == 404


class TestJobsOverviewMarks:
    def test_cancel_job(self, client):
        rule = _create_rule(client)
        queued = json.loads(_post(client, f"/rules/{rule['id']}/scan").data)

        response = client.delete(f"{BASE}/jobs/{queued['job_id']}")
        assert json.loads(response.data) == {"status": "cancelled", "job_id": queued["job_id"]}
        response = client.delete(f"{BASE}/jobs/{queued['job_id']}")
        assert response.status_code == 409
        assert client.delete(f"{BASE}/jobs/unknown").status_code == 404

        scan = json.loads(client.get(f"{BASE}/scans/{queued['scan_id']}").data)
        assert scan["status"] == "FAILED"
        assert scan["error"] == "cancelled before start"
        assert _post(client, f"/rules/{rule['id']}/scan").status_code == 202

    def test_failed_jobs(self, client, queue, services):
        services.add_movie("1", "One", arr_id=1)
        services.radarr.fail_delete.add(1)
        rule = _create_rule(client, action_type="AUTO_DELETE")
        _scan(client, queue, rule["id"])

        jobs = json.loads(client.get(f"{BASE}/jobs/failed").data)["jobs"]
        assert len(jobs) == 1
        assert jobs[0]["kind"] == "deletion"
        assert jobs[0]["attempts"] == 3

    def test_overview(self, client, queue, services):
        services.add_movie("1", "One", file_size=1000)
        rule = _create_rule(client)
        _scan(client, queue, rule["id"])

        data = json.loads(client.get(f"{BASE}/overview").data)
        assert data["rules"] == {"total": 1, "enabled": 1, "disabled": 0}
        assert data["candidates"]["PENDING"] == 1
        assert data["scans"] == {"COMPLETED": 1}
        assert data["reclaimable_bytes"] == 1000
        assert data["total_deletions"] == 0
        assert data["queue"]["type"] == "database"

    def test_marks_lifecycle(self, client):
        mark = {"user_id": "ann", "media_type": "MOVIE", "title_key": "10",
                "mark_type": "NOT_INTERESTED", "title": "Heat"}
        response = _post(client, "/marks", mark)
        assert response.status_code == 201
        assert json.loads(response.data)["marked_via"] == "api"

        marks = json.loads(client.get(f"{BASE}/marks?title_key=10").data)["marks"]
        assert [m["user_id"] for m in marks] == ["ann"]

        body = {"user_id": "ann", "title_key": "10", "mark_type": "NOT_INTERESTED"}
        response = client.delete(f"{BASE}/marks", json=body)
        assert json.loads(response.data) == {"status": "deleted"}
        assert client.delete(f"{BASE}/marks", json=body).status_code == 404

    def test_mark_validation(self, client):
        assert _post(client, "/marks", {"user_id": "ann"}).status_code == 400
        response = _post(client, "/marks", {"user_id": "ann", "media_type": "MOVIE",
                                            "title_key": "1", "mark_type": "LOVE_IT"})
        assert response.status_code == 400

    def test_feedback_summary_and_queue(self, client, services):
        services.add_movie("10", "Heat", arr_id=5)
        for user in ("ann", "bob"):
            _post(client, "/marks", {"user_id": user, "media_type": "MOVIE", "title_key": "10",
                                     "mark_type": "POOR_QUALITY", "title": "Heat"})

        data = json.loads(client.get(f"{BASE}/marks/summary?media_type=MOVIE").data)
        assert data["total"] == 1
        assert data["titles"][0]["score"] == 4
        assert data["titles"][0]["recommendation"] == "none"
        assert client.get(f"{BASE}/marks/summary?order=sideways").status_code == 400

        response = _post(client, "/marks/10/queue", {"note": "poor rip"})
        assert response.status_code == 201
        candidate = json.loads(response.data)
        assert candidate["review_status"] == "PENDING"
        assert candidate["review_note"] == "poor rip"

        assert _post(client, "/marks/10/queue").status_code == 409
        assert _post(client, "/marks/99/queue").status_code == 404
