"""Tests for the HTTP API."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from focus_tracker.db import database_connection, insert_span
from focus_tracker.webapp import create_app


@pytest.fixture
def client(db_path):
    app = create_app(db_path=db_path, run_tracker=False)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def seeded(db_path):
    with database_connection(db_path) as conn:
        insert_span(conn, "A", "w1", 0, 60)
        insert_span(conn, "B", "w2", 60, 80)
    return db_path


def save_project_with_rule(client, pattern: str = "A") -> int:
    project = client.post("/api/projects/save", json={"name": "P1", "color": "#abc"}).json()
    response = client.post(
        "/api/projects/rules/save",
        json={"pattern": pattern, "project_id": project["id"], "is_active": True},
    )
    assert response.status_code == 200
    return project["id"]


class TestStatus:
    def test_status_reports_configuration(self, client, db_path):
        body = client.get("/api/status").json()
        assert body["tracker_running"] is False
        assert body["database_path"] == str(db_path)
        assert body["idle_minutes"] == 5.0
        assert body["stale_minutes"] == 10.0


class TestOverviewEndpoint:
    def test_overview_groups_spans(self, client, seeded):
        project_id = save_project_with_rule(client)

        response = client.get("/api/overview", params={"start": 1, "end": 60})
        assert response.status_code == 200
        body = response.json()
        assert body["total_seconds"] == 60
        assert [(a["name"], a["total_seconds"]) for a in body["apps"]] == [("A", 60)]
        (group,) = body["projects"]
        assert group["project"] == {"id": project_id, "name": "P1", "color": "#abc"}
        assert group["total_seconds"] == 60
        assert body["categories"] == []

    def test_end_before_start_is_rejected(self, client):
        response = client.get("/api/overview", params={"start": 100, "end": 50})
        assert response.status_code == 400

    def test_negative_bounds_are_rejected(self, client):
        response = client.get("/api/overview", params={"start": -1})
        assert response.status_code == 400

    def test_store_failure_is_a_server_error(self, tmp_path):
        app = create_app(db_path=tmp_path / "missing" / "db.sqlite3", run_tracker=False)
        with TestClient(app) as client:
            response = client.get("/api/overview", params={"start": 1, "end": 2})
        assert response.status_code == 500

    def test_large_responses_are_compressed(self, client, db_path):
        with database_connection(db_path) as conn:
            for index in range(50):
                insert_span(conn, "Editor", f"file_{index}.py", index * 10, index * 10 + 5)
        response = client.get(
            "/api/overview",
            params={"start": 1, "end": 1000},
            headers={"Accept-Encoding": "gzip"},
        )
        assert response.status_code == 200
        assert response.headers["content-encoding"] == "gzip"
        assert response.json()["total_seconds"] == 50 * 5


class TestTimelineEndpoint:
    def test_timeline_uses_from_and_to(self, client, seeded):
        save_project_with_rule(client, pattern="w2")
        body = client.get("/api/timeline", params={"from": 1, "to": 100}).json()
        assert (body["from"], body["to"]) == (1, 100)
        spans = body["spans"]
        assert [item["span"]["app_name"] for item in spans] == ["A", "B"]
        assert spans[0]["projects"] == []
        assert [p["name"] for p in spans[1]["projects"]] == ["P1"]
        assert spans[1]["span"]["duration_seconds"] == 20

    def test_missing_bounds_default_to_today(self, client, seeded):
        body = client.get("/api/timeline").json()
        assert body["spans"] == []
        assert body["to"] - body["from"] >= 23 * 3600


class TestLabelEndpoints:
    def test_category_crud(self, client):
        created = client.post("/api/categories/save", json={"name": "Chat", "color": "red"}).json()
        updated = client.post(
            "/api/categories/save",
            json={"id": created["id"], "name": "Messaging", "color": "red"},
        ).json()
        assert updated == {"id": created["id"], "name": "Messaging", "color": "red"}

        rule = client.post(
            "/api/categories/rules/save",
            json={"pattern": "Slack", "category_id": created["id"]},
        ).json()
        assert rule["category_id"] == created["id"]
        assert rule["is_active"] is True

        listing = client.get("/api/categories").json()
        assert listing["categories"] == [updated]
        (listed_rule,) = listing["category_rules"]
        assert (listed_rule["name"], listed_rule["color"]) == ("Messaging", "red")

        assert client.post("/api/categories/rules/delete", json={"id": rule["id"]}).status_code == 200
        assert client.post("/api/categories/delete", json={"id": created["id"]}).status_code == 200
        assert client.get("/api/categories").json() == {"categories": [], "category_rules": []}

    def test_rule_update_without_active_flag_keeps_it(self, client):
        category = client.post("/api/categories/save", json={"name": "Chat"}).json()
        rule = client.post(
            "/api/categories/rules/save",
            json={"pattern": "Slack", "category_id": category["id"], "is_active": False},
        ).json()

        updated = client.post(
            "/api/categories/rules/save",
            json={"id": rule["id"], "pattern": "Slack|Teams", "category_id": category["id"]},
        ).json()
        assert updated["is_active"] is False
        (listed,) = client.get("/api/categories").json()["category_rules"]
        assert (listed["pattern"], listed["is_active"]) == ("Slack|Teams", False)

    def test_invalid_pattern_is_bad_request(self, client):
        project = client.post("/api/projects/save", json={"name": "P"}).json()
        response = client.post(
            "/api/projects/rules/save",
            json={"pattern": "(oops", "project_id": project["id"]},
        )
        assert response.status_code == 400
        assert "invalid pattern" in response.json()["detail"]

    def test_rule_without_target_is_bad_request(self, client):
        response = client.post("/api/projects/rules/save", json={"pattern": "x"})
        assert response.status_code == 400

    def test_malformed_body_is_bad_request(self, client):
        assert client.post("/api/projects/save", json={"color": "red"}).status_code == 400
        assert client.post("/api/projects/save", json={"name": "x", "bogus": 1}).status_code == 400

    def test_blank_name_is_bad_request(self, client):
        assert client.post("/api/projects/save", json={"name": "  "}).status_code == 400

    def test_unknown_ids_are_not_found(self, client):
        assert client.post("/api/projects/save", json={"id": 7, "name": "x"}).status_code == 404
        assert client.post("/api/projects/delete", json={"id": 7}).status_code == 404
        assert client.post("/api/projects/rules/delete", json={"id": 7}).status_code == 404
