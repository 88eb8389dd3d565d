"""
tests/test_api.py
=================

HTTP surface: authentication, error mapping and the main flows.
"""

import pytest
from fastapi.testclient import TestClient

from downto.api import create_app


def headers(user_id, name=None):
    values = {"X-API-Key": "test-key", "X-User-Id": user_id}
    if name:
        values["X-User-Name"] = name
    return values


@pytest.fixture
def client(settings, service):
    with TestClient(create_app(settings, service)) as test_client:
        yield test_client


def create_check(client, user_id="alice", **body):
    payload = {"text": "tacos tonight?", "expires_in_hours": 24, **body}
    response = client.post("/api/checks", json=payload, headers=headers(user_id))
    assert response.status_code == 201
    return response.json()


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_api_key_required(client):
    assert client.get("/api/checks", headers={"X-User-Id": "alice"}).status_code == 422
    response = client.get("/api/checks", headers={"X-API-Key": "wrong", "X-User-Id": "alice"})
    assert response.status_code == 401


def test_create_and_list_checks(client):
    created = create_check(client, max_squad_size=3)
    assert created["expires_in"] == "24h"
    assert created["max_squad_size"] == 3

    client.put(f"/api/checks/{created['id']}/response", json={"response": "down"}, headers=headers("bob"))

    feed = client.get("/api/checks", headers=headers("bob")).json()["checks"]
    assert [check["id"] for check in feed] == [created["id"]]
    assert feed[0]["down_count"] == 1
    assert client.get("/api/checks", headers=headers("mallory")).json()["checks"] == []


def test_default_check_hours_and_open_checks(client):
    response = client.post("/api/checks", json={"text": "pho"}, headers=headers("alice"))
    assert response.json()["expires_in"] == "24h"
    response = client.post(
        "/api/checks", json={"text": "climbing", "expires_in_hours": None}, headers=headers("alice")
    )
    assert response.json()["expires_in"] == "open"


def test_domain_errors_are_mapped(client):
    response = client.post("/api/checks", json={"text": "   "}, headers=headers("alice"))
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_input"

    response = client.put("/api/checks/missing/response", json={"response": "down"}, headers=headers("bob"))
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"

    check = create_check(client)
    response = client.patch(f"/api/checks/{check['id']}", json={"text": "mine now"}, headers=headers("bob"))
    assert response.status_code == 403


def test_squad_flow(client):
    check = create_check(client, max_squad_size=3)
    for user_id in ("bob", "carol"):
        client.put(f"/api/checks/{check['id']}/response", json={"response": "down"}, headers=headers(user_id))

    response = client.post(
        "/api/squads", json={"check_id": check["id"], "member_ids": ["bob", "carol"]}, headers=headers("alice")
    )
    assert response.status_code == 200
    squad = response.json()

    again = client.post("/api/squads", json={"check_id": check["id"]}, headers=headers("alice"))
    assert again.json()["id"] == squad["id"]

    full = client.post(f"/api/squads/{squad['id']}/join", headers=headers("dave"))
    assert full.status_code == 409
    assert full.json()["error"] == "full"
    assert client.post(f"/api/squads/{squad['id']}/join", headers=headers("bob")).status_code == 204

    locked = client.post(
        "/api/squads/set-date",
        json={"squad_id": squad["id"], "date": "2026-03-01", "time": "19:30"},
        headers=headers("bob", "Bob"),
    )
    assert locked.json() == {"ok": True, "expires_at": "2026-03-02T00:00:00+00:00"}

    posted = client.post(f"/api/squads/{squad['id']}/messages", json={"text": "yay"}, headers=headers("carol"))
    assert posted.json()["sender_id"] == "carol"

    detail = client.get(f"/api/squads/{squad['id']}", headers=headers("carol")).json()
    assert detail["state"] == "active"
    assert detail["locked_date"] == "2026-03-01"
    assert sorted(detail["members"]) == ["alice", "bob", "carol"]
    assert [m["text"] for m in detail["messages"]][-2:] == ["Bob locked in Sun, Mar 1 at 7:30 PM", "yay"]

    assert client.get(f"/api/squads/{squad['id']}", headers=headers("dave")).status_code == 403
    listed = client.get("/api/squads", headers=headers("bob")).json()["squads"]
    assert [s["id"] for s in listed] == [squad["id"]]

    assert client.delete(f"/api/checks/{check['id']}", headers=headers("alice")).status_code == 409


def test_stale_date_is_a_conflict(client):
    check = create_check(client)
    squad = client.post("/api/squads", json={"check_id": check["id"]}, headers=headers("alice")).json()
    response = client.post(
        "/api/squads/set-date", json={"squad_id": squad["id"], "date": "2026-01-01"}, headers=headers("alice")
    )
    assert response.status_code == 409
    assert response.json()["error"] == "stale_date"


def test_extend_and_clear_date(client):
    check = create_check(client)
    squad = client.post("/api/squads", json={"check_id": check["id"]}, headers=headers("alice")).json()
    extended = client.post("/api/squads/extend", json={"squad_id": squad["id"], "days": 2}, headers=headers("alice"))
    assert extended.json()["expires_at"] == "2026-03-01T12:00:00+00:00"
    cleared = client.post("/api/squads/clear-date", json={"squad_id": squad["id"]}, headers=headers("alice"))
    assert cleared.json() == {"ok": True}


def test_cron_requires_secret(client):
    assert client.get("/api/cron/squad-expiry").status_code == 401
    assert client.post("/api/cron/squad-expiry", headers={"Authorization": "Bearer nope"}).status_code == 401
    response = client.get("/api/cron/squad-expiry", headers={"Authorization": "Bearer cron-secret"})
    assert response.status_code == 200
    assert response.json() == {"ok": True, "grace_messages": 0, "warnings": 0, "expired": 0, "errors": 0}


def test_cron_disabled_without_secret(settings, service):
    settings.cron_secret = None
    with TestClient(create_app(settings, service)) as client:
        response = client.get("/api/cron/squad-expiry", headers={"Authorization": "Bearer x"})
    assert response.status_code == 503


def test_event_import_failure_is_bad_gateway(client):
    response = client.post("/api/events/import", json={"url": "https://example.com/e"}, headers=headers("alice"))
    assert response.status_code == 502


def test_squad_logistics(client):
    check = create_check(client)
    squad = client.post("/api/squads", json={"check_id": check["id"]}, headers=headers("alice")).json()
    assert squad["meeting_spot"] is None

    response = client.patch(
        f"/api/squads/{squad['id']}/logistics",
        json={"meeting_spot": "L train entrance", "arrival_time": "11:30 PM"},
        headers=headers("alice"),
    )
    assert response.status_code == 200
    assert response.json()["meeting_spot"] == "L train entrance"

    detail = client.get(f"/api/squads/{squad['id']}", headers=headers("alice")).json()
    assert (detail["arrival_time"], detail["transport_notes"]) == ("11:30 PM", None)

    outsider = client.patch(
        f"/api/squads/{squad['id']}/logistics", json={"meeting_spot": "my place"}, headers=headers("mallory")
    )
    assert outsider.status_code == 403
