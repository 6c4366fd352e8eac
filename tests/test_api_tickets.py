"""HTTP tests for ticket routes, headers and rate limiting."""

from __future__ import annotations

import sqlite3
from datetime import datetime

from fastapi.testclient import TestClient


def test_create_and_fetch_ticket(client: TestClient, make_ticket) -> None:
    created = make_ticket(title="  Broken login  ")

    assert created["title"] == "Broken login"
    assert created["status"] == "unsolved"
    assert created["progress"] == "not_started"
    assert created["priority"] == "medium"
    assert created["createdBy"] is None

    response = client.get(f"/api/tickets/{created['id']}")
    assert response.status_code == 200
    assert response.json() == created
    assert response.headers["cache-control"] == "public, max-age=10"


def test_list_tickets_newest_first_with_short_cache(client: TestClient, make_ticket) -> None:
    first = make_ticket(title="first")
    second = make_ticket(title="second")

    response = client.get("/api/tickets")
    assert response.status_code == 200
    assert [t["id"] for t in response.json()] == [second["id"], first["id"]]
    assert response.headers["cache-control"] == "public, max-age=5"


def test_mutations_are_not_cacheable(client: TestClient) -> None:
    response = client.post(
        "/api/tickets",
        json={"title": "t", "description": "d", "category": "c"},
    )
    assert response.status_code == 201
    assert response.headers["cache-control"] == "no-store, no-cache, must-revalidate, proxy-revalidate"
    assert response.headers["pragma"] == "no-cache"
    assert response.headers["expires"] == "0"


def test_security_headers_on_every_response(client: TestClient) -> None:
    for response in (client.get("/api/tickets"), client.get("/api/tickets/999")):
        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["x-frame-options"] == "DENY"
        assert response.headers["x-xss-protection"] == "1; mode=block"
        assert response.headers["referrer-policy"] == "no-referrer-when-downgrade"
        assert "default-src 'self'" in response.headers["content-security-policy"]


def test_create_ticket_validation_error_is_400(client: TestClient) -> None:
    response = client.post("/api/tickets", json={"title": "   ", "description": "d", "category": "c"})
    assert response.status_code == 400
    assert "title is required" in response.json()["detail"]

    response = client.post("/api/tickets", json={"title": "t", "description": "d"})
    assert response.status_code == 400


def test_unknown_and_malformed_ticket_ids(client: TestClient) -> None:
    assert client.get("/api/tickets/12345").status_code == 404
    assert client.get("/api/tickets/12345").json()["detail"] == "Ticket not found"
    assert client.get("/api/tickets/abc").status_code == 400


def test_status_round_trip_bumps_updated_at(client: TestClient, make_ticket) -> None:
    ticket = make_ticket()
    before = client.get(f"/api/tickets/{ticket['id']}").json()

    response = client.patch(f"/api/tickets/{ticket['id']}/status", json={"status": "solved"})
    assert response.status_code == 200
    assert response.headers["cache-control"].startswith("no-store")

    after = client.get(f"/api/tickets/{ticket['id']}").json()
    assert after["status"] == "solved"
    assert datetime.fromisoformat(after["updatedAt"]) > datetime.fromisoformat(before["updatedAt"])
    assert after["createdAt"] == before["createdAt"]


def test_status_patch_rejects_unknown_value(client: TestClient, make_ticket) -> None:
    ticket = make_ticket()
    response = client.patch(f"/api/tickets/{ticket['id']}/status", json={"status": "closed"})
    assert response.status_code == 400
    assert "status must be one of" in response.json()["detail"]


def test_patch_missing_ticket_is_404(client: TestClient) -> None:
    response = client.patch("/api/tickets/77/priority", json={"priority": "high"})
    assert response.status_code == 404


def test_progress_and_priority_updates(client: TestClient, make_ticket) -> None:
    ticket = make_ticket()

    progress = client.patch(f"/api/tickets/{ticket['id']}/progress", json={"progress": "in_progress"})
    priority = client.patch(f"/api/tickets/{ticket['id']}/priority", json={"priority": "critical"})

    assert progress.status_code == 200
    assert priority.status_code == 200
    assert priority.json()["progress"] == "in_progress"
    assert priority.json()["priority"] == "critical"

    assert client.get(f"/api/tickets/{ticket['id']}/priority").json()["priority"] == "critical"
    assert client.get(f"/api/tickets/{ticket['id']}/progress").json()["progress"] == "in_progress"


def test_filter_by_status_and_progress(client: TestClient, make_ticket) -> None:
    open_ticket = make_ticket(title="open")
    solved_ticket = make_ticket(title="done", status="solved", progress="solved")

    solved = client.get("/api/tickets/status/solved").json()
    unsolved = client.get("/api/tickets/status/unsolved").json()
    finished = client.get("/api/tickets/progress/solved").json()

    assert [t["id"] for t in solved] == [solved_ticket["id"]]
    assert [t["id"] for t in unsolved] == [open_ticket["id"]]
    assert [t["id"] for t in finished] == [solved_ticket["id"]]
    assert client.get("/api/tickets/status/whatever").status_code == 400
    assert client.get("/api/tickets/progress/whatever").status_code == 400


def test_ticket_creation_is_rate_limited(client: TestClient, make_ticket) -> None:
    for _ in range(5):
        make_ticket()

    response = client.post("/api/tickets", json={"title": "t", "description": "d", "category": "c"})
    assert response.status_code == 429
    assert response.json()["detail"] == "Too many requests, please try again later."
    assert "retry-after" in response.headers


def test_storage_failure_maps_to_generic_500(client: TestClient, storage, monkeypatch) -> None:
    def explode():
        raise sqlite3.OperationalError("disk I/O error at /secret/path")

    monkeypatch.setattr(storage, "get_all_tickets", explode)

    response = client.get("/api/tickets")
    assert response.status_code == 500
    assert response.json() == {"detail": "Failed to fetch tickets"}


def test_recent_activities_record_ticket_changes(client: TestClient, make_ticket) -> None:
    ticket = make_ticket()
    client.patch(f"/api/tickets/{ticket['id']}/status", json={"status": "solved"})

    activities = client.get("/api/activities/recent", params={"limit": 5}).json()
    kinds = [a["activityType"] for a in activities]
    assert kinds[:2] == ["ticket_status_updated", "ticket_created"]
    assert activities[0]["activityData"] == {"ticketId": ticket["id"], "from": "unsolved", "to": "solved"}
    assert activities[0]["username"] is None
    assert client.get("/api/activities/recent").headers["cache-control"] == "public, max-age=10"

    assert client.get("/api/activities/recent", params={"limit": 0}).status_code == 400
