from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from ticketwall import main


def stored_files(directory: Path) -> list:
    return sorted(p.name for p in directory.iterdir())


def test_upload_list_serve_and_delete(client: TestClient, make_ticket, uploads_dir: Path) -> None:
    ticket = make_ticket()

    response = client.post(
        f"/api/tickets/{ticket['id']}/attachments",
        files={"file": ("notes.txt", b"hello attachments", "text/plain")},
    )
    assert response.status_code == 201, response.text
    attachment = response.json()
    assert attachment["ticketId"] == ticket["id"]
    assert attachment["fileName"] == "notes.txt"
    assert attachment["fileType"] == "text/plain"
    assert attachment["fileSize"] == len(b"hello attachments")
    assert attachment["fileUrl"].startswith("/uploads/")
    assert attachment["fileUrl"].endswith(".txt")

    stored_name = Path(attachment["fileUrl"]).name
    assert stored_files(uploads_dir) == [stored_name]
    assert stored_name != "notes.txt"

    listed = client.get(f"/api/tickets/{ticket['id']}/attachments").json()
    assert [a["id"] for a in listed] == [attachment["id"]]

    served = client.get(attachment["fileUrl"])
    assert served.status_code == 200
    assert served.content == b"hello attachments"

    deleted = client.delete(f"/api/attachments/{attachment['id']}")
    assert deleted.status_code == 204
    assert stored_files(uploads_dir) == []
    assert client.get(f"/api/tickets/{ticket['id']}/attachments").json() == []
    assert client.delete(f"/api/attachments/{attachment['id']}").status_code == 404


def test_disallowed_mime_type_creates_nothing(client: TestClient, make_ticket, storage, uploads_dir: Path) -> None:
    ticket = make_ticket()

    response = client.post(
        f"/api/tickets/{ticket['id']}/attachments",
        files={"file": ("setup.exe", b"MZ\x90\x00", "application/x-msdownload")},
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Unsupported file type"
    assert storage.count_attachments() == 0
    assert stored_files(uploads_dir) == []


def test_oversized_upload_is_rejected_and_cleaned_up(
    client: TestClient,
    make_ticket,
    storage,
    uploads_dir: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(main, "MAX_UPLOAD_BYTES", 16)
    ticket = make_ticket()

    response = client.post(
        f"/api/tickets/{ticket['id']}/attachments",
        files={"file": ("big.csv", b"a,b,c\n" * 10, "text/csv")},
    )

    assert response.status_code == 413
    assert storage.count_attachments() == 0
    assert stored_files(uploads_dir) == []


def test_upload_requires_existing_ticket_and_a_file(client: TestClient, make_ticket) -> None:
    missing = client.post(
        "/api/tickets/999/attachments",
        files={"file": ("a.txt", b"x", "text/plain")},
    )
    assert missing.status_code == 404

    ticket = make_ticket()
    empty = client.post(f"/api/tickets/{ticket['id']}/attachments", data={"note": "no file"})
    assert empty.status_code == 400
    assert empty.json()["detail"] == "No file uploaded"


def test_serve_upload_rejects_unknown_names(client: TestClient) -> None:
    assert client.get("/uploads/does-not-exist.png").status_code == 404


def test_attachment_list_is_briefly_cacheable(client: TestClient, make_ticket) -> None:
    ticket = make_ticket()

    response = client.get(f"/api/tickets/{ticket['id']}/attachments")
    assert response.headers["cache-control"] == "public, max-age=10"


def test_failed_record_delete_keeps_the_file(
    client: TestClient,
    make_ticket,
    storage,
    uploads_dir: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ticket = make_ticket()
    attachment = client.post(
        f"/api/tickets/{ticket['id']}/attachments",
        files={"file": ("notes.txt", b"keep me", "text/plain")},
    ).json()

    def locked(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(storage, "delete_attachment", locked)

    response = client.delete(f"/api/attachments/{attachment['id']}")
    assert response.status_code == 500
    assert response.json() == {"detail": "Failed to delete attachment"}
    assert stored_files(uploads_dir) == [Path(attachment["fileUrl"]).name]
    assert storage.count_attachments() == 1
