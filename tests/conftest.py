from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from ticketwall import main
from ticketwall.storage import DatabaseStorage


@pytest.fixture
def storage(tmp_path: Path) -> DatabaseStorage:
    db = DatabaseStorage(tmp_path / "tickets.db")
    db.init_db()
    return db


@pytest.fixture
def uploads_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "uploads"
    directory.mkdir()
    return directory


@pytest.fixture
def client(storage: DatabaseStorage, uploads_dir: Path, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setattr(main, "storage", storage)
    monkeypatch.setattr(main, "UPLOADS_DIR", uploads_dir)
    for limiter in main.RATE_LIMITERS:
        limiter.reset()
    return TestClient(main.app)


@pytest.fixture
def make_ticket(client: TestClient):
    def create(**overrides) -> dict:
        payload = {
            "title": "Printer on fire",
            "description": "The third floor printer is emitting smoke.",
            "category": "hardware",
        }
        payload.update(overrides)
        response = client.post("/api/tickets", json=payload)
        assert response.status_code == 201, response.text
        return response.json()

    return create
