from __future__ import annotations

from datetime import datetime, timedelta, timezone

from ticketwall.storage import DatabaseStorage, hash_password, next_timestamp, verify_password


def ticket_data(**overrides) -> dict:
    data = {"title": "t", "description": "d", "category": "c"}
    data.update(overrides)
    return data


def test_init_db_is_idempotent(storage: DatabaseStorage) -> None:
    storage.init_db()
    assert storage.get_all_tickets() == []


def test_next_timestamp_is_strictly_later() -> None:
    future = (datetime.now(timezone.utc) + timedelta(seconds=30)).isoformat()
    bumped = next_timestamp(future)
    assert datetime.fromisoformat(bumped) == datetime.fromisoformat(future) + timedelta(microseconds=1)

    past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    assert datetime.fromisoformat(next_timestamp(past)) > datetime.fromisoformat(past)


def test_password_hashes_are_salted() -> None:
    first = hash_password("s3cret!")
    second = hash_password("s3cret!")

    assert first != second
    assert verify_password("s3cret!", first)
    assert not verify_password("wrong", first)
    assert not verify_password("s3cret!", "garbage")


def test_field_update_on_missing_ticket_returns_none(storage: DatabaseStorage) -> None:
    assert storage.update_ticket_status(1, "solved") is None
    assert storage.get_recent_activities() == []


def test_deleting_ticket_cascades_to_tags_and_attachments(storage: DatabaseStorage) -> None:
    ticket = storage.create_ticket(ticket_data())
    tag = storage.create_tag("network", "#00f")
    storage.add_tag_to_ticket(ticket["id"], tag["id"])
    storage.create_attachment(ticket["id"], "a.txt", "text/plain", "/uploads/a.txt", 1)

    with storage.connect() as conn:
        conn.execute("DELETE FROM tickets WHERE id = ?", (ticket["id"],))
        conn.commit()

    assert storage.get_ticket_tags(ticket["id"]) == []
    assert storage.count_attachments() == 0
    assert storage.get_tag(tag["id"]) is not None


def test_add_tag_is_idempotent(storage: DatabaseStorage) -> None:
    ticket = storage.create_ticket(ticket_data())
    tag = storage.create_tag("ops", "#abc")

    assert storage.add_tag_to_ticket(ticket["id"], tag["id"]) is True
    assert storage.add_tag_to_ticket(ticket["id"], tag["id"]) is False
    assert storage.remove_tag_from_ticket(ticket["id"], tag["id"]) is True
    assert storage.remove_tag_from_ticket(ticket["id"], tag["id"]) is False


def test_expired_sessions_are_ignored(storage: DatabaseStorage) -> None:
    user = storage.create_user("linus", "penguin!")
    live = storage.create_session(user["id"], timedelta(hours=1))
    expired = storage.create_session(user["id"], timedelta(seconds=-1))

    assert storage.get_session_user(live)["username"] == "linus"
    assert storage.get_session_user(expired) is None

    storage.delete_session(live)
    assert storage.get_session_user(live) is None


def test_authenticate(storage: DatabaseStorage) -> None:
    storage.create_user("margaret", "apollo11")

    assert storage.authenticate("margaret", "apollo11")["username"] == "margaret"
    assert storage.authenticate("margaret", "apollo12") is None
    assert storage.authenticate("nobody", "apollo11") is None
