"""sqlite3 persistence adapter for the ticket board.

Every public method opens its own connection, so a ``DatabaseStorage`` can be
shared freely between request threads. Rows come back as plain dicts keyed in
camelCase, which is the shape the API puts on the wire.
"""

import hashlib
import hmac
import json
import logging
import secrets
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional


logger = logging.getLogger("ticketwall.storage")

PBKDF2_ITERATIONS = 120_000


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def next_timestamp(previous: Optional[str]) -> str:
    """Return a timestamp strictly after ``previous``."""
    current = datetime.now(timezone.utc)
    if previous:
        last = datetime.fromisoformat(previous)
        if current <= last:
            current = last + timedelta(microseconds=1)
    return current.isoformat()


def to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    return {to_camel(key): row[key] for key in row.keys()}


def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ITERATIONS)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    salt, _, expected = stored.partition("$")
    if not salt or not expected:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ITERATIONS)
    return hmac.compare_digest(digest.hex(), expected)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      username TEXT NOT NULL UNIQUE,
      password_hash TEXT NOT NULL,
      preferences TEXT,
      created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sessions (
      token TEXT PRIMARY KEY,
      user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
      expires_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tickets (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      title TEXT NOT NULL,
      description TEXT NOT NULL,
      category TEXT NOT NULL,
      status TEXT NOT NULL DEFAULT 'unsolved' CHECK (status IN ('solved', 'unsolved')),
      progress TEXT NOT NULL DEFAULT 'not_started' CHECK (progress IN ('not_started', 'in_progress', 'solved')),
      priority TEXT NOT NULL DEFAULT 'medium' CHECK (priority IN ('low', 'medium', 'high', 'critical')),
      sentiment TEXT DEFAULT 'neutral',
      created_by INTEGER REFERENCES users(id) ON DELETE SET NULL,
      created_at TEXT NOT NULL,
      updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tags (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      name TEXT NOT NULL UNIQUE,
      color TEXT NOT NULL,
      created_by INTEGER REFERENCES users(id) ON DELETE SET NULL,
      created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ticket_tags (
      ticket_id INTEGER NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
      tag_id INTEGER NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
      PRIMARY KEY (ticket_id, tag_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS attachments (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      ticket_id INTEGER NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
      file_name TEXT NOT NULL,
      file_type TEXT NOT NULL,
      file_url TEXT NOT NULL,
      file_size INTEGER NOT NULL,
      created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_activities (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      user_id INTEGER REFERENCES users(id) ON DELETE CASCADE,
      activity_type TEXT NOT NULL,
      activity_data TEXT,
      created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tickets_created_at ON tickets(created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_tickets_status ON tickets(status)",
    "CREATE INDEX IF NOT EXISTS idx_tickets_progress ON tickets(progress)",
    "CREATE INDEX IF NOT EXISTS idx_tickets_created_by ON tickets(created_by)",
    "CREATE INDEX IF NOT EXISTS idx_attachments_ticket_id ON attachments(ticket_id)",
    "CREATE INDEX IF NOT EXISTS idx_activities_user_id ON user_activities(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_activities_created_at ON user_activities(created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_sessions_expires_at ON sessions(expires_at)",
]

TICKET_COLUMNS = (
    "id, title, description, category, status, progress, priority, sentiment, created_by, created_at, updated_at"
)


class DatabaseStorage:
    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    def init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self.connect() as conn:
            for statement in SCHEMA:
                conn.execute(statement)
            conn.commit()
        logger.info("database ready at %s", self.db_path)

    # Users and sessions

    def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT id, username, preferences, created_at FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
        return self._user_from_row(row) if row else None

    def get_user_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT id, username, preferences, created_at FROM users WHERE username = ?",
                (username,),
            ).fetchone()
        return self._user_from_row(row) if row else None

    def create_user(self, username: str, password: str) -> Dict[str, Any]:
        """Insert a user; raises ``sqlite3.IntegrityError`` if the name is taken."""
        with self.connect() as conn:
            cursor = conn.execute(
                "INSERT INTO users (username, password_hash, preferences, created_at) VALUES (?, ?, ?, ?)",
                (username, hash_password(password), json.dumps({}), now_iso()),
            )
            conn.commit()
            user_id = cursor.lastrowid
        return self.get_user(user_id)

    def authenticate(self, username: str, password: str) -> Optional[Dict[str, Any]]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT id, password_hash FROM users WHERE username = ?",
                (username,),
            ).fetchone()
        if not row or not verify_password(password, row["password_hash"]):
            return None
        return self.get_user(row["id"])

    def update_user_preferences(self, user_id: int, preferences: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self.connect() as conn:
            cursor = conn.execute(
                "UPDATE users SET preferences = ? WHERE id = ?",
                (json.dumps(preferences), user_id),
            )
            conn.commit()
            if cursor.rowcount == 0:
                return None
        return self.get_user(user_id)

    def create_session(self, user_id: int, ttl: timedelta) -> str:
        token = secrets.token_urlsafe(32)
        expires_at = (datetime.now(timezone.utc) + ttl).isoformat()
        with self.connect() as conn:
            conn.execute(
                "INSERT INTO sessions (token, user_id, expires_at) VALUES (?, ?, ?)",
                (token, user_id, expires_at),
            )
            conn.execute("DELETE FROM sessions WHERE expires_at <= ?", (now_iso(),))
            conn.commit()
        return token

    def get_session_user(self, token: str) -> Optional[Dict[str, Any]]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT u.id, u.username, u.preferences, u.created_at "
                "FROM sessions s JOIN users u ON u.id = s.user_id "
                "WHERE s.token = ? AND s.expires_at > ?",
                (token, now_iso()),
            ).fetchone()
        return self._user_from_row(row) if row else None

    def delete_session(self, token: str) -> None:
        with self.connect() as conn:
            conn.execute("DELETE FROM sessions WHERE token = ?", (token,))
            conn.commit()

    @staticmethod
    def _user_from_row(row: sqlite3.Row) -> Dict[str, Any]:
        user = row_to_dict(row)
        user["preferences"] = json.loads(user["preferences"]) if user.get("preferences") else {}
        return user

    # Tickets

    def get_all_tickets(self) -> List[Dict[str, Any]]:
        with self.connect() as conn:
            rows = conn.execute(
                f"SELECT {TICKET_COLUMNS} FROM tickets ORDER BY created_at DESC, id DESC"
            ).fetchall()
        return [row_to_dict(r) for r in rows]

    def get_tickets_by_status(self, status: str) -> List[Dict[str, Any]]:
        with self.connect() as conn:
            rows = conn.execute(
                f"SELECT {TICKET_COLUMNS} FROM tickets WHERE status = ? ORDER BY created_at DESC, id DESC",
                (status,),
            ).fetchall()
        return [row_to_dict(r) for r in rows]

    def get_tickets_by_progress(self, progress: str) -> List[Dict[str, Any]]:
        with self.connect() as conn:
            rows = conn.execute(
                f"SELECT {TICKET_COLUMNS} FROM tickets WHERE progress = ? ORDER BY created_at DESC, id DESC",
                (progress,),
            ).fetchall()
        return [row_to_dict(r) for r in rows]

    def get_tickets_by_user(self, user_id: int) -> List[Dict[str, Any]]:
        with self.connect() as conn:
            rows = conn.execute(
                f"SELECT {TICKET_COLUMNS} FROM tickets WHERE created_by = ? ORDER BY created_at DESC, id DESC",
                (user_id,),
            ).fetchall()
        return [row_to_dict(r) for r in rows]

    def get_ticket(self, ticket_id: int) -> Optional[Dict[str, Any]]:
        with self.connect() as conn:
            row = conn.execute(f"SELECT {TICKET_COLUMNS} FROM tickets WHERE id = ?", (ticket_id,)).fetchone()
        return row_to_dict(row) if row else None

    def create_ticket(self, data: Dict[str, Any], created_by: Optional[int] = None) -> Dict[str, Any]:
        ts = now_iso()
        with self.connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO tickets (title, description, category, status, progress, priority, sentiment,
                                     created_by, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data["title"],
                    data["description"],
                    data["category"],
                    data.get("status", "unsolved"),
                    data.get("progress", "not_started"),
                    data.get("priority", "medium"),
                    data.get("sentiment", "neutral"),
                    created_by,
                    ts,
                    ts,
                ),
            )
            ticket_id = cursor.lastrowid
            self._log_activity(conn, created_by, "ticket_created", {"ticketId": ticket_id, "title": data["title"]})
            conn.commit()
        return self.get_ticket(ticket_id)

    def update_ticket_status(self, ticket_id: int, status: str, user_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
        return self._update_ticket_field(ticket_id, "status", status, user_id)

    def update_ticket_progress(self, ticket_id: int, progress: str, user_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
        return self._update_ticket_field(ticket_id, "progress", progress, user_id)

    def update_ticket_priority(self, ticket_id: int, priority: str, user_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
        return self._update_ticket_field(ticket_id, "priority", priority, user_id)

    def _update_ticket_field(self, ticket_id: int, field: str, value: str, user_id: Optional[int]) -> Optional[Dict[str, Any]]:
        # field comes from the fixed set of update_ticket_* callers, never from input
        with self.connect() as conn:
            row = conn.execute(f"SELECT {field}, updated_at FROM tickets WHERE id = ?", (ticket_id,)).fetchone()
            if not row:
                return None
            conn.execute(
                f"UPDATE tickets SET {field} = ?, updated_at = ? WHERE id = ?",
                (value, next_timestamp(row["updated_at"]), ticket_id),
            )
            self._log_activity(
                conn,
                user_id,
                f"ticket_{field}_updated",
                {"ticketId": ticket_id, "from": row[field], "to": value},
            )
            conn.commit()
        return self.get_ticket(ticket_id)

    # Tags

    def get_all_tags(self) -> List[Dict[str, Any]]:
        with self.connect() as conn:
            rows = conn.execute("SELECT * FROM tags ORDER BY name").fetchall()
        return [row_to_dict(r) for r in rows]

    def get_tag(self, tag_id: int) -> Optional[Dict[str, Any]]:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM tags WHERE id = ?", (tag_id,)).fetchone()
        return row_to_dict(row) if row else None

    def get_tag_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM tags WHERE name = ?", (name,)).fetchone()
        return row_to_dict(row) if row else None

    def get_user_created_tags(self, user_id: int) -> List[Dict[str, Any]]:
        with self.connect() as conn:
            rows = conn.execute("SELECT * FROM tags WHERE created_by = ? ORDER BY name", (user_id,)).fetchall()
        return [row_to_dict(r) for r in rows]

    def create_tag(self, name: str, color: str, created_by: Optional[int] = None) -> Dict[str, Any]:
        """Insert a tag; raises ``sqlite3.IntegrityError`` on a duplicate name."""
        with self.connect() as conn:
            cursor = conn.execute(
                "INSERT INTO tags (name, color, created_by, created_at) VALUES (?, ?, ?, ?)",
                (name, color, created_by, now_iso()),
            )
            tag_id = cursor.lastrowid
            self._log_activity(conn, created_by, "tag_created", {"tagId": tag_id, "name": name})
            conn.commit()
        return self.get_tag(tag_id)

    def get_ticket_tags(self, ticket_id: int) -> List[Dict[str, Any]]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT t.* FROM ticket_tags tt JOIN tags t ON t.id = tt.tag_id WHERE tt.ticket_id = ? ORDER BY t.name",
                (ticket_id,),
            ).fetchall()
        return [row_to_dict(r) for r in rows]

    def add_tag_to_ticket(self, ticket_id: int, tag_id: int, user_id: Optional[int] = None) -> bool:
        """Attach a tag; returns False when the pair already existed."""
        with self.connect() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO ticket_tags (ticket_id, tag_id) VALUES (?, ?)",
                (ticket_id, tag_id),
            )
            added = cursor.rowcount > 0
            if added:
                self._log_activity(conn, user_id, "tag_added", {"ticketId": ticket_id, "tagId": tag_id})
            conn.commit()
        return added

    def remove_tag_from_ticket(self, ticket_id: int, tag_id: int, user_id: Optional[int] = None) -> bool:
        with self.connect() as conn:
            cursor = conn.execute(
                "DELETE FROM ticket_tags WHERE ticket_id = ? AND tag_id = ?",
                (ticket_id, tag_id),
            )
            removed = cursor.rowcount > 0
            if removed:
                self._log_activity(conn, user_id, "tag_removed", {"ticketId": ticket_id, "tagId": tag_id})
            conn.commit()
        return removed

    # Attachments

    def create_attachment(
        self,
        ticket_id: int,
        file_name: str,
        file_type: str,
        file_url: str,
        file_size: int,
        user_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        with self.connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO attachments (ticket_id, file_name, file_type, file_url, file_size, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (ticket_id, file_name, file_type, file_url, file_size, now_iso()),
            )
            attachment_id = cursor.lastrowid
            self._log_activity(
                conn,
                user_id,
                "attachment_uploaded",
                {"ticketId": ticket_id, "attachmentId": attachment_id, "fileName": file_name},
            )
            conn.commit()
        return self.get_attachment(attachment_id)

    def get_attachment(self, attachment_id: int) -> Optional[Dict[str, Any]]:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM attachments WHERE id = ?", (attachment_id,)).fetchone()
        return row_to_dict(row) if row else None

    def get_ticket_attachments(self, ticket_id: int) -> List[Dict[str, Any]]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM attachments WHERE ticket_id = ? ORDER BY created_at ASC, id ASC",
                (ticket_id,),
            ).fetchall()
        return [row_to_dict(r) for r in rows]

    def count_attachments(self) -> int:
        with self.connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM attachments").fetchone()[0]

    def delete_attachment(self, attachment_id: int, user_id: Optional[int] = None) -> bool:
        with self.connect() as conn:
            row = conn.execute("SELECT ticket_id FROM attachments WHERE id = ?", (attachment_id,)).fetchone()
            if not row:
                return False
            conn.execute("DELETE FROM attachments WHERE id = ?", (attachment_id,))
            self._log_activity(
                conn,
                user_id,
                "attachment_deleted",
                {"ticketId": row["ticket_id"], "attachmentId": attachment_id},
            )
            conn.commit()
        return True

    # Activity log

    def log_activity(self, user_id: Optional[int], activity_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        with self.connect() as conn:
            activity = self._log_activity(conn, user_id, activity_type, data)
            conn.commit()
        return activity

    def get_user_activities(self, user_id: int, limit: int = 50) -> List[Dict[str, Any]]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM user_activities WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        return [self._activity_from_row(r) for r in rows]

    def get_recent_activities(self, limit: int = 20) -> List[Dict[str, Any]]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT a.*, u.username FROM user_activities a "
                "LEFT JOIN users u ON u.id = a.user_id "
                "ORDER BY a.created_at DESC, a.id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._activity_from_row(r) for r in rows]

    @staticmethod
    def _log_activity(
        conn: sqlite3.Connection,
        user_id: Optional[int],
        activity_type: str,
        data: Dict[str, Any],
    ) -> Dict[str, Any]:
        ts = now_iso()
        cursor = conn.execute(
            "INSERT INTO user_activities (user_id, activity_type, activity_data, created_at) VALUES (?, ?, ?, ?)",
            (user_id, activity_type, json.dumps(data), ts),
        )
        return {
            "id": cursor.lastrowid,
            "userId": user_id,
            "activityType": activity_type,
            "activityData": data,
            "createdAt": ts,
        }

    @staticmethod
    def _activity_from_row(row: sqlite3.Row) -> Dict[str, Any]:
        activity = row_to_dict(row)
        activity["activityData"] = json.loads(activity["activityData"]) if activity.get("activityData") else None
        return activity
