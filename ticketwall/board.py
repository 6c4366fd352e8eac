"""Headless ticket-wall view: list, filter, sort and edit tickets over the API.

Status, progress and priority edits are applied locally first and then sent to
the server. A failed request restores the last server-confirmed copy of the
ticket and queues a toast for the caller to display.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx


logger = logging.getLogger("ticketwall.board")

SORT_OPTIONS = ("newest", "oldest")


@dataclass
class Toast:
    title: str
    description: str = ""
    variant: str = "default"


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_relative_time(when: datetime, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    seconds = int((now - when).total_seconds())

    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60} minutes ago"
    if seconds < 86400:
        return f"{seconds // 3600} hours ago"
    if seconds < 604800:
        return f"{seconds // 86400} days ago"
    if seconds < 2592000:
        return f"{seconds // 604800} weeks ago"
    return when.date().isoformat()


def error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])
    return f"HTTP {response.status_code}"


class TicketBoard:
    def __init__(self, client: httpx.Client) -> None:
        self.client = client
        self.tickets: List[Dict[str, Any]] = []
        self.toasts: List[Toast] = []

    def refresh(self) -> List[Dict[str, Any]]:
        response = self.client.get("/api/tickets")
        response.raise_for_status()
        self.tickets = response.json()
        return self.tickets

    def visible(self, search: str = "", status: str = "all", sort: str = "newest") -> List[Dict[str, Any]]:
        if sort not in SORT_OPTIONS:
            raise ValueError(f"sort must be one of {', '.join(SORT_OPTIONS)}")

        needle = search.strip().lower()
        matches = [
            ticket
            for ticket in self.tickets
            if (not needle or needle in ticket["title"].lower() or needle in ticket["description"].lower())
            and (status == "all" or ticket["status"] == status)
        ]
        return sorted(
            matches,
            key=lambda ticket: (parse_timestamp(ticket["createdAt"]), ticket["id"]),
            reverse=sort == "newest",
        )

    def stats(self) -> Dict[str, int]:
        total = len(self.tickets)
        solved = sum(1 for ticket in self.tickets if ticket["status"] == "solved")
        return {"total": total, "solved": solved, "unsolved": total - solved}

    def _request(self, method: str, url: str, expected: int, failure: str, **kwargs: Any) -> Optional[httpx.Response]:
        """Send a request; on a transport error or unexpected status queue a toast and return None."""
        try:
            response = self.client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            detail = str(exc)
        else:
            if response.status_code == expected:
                return response
            detail = error_detail(response)

        logger.warning("%s %s failed: %s", method, url, detail)
        self.toasts.append(Toast(failure, detail, "destructive"))
        return None

    def create_ticket(self, title: str, description: str, category: str, **extra: Any) -> Optional[Dict[str, Any]]:
        payload = {"title": title, "description": description, "category": category, **extra}
        response = self._request("POST", "/api/tickets", 201, "Failed to submit ticket", json=payload)
        if response is None:
            return None

        created = response.json()
        self.tickets = [created] + [ticket for ticket in self.tickets if ticket["id"] != created["id"]]
        self.toasts.append(Toast("Ticket submitted", "Your ticket has been posted anonymously."))
        return created

    def set_status(self, ticket_id: int, status: str) -> bool:
        return self._optimistic_update(ticket_id, "status", status)

    def set_progress(self, ticket_id: int, progress: str) -> bool:
        return self._optimistic_update(ticket_id, "progress", progress)

    def set_priority(self, ticket_id: int, priority: str) -> bool:
        return self._optimistic_update(ticket_id, "priority", priority)

    def find(self, ticket_id: int) -> Optional[Dict[str, Any]]:
        for ticket in self.tickets:
            if ticket["id"] == ticket_id:
                return ticket
        return None

    def _replace(self, replacement: Dict[str, Any]) -> None:
        self.tickets = [replacement if ticket["id"] == replacement["id"] else ticket for ticket in self.tickets]

    def _optimistic_update(self, ticket_id: int, field: str, value: str) -> bool:
        confirmed = self.find(ticket_id)
        if confirmed is None:
            raise KeyError(ticket_id)

        self._replace({**confirmed, field: value})

        response = self._request(
            "PATCH",
            f"/api/tickets/{ticket_id}/{field}",
            200,
            f"Failed to update {field}",
            json={field: value},
        )
        if response is None:
            self._replace(confirmed)
            return False

        self._replace(response.json())
        return True

    # Tags

    def tags(self) -> List[Dict[str, Any]]:
        response = self._request("GET", "/api/tags", 200, "Failed to load tags")
        return response.json() if response is not None else []

    def create_tag(self, name: str, color: str) -> Optional[Dict[str, Any]]:
        response = self._request("POST", "/api/tags", 201, "Failed to create tag", json={"name": name, "color": color})
        if response is None:
            return None
        self.toasts.append(Toast("Tag created", name))
        return response.json()

    def ticket_tags(self, ticket_id: int) -> List[Dict[str, Any]]:
        response = self._request("GET", f"/api/tickets/{ticket_id}/tags", 200, "Failed to load tags")
        return response.json() if response is not None else []

    def add_tag(self, ticket_id: int, tag_id: int) -> bool:
        url = f"/api/tickets/{ticket_id}/tags"
        return self._request("POST", url, 201, "Failed to add tag", json={"tagId": tag_id}) is not None

    def remove_tag(self, ticket_id: int, tag_id: int) -> bool:
        url = f"/api/tickets/{ticket_id}/tags/{tag_id}"
        return self._request("DELETE", url, 204, "Failed to remove tag") is not None

    # Attachments

    def attachments(self, ticket_id: int) -> List[Dict[str, Any]]:
        response = self._request("GET", f"/api/tickets/{ticket_id}/attachments", 200, "Failed to load attachments")
        return response.json() if response is not None else []

    def upload_attachment(self, ticket_id: int, name: str, data: bytes, mime_type: str) -> Optional[Dict[str, Any]]:
        response = self._request(
            "POST",
            f"/api/tickets/{ticket_id}/attachments",
            201,
            "Upload failed",
            files={"file": (name, data, mime_type)},
        )
        if response is None:
            return None
        self.toasts.append(Toast("File uploaded successfully", name))
        return response.json()

    def delete_attachment(self, attachment_id: int) -> bool:
        if self._request("DELETE", f"/api/attachments/{attachment_id}", 204, "Delete failed") is None:
            return False
        self.toasts.append(Toast("Attachment deleted"))
        return True

    def drain_toasts(self) -> List[Toast]:
        toasts, self.toasts = self.toasts, []
        return toasts
