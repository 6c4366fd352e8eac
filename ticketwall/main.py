import logging
import secrets
import sqlite3
import time
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Depends, FastAPI, File, HTTPException, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from ticketwall import __version__, config
from ticketwall.ratelimit import RateLimiter
from ticketwall.schema import (
    ALLOWED_UPLOAD_TYPES,
    PROGRESS_STATES,
    STATUSES,
    PreferencesUpdate,
    PriorityUpdate,
    ProgressUpdate,
    StatusUpdate,
    TagCreate,
    TicketCreate,
    TicketTagCreate,
    UserCredentials,
)
from ticketwall.security import (
    add_security_headers,
    no_store,
    no_store_headers,
    public_cache,
    session_token,
    storage_errors,
)
from ticketwall.storage import DatabaseStorage


logger = logging.getLogger("ticketwall.api")

UPLOAD_CHUNK_BYTES = 64 * 1024

storage = DatabaseStorage(config.DB_PATH)
UPLOADS_DIR = config.UPLOADS_DIR
MAX_UPLOAD_BYTES = config.MAX_UPLOAD_BYTES

api_limiter = RateLimiter(*config.API_RATE_LIMIT, name="api")
ticket_creation_limiter = RateLimiter(*config.TICKET_RATE_LIMIT, name="ticket-creation")
upload_limiter = RateLimiter(*config.UPLOAD_RATE_LIMIT, name="upload")
RATE_LIMITERS = [api_limiter, ticket_creation_limiter, upload_limiter]


app = FastAPI(title="Ticket Wall", version=__version__)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5000",
        "http://127.0.0.1:5000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)
app.middleware("http")(add_security_headers)


def format_validation_error(exc: RequestValidationError) -> str:
    parts: List[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "path", "query"))
        message = str(error.get("msg", "invalid value")).removeprefix("Value error, ")
        parts.append(f"{location}: {message}" if location else message)
    return "Validation error: " + "; ".join(parts)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": format_validation_error(exc)})


@app.on_event("startup")
def on_startup() -> None:
    config.configure_logging()
    storage.init_db()
    UPLOADS_DIR.mkdir(parents=True, exist_ok=True)


def current_user(request: Request) -> Optional[Dict[str, Any]]:
    token = session_token(request, config.SESSION_COOKIE)
    if not token:
        return None
    with storage_errors("Failed to load session"):
        return storage.get_session_user(token)


def require_user(user: Optional[Dict[str, Any]] = Depends(current_user)) -> Dict[str, Any]:
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def user_id_of(user: Optional[Dict[str, Any]]) -> Optional[int]:
    return user["id"] if user else None


def ensure_ticket(ticket_id: int) -> Dict[str, Any]:
    with storage_errors("Failed to fetch ticket"):
        ticket = storage.get_ticket(ticket_id)
    if not ticket:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return ticket


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": user["id"], "username": user["username"]}


def start_session(response: Response, user: Dict[str, Any]) -> None:
    token = storage.create_session(user["id"], timedelta(hours=config.SESSION_TTL_HOURS))
    response.set_cookie(
        config.SESSION_COOKIE,
        token,
        max_age=config.SESSION_TTL_HOURS * 3600,
        httponly=True,
        samesite="lax",
    )


@app.get("/api/health")
def health() -> Dict[str, Any]:
    return {"ok": True, "service": "ticketwall", "db": str(storage.db_path)}


# Auth


@app.post("/api/register", status_code=201, dependencies=[Depends(api_limiter)])
def register(credentials: UserCredentials, response: Response) -> Dict[str, Any]:
    try:
        user = storage.create_user(credentials.username, credentials.password)
    except sqlite3.IntegrityError as exc:
        raise HTTPException(status_code=400, detail="Username already exists") from exc
    except sqlite3.Error as exc:
        logger.exception("Failed to register user")
        raise HTTPException(status_code=500, detail="Failed to register user") from exc

    with storage_errors("Failed to register user"):
        start_session(response, user)
        storage.log_activity(user["id"], "user_registered", {"username": user["username"]})
    no_store(response)
    return public_user(user)


@app.post("/api/login", dependencies=[Depends(api_limiter)])
def login(credentials: UserCredentials, response: Response) -> Dict[str, Any]:
    with storage_errors("Failed to log in"):
        user = storage.authenticate(credentials.username, credentials.password)
        if user is None:
            raise HTTPException(status_code=401, detail="Invalid username or password")
        start_session(response, user)
        storage.log_activity(user["id"], "user_login", {"username": user["username"]})
    no_store(response)
    return public_user(user)


@app.post("/api/logout", dependencies=[Depends(api_limiter)])
def logout(request: Request, response: Response) -> Dict[str, Any]:
    token = session_token(request, config.SESSION_COOKIE)
    if token:
        with storage_errors("Failed to log out"):
            storage.delete_session(token)
    response.delete_cookie(config.SESSION_COOKIE)
    no_store(response)
    return {"ok": True}


@app.get("/api/user", dependencies=[Depends(api_limiter)])
def get_current_user(user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    return public_user(user)


# Tickets


@app.get("/api/tickets", dependencies=[Depends(api_limiter)])
def list_tickets(response: Response) -> List[Dict[str, Any]]:
    with storage_errors("Failed to fetch tickets"):
        tickets = storage.get_all_tickets()
    public_cache(response, 5)
    return tickets


@app.post("/api/tickets", status_code=201, dependencies=[Depends(ticket_creation_limiter)])
def create_ticket(
    ticket: TicketCreate,
    response: Response,
    user: Optional[Dict[str, Any]] = Depends(current_user),
) -> Dict[str, Any]:
    with storage_errors("Failed to create ticket"):
        created = storage.create_ticket(ticket.model_dump(), created_by=user_id_of(user))
    logger.info("ticket %s created", created["id"])
    no_store(response)
    return created


@app.get("/api/tickets/user", dependencies=[Depends(api_limiter)])
def list_user_tickets(user: Dict[str, Any] = Depends(require_user)) -> List[Dict[str, Any]]:
    with storage_errors("Failed to fetch user tickets"):
        return storage.get_tickets_by_user(user["id"])


@app.get("/api/tickets/status/{status}", dependencies=[Depends(api_limiter)])
def list_tickets_by_status(status: str, response: Response) -> List[Dict[str, Any]]:
    if status not in STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status parameter")
    with storage_errors("Failed to fetch tickets by status"):
        tickets = storage.get_tickets_by_status(status)
    public_cache(response, 5)
    return tickets


@app.get("/api/tickets/progress/{progress}", dependencies=[Depends(api_limiter)])
def list_tickets_by_progress(progress: str, response: Response) -> List[Dict[str, Any]]:
    if progress not in PROGRESS_STATES:
        raise HTTPException(status_code=400, detail="Invalid progress parameter")
    with storage_errors("Failed to fetch tickets by progress"):
        tickets = storage.get_tickets_by_progress(progress)
    public_cache(response, 5)
    return tickets


@app.get("/api/tickets/{ticket_id}", dependencies=[Depends(api_limiter)])
def get_ticket(ticket_id: int, response: Response) -> Dict[str, Any]:
    ticket = ensure_ticket(ticket_id)
    public_cache(response, 10)
    return ticket


@app.get("/api/tickets/{ticket_id}/status", dependencies=[Depends(api_limiter)])
def get_ticket_status(ticket_id: int, response: Response) -> Dict[str, Any]:
    ticket = ensure_ticket(ticket_id)
    public_cache(response, 10)
    return {"id": ticket_id, "status": ticket["status"], "updatedAt": ticket["updatedAt"]}


@app.get("/api/tickets/{ticket_id}/progress", dependencies=[Depends(api_limiter)])
def get_ticket_progress(ticket_id: int, response: Response) -> Dict[str, Any]:
    ticket = ensure_ticket(ticket_id)
    public_cache(response, 10)
    return {"id": ticket_id, "progress": ticket["progress"], "updatedAt": ticket["updatedAt"]}


@app.get("/api/tickets/{ticket_id}/priority", dependencies=[Depends(api_limiter)])
def get_ticket_priority(ticket_id: int, response: Response) -> Dict[str, Any]:
    ticket = ensure_ticket(ticket_id)
    public_cache(response, 10)
    return {"id": ticket_id, "priority": ticket["priority"], "updatedAt": ticket["updatedAt"]}


@app.patch("/api/tickets/{ticket_id}/status", dependencies=[Depends(api_limiter)])
def update_ticket_status(
    ticket_id: int,
    update: StatusUpdate,
    response: Response,
    user: Optional[Dict[str, Any]] = Depends(current_user),
) -> Dict[str, Any]:
    with storage_errors("Failed to update ticket status"):
        updated = storage.update_ticket_status(ticket_id, update.status, user_id_of(user))
    if not updated:
        raise HTTPException(status_code=404, detail="Ticket not found")
    no_store(response)
    return updated


@app.patch("/api/tickets/{ticket_id}/progress", dependencies=[Depends(api_limiter)])
def update_ticket_progress(
    ticket_id: int,
    update: ProgressUpdate,
    response: Response,
    user: Optional[Dict[str, Any]] = Depends(current_user),
) -> Dict[str, Any]:
    with storage_errors("Failed to update ticket progress"):
        updated = storage.update_ticket_progress(ticket_id, update.progress, user_id_of(user))
    if not updated:
        raise HTTPException(status_code=404, detail="Ticket not found")
    no_store(response)
    return updated


@app.patch("/api/tickets/{ticket_id}/priority", dependencies=[Depends(api_limiter)])
def update_ticket_priority(
    ticket_id: int,
    update: PriorityUpdate,
    response: Response,
    user: Optional[Dict[str, Any]] = Depends(current_user),
) -> Dict[str, Any]:
    with storage_errors("Failed to update ticket priority"):
        updated = storage.update_ticket_priority(ticket_id, update.priority, user_id_of(user))
    if not updated:
        raise HTTPException(status_code=404, detail="Ticket not found")
    no_store(response)
    return updated


# Tags


@app.get("/api/tags", dependencies=[Depends(api_limiter)])
def list_tags(response: Response) -> List[Dict[str, Any]]:
    with storage_errors("Failed to fetch tags"):
        tags = storage.get_all_tags()
    public_cache(response, 60)
    return tags


@app.post("/api/tags", status_code=201, dependencies=[Depends(api_limiter)])
def create_tag(
    tag: TagCreate,
    response: Response,
    user: Optional[Dict[str, Any]] = Depends(current_user),
) -> Dict[str, Any]:
    try:
        created = storage.create_tag(tag.name, tag.color, created_by=user_id_of(user))
    except sqlite3.IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Tag already exists") from exc
    except sqlite3.Error as exc:
        logger.exception("Failed to create tag")
        raise HTTPException(status_code=500, detail="Failed to create tag") from exc
    no_store(response)
    return created


@app.get("/api/user/tags", dependencies=[Depends(api_limiter)])
def list_user_tags(user: Dict[str, Any] = Depends(require_user)) -> List[Dict[str, Any]]:
    with storage_errors("Failed to fetch user tags"):
        return storage.get_user_created_tags(user["id"])


@app.get("/api/tickets/{ticket_id}/tags", dependencies=[Depends(api_limiter)])
def list_ticket_tags(ticket_id: int, response: Response) -> List[Dict[str, Any]]:
    ensure_ticket(ticket_id)
    with storage_errors("Failed to fetch ticket tags"):
        tags = storage.get_ticket_tags(ticket_id)
    public_cache(response, 10)
    return tags


@app.post("/api/tickets/{ticket_id}/tags", dependencies=[Depends(api_limiter)])
def add_ticket_tag(
    ticket_id: int,
    body: TicketTagCreate,
    user: Optional[Dict[str, Any]] = Depends(current_user),
) -> Response:
    ensure_ticket(ticket_id)
    with storage_errors("Failed to add tag to ticket"):
        if not storage.get_tag(body.tag_id):
            raise HTTPException(status_code=404, detail="Tag not found")
        storage.add_tag_to_ticket(ticket_id, body.tag_id, user_id_of(user))
    return Response(status_code=201, headers=no_store_headers())


@app.delete("/api/tickets/{ticket_id}/tags/{tag_id}", dependencies=[Depends(api_limiter)])
def remove_ticket_tag(
    ticket_id: int,
    tag_id: int,
    user: Optional[Dict[str, Any]] = Depends(current_user),
) -> Response:
    with storage_errors("Failed to remove tag from ticket"):
        storage.remove_tag_from_ticket(ticket_id, tag_id, user_id_of(user))
    return Response(status_code=204, headers=no_store_headers())


# Attachments


def stored_upload_name(original_name: str) -> str:
    suffix = Path(original_name or "").suffix.lower()
    if len(suffix) > 16 or not suffix[1:].isalnum():
        suffix = ""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(8)}{suffix}"


def save_upload(upload: UploadFile, directory: Path, max_bytes: int) -> Tuple[Path, int]:
    """Copy an upload to ``directory`` under a random name, enforcing ``max_bytes``."""
    directory.mkdir(parents=True, exist_ok=True)
    target = directory / stored_upload_name(upload.filename or "")
    size = 0
    try:
        with target.open("wb") as handle:
            while True:
                chunk = upload.file.read(UPLOAD_CHUNK_BYTES)
                if not chunk:
                    break
                size += len(chunk)
                if size > max_bytes:
                    raise HTTPException(
                        status_code=413,
                        detail=f"File too large (limit {max_bytes // (1024 * 1024)}MB)",
                    )
                handle.write(chunk)
    except HTTPException:
        target.unlink(missing_ok=True)
        raise
    except OSError as exc:
        target.unlink(missing_ok=True)
        logger.exception("Failed to store upload %s", upload.filename)
        raise HTTPException(status_code=500, detail="Failed to upload file") from exc
    return target, size


@app.post("/api/tickets/{ticket_id}/attachments", status_code=201, dependencies=[Depends(upload_limiter)])
def upload_attachment(
    ticket_id: int,
    response: Response,
    file: Optional[UploadFile] = File(default=None),
    user: Optional[Dict[str, Any]] = Depends(current_user),
) -> Dict[str, Any]:
    ensure_ticket(ticket_id)
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")

    content_type = (file.content_type or "").split(";", 1)[0].strip().lower()
    if content_type not in ALLOWED_UPLOAD_TYPES:
        raise HTTPException(status_code=400, detail="Unsupported file type")

    target, size = save_upload(file, UPLOADS_DIR, MAX_UPLOAD_BYTES)
    try:
        attachment = storage.create_attachment(
            ticket_id,
            file_name=file.filename,
            file_type=content_type,
            file_url=f"/uploads/{target.name}",
            file_size=size,
            user_id=user_id_of(user),
        )
    except sqlite3.Error as exc:
        target.unlink(missing_ok=True)
        logger.exception("Failed to record attachment for ticket %s", ticket_id)
        raise HTTPException(status_code=500, detail="Failed to upload file") from exc

    no_store(response)
    return attachment


@app.get("/api/tickets/{ticket_id}/attachments", dependencies=[Depends(api_limiter)])
def list_attachments(ticket_id: int, response: Response) -> List[Dict[str, Any]]:
    with storage_errors("Failed to fetch attachments"):
        attachments = storage.get_ticket_attachments(ticket_id)
    public_cache(response, 10)
    return attachments


@app.delete("/api/attachments/{attachment_id}", dependencies=[Depends(api_limiter)])
def delete_attachment(
    attachment_id: int,
    user: Optional[Dict[str, Any]] = Depends(current_user),
) -> Response:
    with storage_errors("Failed to delete attachment"):
        attachment = storage.get_attachment(attachment_id)
        if not attachment:
            raise HTTPException(status_code=404, detail="Attachment not found")

        storage.delete_attachment(attachment_id, user_id_of(user))

    file_path = UPLOADS_DIR / Path(attachment["fileUrl"]).name
    try:
        file_path.unlink(missing_ok=True)
    except OSError:
        # an orphaned file is harmless once the record is gone
        logger.warning("could not delete %s from disk", file_path, exc_info=True)
    return Response(status_code=204, headers=no_store_headers())


@app.get("/uploads/{filename}")
def serve_upload(filename: str) -> FileResponse:
    root = UPLOADS_DIR.resolve()
    candidate = (root / filename).resolve()
    if candidate.parent != root or not candidate.is_file():
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(candidate, headers={"Cache-Control": "public, max-age=3600"})


# User preferences and activity


@app.get("/api/user/preferences", dependencies=[Depends(api_limiter)])
def get_preferences(user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    return user.get("preferences") or {}


@app.patch("/api/user/preferences", dependencies=[Depends(api_limiter)])
def update_preferences(
    update: PreferencesUpdate,
    response: Response,
    user: Dict[str, Any] = Depends(require_user),
) -> Dict[str, Any]:
    merged = {**(user.get("preferences") or {}), **update.changes()}
    with storage_errors("Failed to update user preferences"):
        updated = storage.update_user_preferences(user["id"], merged)
    if not updated:
        raise HTTPException(status_code=404, detail="User not found")
    no_store(response)
    return updated["preferences"]


@app.get("/api/user/activities", dependencies=[Depends(api_limiter)])
def list_user_activities(user: Dict[str, Any] = Depends(require_user)) -> List[Dict[str, Any]]:
    with storage_errors("Failed to fetch user activities"):
        return storage.get_user_activities(user["id"])


@app.get("/api/activities/recent", dependencies=[Depends(api_limiter)])
def list_recent_activities(response: Response, limit: int = 20) -> List[Dict[str, Any]]:
    if limit < 1 or limit > 100:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 100")
    with storage_errors("Failed to fetch recent activities"):
        activities = storage.get_recent_activities(limit)
    public_cache(response, 10)
    return activities


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("ticketwall.main:app", host="0.0.0.0", port=config.PORT, reload=True)
