import logging
import sqlite3
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from fastapi import HTTPException, Request, Response


logger = logging.getLogger("ticketwall.api")

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "X-Frame-Options": "DENY",
    "Content-Security-Policy": (
        "default-src 'self'; img-src 'self' data:; "
        "style-src 'self' 'unsafe-inline'; script-src 'self' 'unsafe-inline'"
    ),
    "Referrer-Policy": "no-referrer-when-downgrade",
}

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "Surrogate-Control": "no-store",
}


def public_cache(response: Response, max_age: int) -> None:
    response.headers["Cache-Control"] = f"public, max-age={max_age}"


def no_store(response: Response) -> None:
    response.headers.update(NO_STORE_HEADERS)


def no_store_headers() -> Dict[str, str]:
    return dict(NO_STORE_HEADERS)


async def add_security_headers(request: Request, call_next) -> Response:
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


@contextmanager
def storage_errors(message: str) -> Iterator[None]:
    """Turn persistence failures into a 500 that carries only ``message``."""
    try:
        yield
    except sqlite3.Error as exc:
        logger.exception("%s", message)
        raise HTTPException(status_code=500, detail=message) from exc


def session_token(request: Request, cookie_name: str) -> Optional[str]:
    token = request.cookies.get(cookie_name)
    if token:
        return token
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        token = auth.removeprefix("Bearer ").strip()
        return token or None
    return None
