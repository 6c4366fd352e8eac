import logging
import os
from pathlib import Path
from typing import Tuple


BASE_DIR = Path(__file__).resolve().parents[1]
DOTENV_PATH = BASE_DIR / ".env"


def load_dotenv(path: Path) -> None:
    if not path.exists():
        return

    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue

        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]

        os.environ.setdefault(key, value)


load_dotenv(DOTENV_PATH)


def infer_port(default: int = 5000) -> int:
    raw_port = os.getenv("PORT", "").strip()
    if not raw_port:
        return default
    try:
        return int(raw_port)
    except ValueError:
        raise RuntimeError(f"Invalid PORT value: {raw_port!r}")


def parse_rate_limit(name: str, default: str) -> Tuple[int, float]:
    """Read a ``<requests>/<window-seconds>`` pair from the environment."""
    raw = os.getenv(name, "").strip() or default
    try:
        requests_part, window_part = raw.split("/", 1)
        max_requests = int(requests_part)
        window_seconds = float(window_part)
    except ValueError:
        raise RuntimeError(f"Invalid {name} value: {raw!r} (expected <requests>/<seconds>)")
    if max_requests < 1 or window_seconds <= 0:
        raise RuntimeError(f"Invalid {name} value: {raw!r}")
    return max_requests, window_seconds


PORT = infer_port(5000)
DB_PATH = Path(os.getenv("TICKETWALL_DB_PATH", str(BASE_DIR / "data" / "tickets.db"))).expanduser()
UPLOADS_DIR = Path(os.getenv("TICKETWALL_UPLOADS_DIR", str(BASE_DIR / "uploads"))).expanduser()
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", str(24 * 7)))
SESSION_COOKIE = "ticketwall.sid"

API_RATE_LIMIT = parse_rate_limit("RATE_LIMIT_API", "30/60")
TICKET_RATE_LIMIT = parse_rate_limit("RATE_LIMIT_TICKETS", "5/300")
UPLOAD_RATE_LIMIT = parse_rate_limit("RATE_LIMIT_UPLOADS", "10/300")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
