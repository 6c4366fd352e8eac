import logging
import random
import threading
import time
from typing import Callable, Dict, List, Optional

from fastapi import HTTPException, Request


logger = logging.getLogger("ticketwall.ratelimit")


class RateLimiter:
    """Per-IP sliding-window limiter, usable as a FastAPI dependency.

    A request is counted only when it is admitted. Once ``max_requests`` admitted
    requests fall inside the trailing window, further requests get a 429 until the
    oldest one ages out.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        name: str = "api",
        clock: Callable[[], float] = time.monotonic,
        sweep_probability: float = 0.01,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self.clock = clock
        self.sweep_probability = sweep_probability
        self._requests: Dict[str, List[float]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str) -> bool:
        now = self.clock()
        cutoff = now - self.window_seconds
        with self._lock:
            recent = [ts for ts in self._requests.get(key, []) if ts > cutoff]
            if len(recent) >= self.max_requests:
                self._requests[key] = recent
                return False

            recent.append(now)
            self._requests[key] = recent

            if random.random() < self.sweep_probability:
                self._sweep(cutoff)
        return True

    def retry_after(self, key: str) -> Optional[float]:
        with self._lock:
            times = self._requests.get(key)
            if not times:
                return None
            return max(0.0, times[0] + self.window_seconds - self.clock())

    def _sweep(self, cutoff: float) -> None:
        for key in list(self._requests):
            valid = [ts for ts in self._requests[key] if ts > cutoff]
            if valid:
                self._requests[key] = valid
            else:
                del self._requests[key]

    def reset(self) -> None:
        with self._lock:
            self._requests.clear()

    def tracked_keys(self) -> List[str]:
        with self._lock:
            return list(self._requests)

    def __call__(self, request: Request) -> None:
        ip = request.client.host if request.client else "unknown"
        if not self.hit(ip):
            logger.warning("rate limit '%s' exceeded for %s", self.name, ip)
            headers = {}
            wait = self.retry_after(ip)
            if wait is not None:
                headers["Retry-After"] = str(max(1, int(wait + 0.999)))
            raise HTTPException(
                status_code=429,
                detail="Too many requests, please try again later.",
                headers=headers,
            )
