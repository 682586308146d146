"""Fixed-window request limiter for the knowledge-base routes.

Counters live in their own TTLCache with TTL equal to the window, so the
cache sweep discards finished windows without a separate cleanup timer.
"""

import logging
import math
import threading
from datetime import datetime, timezone
from typing import Callable

from fastapi import Request, Response

from errors import RateLimitExceededError
from services.cache import TTLCache

logger = logging.getLogger(__name__)


class RateLimiter:
    """Allows `max_requests` per client per `window_seconds`."""

    def __init__(
        self,
        store: TTLCache,
        name: str,
        window_seconds: int,
        max_requests: int,
        clock: Callable[[], float] | None = None,
    ):
        self.store = store
        self.name = name
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock or (lambda: datetime.now(timezone.utc).timestamp())
        self.message = f"Too many {name} requests, please try again later"
        self._lock = threading.Lock()

    def _window(self) -> tuple[int, int]:
        """(window_start, reset_at) as unix seconds."""
        now = self._clock()
        start = int(now // self.window_seconds) * self.window_seconds
        return start, start + self.window_seconds

    def _key(self, client_id: str, window_start: int) -> str:
        return f"ratelimit:{self.name}:{client_id}:{window_start}"

    def hit(self, client_id: str) -> dict[str, str]:
        """Count one request for *client_id*; returns rate-limit headers.

        Raises:
            RateLimitExceededError: the client already used its quota this window.
        """
        start, reset_at = self._window()
        key = self._key(client_id, start)
        reset_iso = datetime.fromtimestamp(reset_at, tz=timezone.utc).isoformat()

        # Read, check and increment as one step.
        with self._lock:
            count = self.store.get(key, 0)
            if count < self.max_requests:
                count += 1
                self.store.set(key, count, self.window_seconds)
                allowed = True
            else:
                allowed = False

        if not allowed:
            retry_after = max(1, math.ceil(reset_at - self._clock()))
            logger.warning("Rate limit %s exceeded for %s", self.name, client_id)
            raise RateLimitExceededError(
                self.message,
                retry_after=retry_after,
                headers={
                    "X-RateLimit-Limit": str(self.max_requests),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": reset_iso,
                },
            )

        return {
            "X-RateLimit-Limit": str(self.max_requests),
            "X-RateLimit-Remaining": str(max(0, self.max_requests - count)),
            "X-RateLimit-Reset": reset_iso,
        }

    def get_stats(self) -> dict:
        start, _ = self._window()
        active_clients = 0
        total_requests = 0
        for key in self.store.keys(prefix=f"ratelimit:{self.name}:"):
            if not key.endswith(f":{start}"):
                continue
            count = self.store.get(key)
            if count is not None:
                active_clients += 1
                total_requests += count
        return {
            "active_clients": active_clients,
            "total_requests": total_requests,
            "window_seconds": self.window_seconds,
            "max_requests": self.max_requests,
        }

    def reset(self) -> int:
        return self.store.clear_pattern(f"^ratelimit:{self.name}:")


def client_id_for(request: Request) -> str:
    """Client IP, qualified by X-User-Id when the caller identifies itself."""
    ip = request.client.host if request.client else "unknown"
    user_id = request.headers.get("x-user-id")
    return f"{ip}:{user_id}" if user_id else ip


def rate_limit(name: str):
    """FastAPI dependency factory enforcing the named limiter profile."""

    async def dependency(request: Request, response: Response) -> None:
        limiters: dict[str, RateLimiter] = request.app.state.rate_limiters
        limiter = limiters.get(name)
        if limiter is None:
            return
        response.headers.update(limiter.hit(client_id_for(request)))

    return dependency
