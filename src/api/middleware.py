"""Per-client rate limiting and access logging for the FAQ search API."""

import logging
import math
import time
from collections import deque
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("src.api.access")

# Load balancer health checks
DEFAULT_EXEMPT_PATHS = frozenset({"/health"})

WINDOW_SECONDS = 60.0


def get_client_ip(
    request: Request,
    trusted_proxies: Optional[frozenset[str]] = None,
) -> str:
    """Address used to key rate limits and access lines.

    X-Forwarded-For is read only when the peer itself is a trusted proxy;
    its first hop is taken as the client.
    """
    peer = request.client.host if request.client else None
    if peer is None:
        return "unknown"

    if trusted_proxies and peer in trusted_proxies:
        chain = request.headers.get("x-forwarded-for", "")
        first_hop = chain.split(",")[0].strip()
        if first_hop:
            return first_hop

    return peer


class ClientWindow:
    """Request timestamps of one client inside the trailing window."""

    __slots__ = ("hits",)

    def __init__(self):
        self.hits: deque[float] = deque()

    def expire(self, now: float) -> None:
        while self.hits and self.hits[0] <= now - WINDOW_SECONDS:
            self.hits.popleft()

    def retry_after(self, now: float) -> int:
        return max(1, math.ceil(self.hits[0] + WINDOW_SECONDS - now))


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Allow at most ``requests_per_minute`` requests per client.

    Over the limit, answers 429 with the API error envelope and a
    Retry-After header (seconds until the oldest hit leaves the window).
    """

    def __init__(
        self,
        app,
        requests_per_minute: int = 100,
        trusted_proxies: Optional[frozenset[str]] = None,
        exempt_paths: frozenset[str] = DEFAULT_EXEMPT_PATHS,
    ):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.trusted_proxies = trusted_proxies
        self.exempt_paths = exempt_paths
        self._windows: dict[str, ClientWindow] = {}
        self._last_sweep = time.monotonic()

    def sweep(self, now: float) -> int:
        """Forget clients with no hits left in the window; returns how many."""
        idle = []
        for client, window in self._windows.items():
            window.expire(now)
            if not window.hits:
                idle.append(client)
        for client in idle:
            del self._windows[client]
        self._last_sweep = now
        return len(idle)

    def _reject(self, client: str, path: str, retry_after: int) -> JSONResponse:
        logger.warning(f"Rate limit hit for {client} on {path}")
        return JSONResponse(
            status_code=429,
            headers={"Retry-After": str(retry_after)},
            content={
                "error": {
                    "code": "RATE_LIMITED",
                    "message": (
                        f"Too many requests: limit is {self.requests_per_minute} per minute"
                    ),
                }
            },
        )

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in self.exempt_paths:
            return await call_next(request)

        client = get_client_ip(request, self.trusted_proxies)
        now = time.monotonic()

        if now - self._last_sweep >= WINDOW_SECONDS:
            self.sweep(now)

        window = self._windows.setdefault(client, ClientWindow())
        window.expire(now)
        if len(window.hits) >= self.requests_per_minute:
            return self._reject(client, path, window.retry_after(now))

        window.hits.append(now)
        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access line per request and an X-Response-Time-Ms header."""

    def __init__(self, app, trusted_proxies: Optional[frozenset[str]] = None):
        super().__init__(app)
        self.trusted_proxies = trusted_proxies

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.1f}"
        logger.info(
            "%s %s %d %.0fms %s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            get_client_ip(request, self.trusted_proxies),
        )
        return response
