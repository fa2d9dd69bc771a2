"""Per-user token buckets for mutating ``/api`` calls.

Buckets are keyed by the bearer subject and a route group. Site routes are
grouped together whether they are addressed directly (``/api/sites/{id}``) or
through their opportunity (``/api/opportunities/{id}/sites``), so filling in
stations does not eat into the opportunity budget.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass, field

from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from gasopper_crm.api.errors import error_response
from gasopper_crm.core.auth import bearer_token, decode_token
from gasopper_crm.core.config import get_settings


WINDOW_SECONDS = 60
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
EXEMPT_PATHS = frozenset({"/api/auth/login"})


@dataclass
class TokenBucket:
    tokens: float
    refilled_at: float = field(default_factory=time.monotonic)

    def take(self, capacity: int, refill_per_second: float, now: float) -> float:
        """Consume one token; return 0 on success or the seconds until one is available."""
        elapsed = max(0.0, now - self.refilled_at)
        self.tokens = min(float(capacity), self.tokens + elapsed * refill_per_second)
        self.refilled_at = now
        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return 0.0
        return (1.0 - self.tokens) / refill_per_second


class MutationRateLimiter:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buckets: dict[tuple[str, str], TokenBucket] = {}

    def check(self, subject: str, route_group: str, capacity: int) -> int:
        """Return 0 when the call may proceed, otherwise the Retry-After seconds."""
        if capacity <= 0:
            return WINDOW_SECONDS
        refill_per_second = capacity / float(WINDOW_SECONDS)
        now = time.monotonic()
        with self._lock:
            key = (subject, route_group)
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = self._buckets[key] = TokenBucket(tokens=float(capacity), refilled_at=now)
            wait = bucket.take(capacity, refill_per_second, now)
        if wait <= 0:
            return 0
        return max(1, math.ceil(wait))

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = MutationRateLimiter()


def route_group(path: str) -> str:
    parts = [part for part in path.split("/") if part]
    if "sites" in parts:
        return "sites"
    if len(parts) < 2:
        return "api"
    return parts[1]


def rate_limit_subject(request: Request) -> str:
    token = bearer_token(request)
    if not token:
        return "anonymous"
    try:
        subject = decode_token(token).get("sub")
    except JWTError:
        return "anonymous"
    return str(subject) if subject is not None else "anonymous"


def _is_limited(request: Request) -> bool:
    path = request.url.path
    return (
        path.startswith("/api/")
        and path not in EXEMPT_PATHS
        and request.method.upper() in MUTATING_METHODS
    )


class MutationRateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        if settings.rate_limit_disabled or not _is_limited(request):
            return await call_next(request)

        retry_after = _limiter.check(
            rate_limit_subject(request),
            route_group(request.url.path),
            settings.rate_limit_mutations_per_minute,
        )
        if retry_after == 0:
            return await call_next(request)

        return error_response(
            request,
            status_code=429,
            code="rate_limited",
            message="Too many requests",
            headers={"Retry-After": str(retry_after)},
        )


def reset_rate_limiter() -> None:
    _limiter.clear()
