"""
Rate limiting for unauthenticated auth endpoints, per client IP.

Limits (configurable): login 5 per 15 min, register 3 per hour,
forgot-password 3 per hour. Only POST on those routes is counted.
"""

import threading
import time
from collections import OrderedDict
from typing import Callable, Iterable, NamedTuple, Optional, Tuple

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from edupulse.config import Settings, get_settings
from edupulse.logging_config import get_logger

logger = get_logger(__name__)


class RateLimitRule(NamedTuple):
    scope: str
    limit: int
    window_seconds: int


def client_ip(request: Request, trusted_proxies: Iterable[str] = ()) -> str:
    """
    Address of the client that sent the request.

    X-Forwarded-For is read only when the direct peer is a trusted proxy.
    The client is then the right-most hop that is not itself trusted;
    anything to its left was written by the client and is ignored.
    """
    peer = request.client.host if request.client else "unknown"
    trusted = frozenset(trusted_proxies)
    if peer not in trusted:
        return peer

    forwarded = request.headers.get("x-forwarded-for", "")
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return hops[0] if hops else peer


class InMemoryRateLimitStore:
    """
    Fixed-window in-memory store. Key -> (count, window_start_ts, window_seconds).

    Thread-safe. Holds at most max_keys windows; when full, the window that
    was started longest ago is evicted to make room.
    """

    def __init__(self, max_keys: int = 100_000, clock: Callable[[], float] = time.monotonic):
        self.max_keys = max_keys
        self._clock = clock
        self._data: "OrderedDict[str, Tuple[int, float, int]]" = OrderedDict()
        self._lock = threading.Lock()

    def _key(self, scope: str, identifier: str) -> str:
        return f"{scope}:{identifier}"

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def check_and_incr(
        self,
        scope: str,
        identifier: str,
        limit: int,
        window_seconds: int,
    ) -> Tuple[bool, int]:
        """
        Count one request against the window.

        Returns:
            (allowed, retry_after_seconds). Over-limit requests are not counted.
        """
        key = self._key(scope, identifier)
        with self._lock:
            now = self._clock()
            entry = self._data.get(key)
            if entry is None or now - entry[1] >= entry[2]:
                self._start_window(key, now, window_seconds)
                return True, 0
            count, start, window = entry
            if count >= limit:
                retry_after = max(1, int(start + window - now + 0.999))
                return False, retry_after
            self._data[key] = (count + 1, start, window)
            return True, 0

    def _start_window(self, key: str, now: float, window_seconds: int) -> None:
        # Caller holds the lock
        self._data.pop(key, None)
        while len(self._data) >= self.max_keys:
            self._data.popitem(last=False)
        self._data[key] = (1, now, window_seconds)

    def sweep(self) -> int:
        """Remove expired windows. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, start, window) in self._data.items() if now - start >= window]
            for k in expired:
                del self._data[k]
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


# Module-level store (single process)
_store: Optional[InMemoryRateLimitStore] = None


def get_store() -> InMemoryRateLimitStore:
    global _store
    if _store is None:
        _store = InMemoryRateLimitStore(max_keys=get_settings().rate_limit_max_keys)
    return _store


def build_rules(settings: Settings) -> dict[str, RateLimitRule]:
    """Map of auth path -> rule."""
    auth = f"{settings.api_v1_prefix}/auth"
    return {
        f"{auth}/login": RateLimitRule(
            "login", settings.rate_limit_login_max, settings.rate_limit_login_window_seconds
        ),
        f"{auth}/register": RateLimitRule(
            "register", settings.rate_limit_register_max, settings.rate_limit_register_window_seconds
        ),
        f"{auth}/forgot-password": RateLimitRule(
            "forgot-password",
            settings.rate_limit_forgot_password_max,
            settings.rate_limit_forgot_password_window_seconds,
        ),
    }


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP limits on login, register and forgot-password."""

    def __init__(
        self,
        app,
        store: Optional[InMemoryRateLimitStore] = None,
        settings: Optional[Settings] = None,
    ):
        super().__init__(app)
        self._store = store
        self._settings = settings

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        settings = self._settings or get_settings()
        if not settings.rate_limit_enabled or request.method != "POST":
            return await call_next(request)

        path = (request.url.path or "").rstrip("/")
        rule = build_rules(settings).get(path)
        if rule is None:
            return await call_next(request)

        store = self._store or get_store()
        ip_address = client_ip(request, settings.trusted_proxies)
        allowed, retry_after = store.check_and_incr(
            rule.scope, ip_address, rule.limit, rule.window_seconds
        )
        if not allowed:
            logger.warning(
                "Rate limit exceeded",
                extra={"scope": rule.scope, "ip_address": ip_address, "retry_after": retry_after},
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "detail": "Too many requests. Please try again later.",
                    "code": "RATE_LIMITED",
                },
                headers={"Retry-After": str(retry_after)},
            )
        return await call_next(request)
