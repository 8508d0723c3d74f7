"""
Rate limiting.

Admin and identity endpoints use slowapi decorators. The public invite
endpoints use a fixed-window counter keyed by endpoint, token hash and client
address, so one leaked token cannot be hammered from a single address and
unrelated invitees behind the same address don't share a budget.
"""

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from slowapi import Limiter
from starlette.requests import Request

from cdn_console.config import settings
from cdn_console.errors import RateLimitedError
from cdn_console.logging_config import get_logger

logger = get_logger(__name__)


def get_real_client_ip(request: Request) -> str:
    """Extract the real client IP behind Cloudflare or a reverse proxy.

    Checks CF-Connecting-IP, then X-Real-IP, then the first X-Forwarded-For
    hop. Falls back to request.client.host for direct connections.
    """
    cf_ip = request.headers.get("CF-Connecting-IP")
    if cf_ip:
        return cf_ip.strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # Take the first IP (original client)
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


limiter = Limiter(key_func=get_real_client_ip)


class InviteEndpoint(StrEnum):
    META = "meta"
    SIGN = "sign"
    COMMIT = "commit"


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int = 0


@dataclass(slots=True)
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """
    In-process fixed-window counter.

    Best effort only: counters are per process and are lost on restart.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()
        self.enabled = True

    def check(self, key: str, limit: int, window_seconds: float) -> RateLimitResult:
        """Count one request against ``key``. Denied requests are not counted."""
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now > window.reset_at:
                window = _Window(count=1, reset_at=now + window_seconds)
                self._windows[key] = window
                return RateLimitResult(True, limit, limit - 1, window.reset_at)

            if window.count >= limit:
                retry_after = max(1, math.ceil(window.reset_at - now))
                return RateLimitResult(False, limit, 0, window.reset_at, retry_after)

            window.count += 1
            return RateLimitResult(True, limit, limit - window.count, window.reset_at)

    def sweep(self) -> int:
        """Drop elapsed windows. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, window in self._windows.items() if now > window.reset_at]
            for key in expired:
                del self._windows[key]
        return len(expired)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)


invite_rate_limiter = FixedWindowRateLimiter()


def invite_rate_limit_key(endpoint: InviteEndpoint, token_hash: str, client_ip: str) -> str:
    return f"invite:{endpoint}:{token_hash}:{client_ip}"


def enforce_invite_rate_limit(request: Request, token_hash: str, endpoint: InviteEndpoint) -> None:
    """Raise RateLimitedError when the caller is over budget for this invite endpoint."""
    if not invite_rate_limiter.enabled:
        return

    key = invite_rate_limit_key(endpoint, token_hash, get_real_client_ip(request))
    result = invite_rate_limiter.check(
        key,
        settings.invite_rate_limit_requests,
        settings.invite_rate_limit_window_seconds,
    )
    if result.allowed:
        return

    logger.warning("invite_rate_limited", endpoint=str(endpoint))
    raise RateLimitedError(
        "Rate limit exceeded",
        limit=result.limit,
        remaining=result.remaining,
        reset_at=result.reset_at,
        retry_after=result.retry_after,
    )
