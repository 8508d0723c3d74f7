"""Domain errors raised by the invite core and rendered by the API layer."""

from typing import Any


class InviteError(Exception):
    """Base class for errors that map onto a client-facing HTTP response."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, code: str | None = None, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.extra = extra

    def to_detail(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.extra}


class ValidationError(InviteError):
    status_code = 400
    code = "validation_error"


class InviteNotActiveError(ValidationError):
    """Invite is revoked or expired. Reported without revealing internal state."""

    code = "invite_not_active"


class ExhaustedError(InviteError):
    status_code = 400
    code = "invite_exhausted"


class NotFoundError(InviteError):
    status_code = 404
    code = "not_found"


class UnauthorizedError(InviteError):
    status_code = 401
    code = "unauthorized"


class RateLimitedError(InviteError):
    status_code = 429
    code = "rate_limited"

    def __init__(
        self, message: str, *, limit: int, remaining: int, reset_at: float, retry_after: int
    ):
        super().__init__(message, retry_after=retry_after)
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at
        self.retry_after = retry_after

    def headers(self) -> dict[str, str]:
        return {
            "Retry-After": str(self.retry_after),
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }


class CommitConflictError(InviteError):
    """Optimistic transaction kept losing to concurrent writers; safe to retry."""

    status_code = 409
    code = "commit_conflict"
