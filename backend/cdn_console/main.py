from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import inspect

from cdn_console.config import settings
from cdn_console.database import engine
from cdn_console.errors import InviteError, RateLimitedError
from cdn_console.logging_config import setup_logging
from cdn_console.middleware.logging import CORRELATION_HEADER, LoggingMiddleware
from cdn_console.middleware.rate_limit import limiter
from cdn_console.routers import invites, public_invites, users
from cdn_console.scheduler import shutdown_scheduler, start_scheduler

# Database tables are managed by Alembic migrations
# Run: alembic upgrade head (from backend/)

REQUIRED_TABLES = {"users", "cdns", "invites", "invite_uploads", "audit_logs"}

setup_logging()
logger = structlog.get_logger()


def check_database_tables() -> None:
    """Fail fast with a clear message when migrations have not been applied."""
    existing = set(inspect(engine).get_table_names())
    missing = REQUIRED_TABLES - existing
    if missing:
        raise RuntimeError(
            f"Database tables missing: {', '.join(sorted(missing))}. "
            "Run 'alembic upgrade head' from the backend directory first."
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Verify the schema, then start/stop the scheduler."""
    check_database_tables()
    start_scheduler()
    yield
    shutdown_scheduler()


app = FastAPI(
    title="CDN Console",
    description="Invitation-based uploads into tenant CDN buckets",
    version="0.1.0",
    lifespan=lifespan,
)


def _correlation_id() -> str | None:
    return structlog.contextvars.get_contextvars().get("correlation_id")


def _with_correlation_id(response: JSONResponse) -> JSONResponse:
    correlation_id = _correlation_id()
    if correlation_id:
        response.headers[CORRELATION_HEADER] = correlation_id
    return response


@app.exception_handler(InviteError)
async def invite_error_handler(request: Request, exc: InviteError) -> JSONResponse:
    headers = exc.headers() if isinstance(exc, RateLimitedError) else None
    return _with_correlation_id(
        JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.to_detail()},
            headers=headers,
        )
    )


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """slowapi limit hit on an admin or identity endpoint."""
    logger.warning("rate_limit_exceeded", limit=str(exc.detail))
    return _with_correlation_id(
        JSONResponse(
            status_code=429,
            content={
                "detail": {"code": "rate_limited", "message": f"Rate limit exceeded: {exc.detail}"}
            },
            headers={"Retry-After": "60"},
        )
    )


@app.exception_handler(Exception)
async def add_correlation_id_to_errors(request: Request, exc: Exception) -> JSONResponse:
    """Render unhandled errors as a bare 500 that still carries the correlation id."""
    if isinstance(exc, HTTPException):
        return _with_correlation_id(
            JSONResponse(
                status_code=exc.status_code,
                content={"detail": exc.detail},
                headers=exc.headers,
            )
        )

    logger.error(
        "unhandled_exception",
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    return _with_correlation_id(
        JSONResponse(status_code=500, content={"detail": "Internal Server Error"})
    )


# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# Request logging with correlation ids
app.add_middleware(LoggingMiddleware)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[
        CORRELATION_HEADER,
        "Retry-After",
        "X-RateLimit-Limit",
        "X-RateLimit-Remaining",
        "X-RateLimit-Reset",
    ],
)

# Routers
app.include_router(public_invites.router, prefix="/api/v1", tags=["public-invites"])
app.include_router(invites.router, prefix="/api/v1", tags=["invites"])
app.include_router(users.router, prefix="/api/v1", tags=["users"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
