from functools import lru_cache

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from cdn_console.config import settings
from cdn_console.database import get_db
from cdn_console.errors import UnauthorizedError
from cdn_console.middleware.rate_limit import get_real_client_ip
from cdn_console.models.user import User
from cdn_console.services.audit_service import ClientInfo
from cdn_console.services.identity_service import require_admin_user, resolve_user
from cdn_console.services.storage_service import ObjectStorageService


def extract_bearer_token(authorization: str | None = Header(None)) -> str | None:
    """Extract token from Authorization header, None when absent or malformed."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[7:].strip() or None


def get_current_user(
    credential: str | None = Depends(extract_bearer_token),
    db: Session = Depends(get_db),
) -> User:
    user = resolve_user(db, credential)
    if user is None:
        raise UnauthorizedError("Invalid or missing API key")
    return user


def require_admin(
    credential: str | None = Depends(extract_bearer_token),
    db: Session = Depends(get_db),
) -> User:
    return require_admin_user(db, credential)


@lru_cache
def get_storage() -> ObjectStorageService:
    return ObjectStorageService(settings)


def get_client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip=get_real_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
