import structlog
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from cdn_console.config import settings
from cdn_console.database import get_db
from cdn_console.dependencies import get_current_user
from cdn_console.middleware.rate_limit import limiter
from cdn_console.models.user import User
from cdn_console.schemas.user import ApiKeyResponse, UserResponse
from cdn_console.services.identity_service import rotate_api_key

router = APIRouter()
logger = structlog.get_logger()


@router.get("/users/me", response_model=UserResponse)
@limiter.limit(settings.rate_limit_admin)
async def get_me(
    request: Request,
    user: User = Depends(get_current_user),
):
    return UserResponse.model_validate(user, from_attributes=True)


@router.post("/users/api-key", response_model=ApiKeyResponse)
@limiter.limit(settings.rate_limit_admin)
async def regenerate_api_key(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Rotate the caller's API key.

    The new key is shown once. The key used for this request stops working.
    """
    raw_key = rotate_api_key(db, user)
    logger.info("api_key_rotated", user_id=user.id)
    return ApiKeyResponse(
        api_key=raw_key,
        message="Store this key securely. It will not be shown again.",
    )
