import secrets
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from cdn_console.errors import UnauthorizedError
from cdn_console.models.user import User, UserRole
from cdn_console.services.crypto_utils import (
    api_key_needs_rehash,
    hash_api_key,
    verify_api_key,
)

API_KEY_PREFIX = "sk-"
API_KEY_LOOKUP_LENGTH = 16


def get_api_key_lookup(api_key: str) -> str:
    """Extract the indexed lookup prefix from an API key."""
    return api_key[:API_KEY_LOOKUP_LENGTH]


def create_user(
    db: Session,
    email: str,
    role: UserRole = UserRole.STANDARD,
    display_name: str | None = None,
    cdn_ids: list[str] | None = None,
) -> tuple[User, str]:
    """
    Create a user together with a fresh API key.

    Returns tuple of (user, raw_api_key). The raw key is only available here.
    """
    user = User(email=email, role=role, display_name=display_name, cdn_ids=cdn_ids or [])
    db.add(user)
    raw_key = _assign_api_key(user)
    db.commit()
    db.refresh(user)
    return user, raw_key


def rotate_api_key(db: Session, user: User) -> str:
    """Replace a user's API key. The previous key stops working immediately."""
    raw_key = _assign_api_key(user)
    db.commit()
    return raw_key


def _assign_api_key(user: User) -> str:
    raw_key = API_KEY_PREFIX + secrets.token_hex(32)
    user.api_key_prefix = get_api_key_lookup(raw_key)
    user.api_key_hash = hash_api_key(raw_key)
    user.api_key_generated_at = datetime.now(UTC).replace(tzinfo=None)
    return raw_key


def resolve_user(db: Session, credential: str | None) -> User | None:
    """
    Resolve a bearer credential to a user.

    Uses indexed prefix lookup, then Argon2 verification.
    """
    if not credential or not credential.startswith(API_KEY_PREFIX):
        return None

    candidates = db.scalars(
        select(User).where(User.api_key_prefix == get_api_key_lookup(credential))
    ).all()

    for user in candidates:
        if user.api_key_hash and verify_api_key(credential, user.api_key_hash):
            if api_key_needs_rehash(user.api_key_hash):
                user.api_key_hash = hash_api_key(credential)
                db.commit()
            return user

    return None


def require_admin_user(db: Session, credential: str | None) -> User:
    user = resolve_user(db, credential)
    if user is None or not user.is_admin:
        raise UnauthorizedError("Admin access required")
    return user
