import hashlib
import secrets

TOKEN_BYTES = 32  # 256 bits
SUFFIX_BYTES = 4


def generate_invite_token() -> str:
    """Generate a URL-safe invite token (base64url, no padding)."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_invite_token(token: str) -> str:
    """SHA-256 hex digest of a token. Only this value is ever persisted."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_file_suffix() -> str:
    """Short random suffix appended to object keys to avoid collisions."""
    return secrets.token_urlsafe(SUFFIX_BYTES)
