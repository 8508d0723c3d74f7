"""Argon2id hashing for user API keys."""

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

# Argon2id: time_cost=3, memory_cost=65536 (64MB), parallelism=4
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)


def hash_api_key(api_key: str) -> str:
    return ph.hash(api_key)


def verify_api_key(api_key: str, api_key_hash: str) -> bool:
    """Check an API key against its stored hash. Corrupt hashes never verify."""
    try:
        return ph.verify(api_key_hash, api_key)
    except (VerificationError, InvalidHashError):
        return False


def api_key_needs_rehash(api_key_hash: str) -> bool:
    """True when the stored hash was produced with weaker parameters than ``ph``."""
    return ph.check_needs_rehash(api_key_hash)
