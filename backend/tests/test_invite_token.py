import hashlib
import re

from cdn_console.services.invite_token import (
    generate_file_suffix,
    generate_invite_token,
    hash_invite_token,
)

URL_SAFE = re.compile(r"^[A-Za-z0-9_-]+$")


def test_token_is_url_safe_without_padding():
    token = generate_invite_token()
    assert URL_SAFE.match(token)
    assert "=" not in token
    # 32 random bytes -> 43 base64url characters
    assert len(token) == 43


def test_tokens_are_unique():
    tokens = {generate_invite_token() for _ in range(200)}
    assert len(tokens) == 200


def test_hash_is_deterministic_sha256_hex():
    token = generate_invite_token()
    assert hash_invite_token(token) == hash_invite_token(token)
    assert hash_invite_token(token) == hashlib.sha256(token.encode()).hexdigest()
    assert len(hash_invite_token(token)) == 64


def test_distinct_tokens_hash_differently():
    hashes = {hash_invite_token(generate_invite_token()) for _ in range(200)}
    assert len(hashes) == 200


def test_file_suffix_is_short_and_url_safe():
    suffix = generate_file_suffix()
    assert URL_SAFE.match(suffix)
    assert len(suffix) == 6
