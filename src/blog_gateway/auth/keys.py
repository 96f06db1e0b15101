"""API key generation, hashing and bearer header parsing."""

from __future__ import annotations

import hashlib
import secrets

BEARER_PREFIX = "Bearer "
MIN_TOKEN_LENGTH = 10


def generate_api_key(environment: str = "live") -> tuple[str, str, str]:
    """Generate API key, return (full_key, key_hash, key_prefix).

    Full key is shown only once at creation time.
    Only hash and prefix are stored in DB.

    Args:
        environment: Key environment, typically 'live' or 'test'.
    """
    random_part = secrets.token_hex(16)
    full_key = f"bg_{environment}_{random_part}"
    return full_key, hash_api_key(full_key), f"bg_{environment}_{random_part[:4]}"


def hash_api_key(key: str) -> str:
    """SHA-256 hex digest used as the lookup key for stored API keys."""
    return hashlib.sha256(key.encode()).hexdigest()


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token of a ``Bearer`` header, or None if malformed.

    Tokens shorter than ``MIN_TOKEN_LENGTH`` are treated as malformed.
    """
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX) :].strip()
    if len(token) < MIN_TOKEN_LENGTH:
        return None
    return token
