"""
Opaque single-use tokens for email verification and password reset.

The raw token is only ever emailed; the database keeps its SHA-256 digest.
"""

import hashlib
import secrets

DEFAULT_TOKEN_BYTES = 32


def generate_secure_token(byte_length: int = DEFAULT_TOKEN_BYTES) -> str:
    """Return a hex string drawn from the OS CSPRNG (2 chars per byte)."""
    if byte_length < 16:
        raise ValueError("byte_length must be at least 16")
    return secrets.token_hex(byte_length)


def hash_secure_token(token: str) -> str:
    """One-way digest of a token for storage and lookup."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
