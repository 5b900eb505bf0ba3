"""Join-token generation and hashing."""

from __future__ import annotations

import hashlib
import secrets


def generate_token() -> str:
    """Return 32 random bytes as a hex string."""
    return secrets.token_hex(32)


def hash_token(raw: str) -> str:
    """Return the SHA-256 hex digest of a raw token."""
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()