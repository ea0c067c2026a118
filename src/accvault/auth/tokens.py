"""Single-use bearer tokens (sessions, password resets).

Tokens carry at least 256 bits of entropy, so a plain SHA-256 digest is
enough to store them; only the digest is ever persisted.
"""

import hashlib
import secrets

DEFAULT_TOKEN_BYTES = 32


def generate_token(byte_length: int = DEFAULT_TOKEN_BYTES) -> str:
    """Return a URL-safe random token. Hand it to the client exactly once."""
    if byte_length < 16:
        raise ValueError("token must carry at least 16 random bytes")
    return secrets.token_urlsafe(byte_length)


def hash_token(token: str) -> str:
    """SHA-256 hex digest of ``token`` (UTF-8)."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
