"""Server-side password hashing using PBKDF2-HMAC-SHA256.

Hash format (self-describing, so older costs stay verifiable)::

    $pbkdf2$<iterations>$<base64 salt>$<base64 digest>

The server cost is configured separately from the client vault KDF cost.
"""

import base64
import binascii
import hmac
import os
import re

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..config import DEFAULT_SERVER_HASH_ITERATIONS

ALGORITHM_TAG = "pbkdf2"

_HASH_PATTERN = re.compile(r"^\$pbkdf2\$(\d+)\$([^$]+)\$([^$]+)$")

# Upper bound on a stored cost, so a crafted hash cannot stall a request
MAX_ITERATIONS = 10_000_000


class PasswordHasher:
    """Hash and verify account passwords."""

    SALT_LENGTH = 16
    DIGEST_LENGTH = 32

    def __init__(self, iterations: int = DEFAULT_SERVER_HASH_ITERATIONS):
        if iterations < 1:
            raise ValueError("iterations must be positive")
        self.iterations = iterations

    @classmethod
    def _pbkdf2(cls, password: str, salt: bytes, iterations: int, length: int) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=length,
            salt=salt,
            iterations=iterations,
            backend=default_backend(),
        )
        return kdf.derive(password.encode("utf-8"))

    def hash(self, password: str) -> str:
        """Hash ``password`` with a fresh random salt."""
        salt = os.urandom(self.SALT_LENGTH)
        digest = self._pbkdf2(password, salt, self.iterations, self.DIGEST_LENGTH)
        salt_b64 = base64.b64encode(salt).decode("ascii")
        digest_b64 = base64.b64encode(digest).decode("ascii")
        return f"${ALGORITHM_TAG}${self.iterations}${salt_b64}${digest_b64}"

    def verify(self, password: str, stored: str) -> bool:
        """
        Recompute and compare in constant time.

        Unsupported or malformed hash strings return False.
        """
        parsed = _parse(stored)
        if parsed is None:
            return False
        iterations, salt, expected = parsed
        calculated = self._pbkdf2(password, salt, iterations, len(expected))
        return hmac.compare_digest(calculated, expected)

    def needs_rehash(self, stored: str) -> bool:
        """True if ``stored`` was made with a different cost (or is unreadable)."""
        parsed = _parse(stored)
        return parsed is None or parsed[0] != self.iterations


def _parse(stored):
    if not isinstance(stored, str):
        return None
    match = _HASH_PATTERN.match(stored)
    if not match:
        return None
    iterations = int(match.group(1))
    if iterations < 1 or iterations > MAX_ITERATIONS:
        return None
    try:
        salt = base64.b64decode(match.group(2), validate=True)
        digest = base64.b64decode(match.group(3), validate=True)
    except (binascii.Error, ValueError):
        return None
    if not salt or not digest:
        return None
    return iterations, salt, digest
