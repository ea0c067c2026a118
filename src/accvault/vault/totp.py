# accvault Vault - Two-Factor Codes
#
# RFC 6238 TOTP codes for the decrypted ``two_fa_secret`` of an account
# record: SHA1, 6 digits, 30 second period (what authenticator apps use).
# Secrets arrive as base32 text or as an otpauth:// URI.

import base64
import binascii
import time
from typing import Any, Mapping, Optional
from urllib.parse import parse_qs, urlparse

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.twofactor import InvalidToken
from cryptography.hazmat.primitives.twofactor.totp import TOTP

from ..exceptions import ValidationError
from .records import DECRYPTION_FAILED

DIGITS = 6
PERIOD = 30


def parse_secret(secret: str) -> bytes:
    """
    Decode a base32 TOTP secret (or the ``secret`` of an otpauth:// URI).

    Spaces, dashes and missing padding are tolerated.

    Raises:
        ValidationError: Not a usable base32 secret
    """
    if not isinstance(secret, str):
        raise ValidationError("Invalid 2FA secret")
    text = secret.strip()
    if text.lower().startswith("otpauth://"):
        values = parse_qs(urlparse(text).query).get("secret")
        text = values[0] if values else ""

    text = text.replace(" ", "").replace("-", "").upper()
    text += "=" * (-len(text) % 8)
    try:
        key = base64.b32decode(text)
    except (binascii.Error, ValueError):
        raise ValidationError("Invalid 2FA secret") from None
    if not key:
        raise ValidationError("Invalid 2FA secret")
    return key


def _totp(secret: str) -> TOTP:
    # Many issuers hand out 80-bit secrets
    return TOTP(
        parse_secret(secret), DIGITS, hashes.SHA1(), PERIOD, enforce_key_length=False,
    )


def generate_code(secret: str, at: Optional[float] = None) -> str:
    """Current code for ``secret`` (or the code at epoch seconds ``at``)."""
    now = time.time() if at is None else at
    return _totp(secret).generate(int(now)).decode("ascii")


def verify_code(secret: str, code: str, at: Optional[float] = None, window: int = 1) -> bool:
    """True if ``code`` matches within ``window`` periods either side of now."""
    now = int(time.time() if at is None else at)
    totp = _totp(secret)
    candidate = code.replace(" ", "").encode("ascii", "replace")
    for step in range(-window, window + 1):
        moment = now + step * PERIOD
        if moment < 0:
            continue
        try:
            totp.verify(candidate, moment)
            return True
        except InvalidToken:
            continue
    return False


def seconds_remaining(at: Optional[float] = None) -> int:
    """Seconds until the current code rolls over (1..30)."""
    now = time.time() if at is None else at
    return PERIOD - int(now) % PERIOD


def code_for_record(record: Mapping[str, Any], at: Optional[float] = None) -> Optional[str]:
    """
    Code for a decoded account record, or None when it has no usable secret.

    A field that failed to decrypt yields None rather than an error.
    """
    secret = record.get("two_fa_secret")
    if not secret or secret == DECRYPTION_FAILED:
        return None
    return generate_code(secret, at)
