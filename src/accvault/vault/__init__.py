# accvault Vault Module - Client-side encryption
#
# PBKDF2 key derivation, AES-256-GCM field encryption, record codec and
# the unlock session that owns the derived key, and TOTP codes for stored
# 2FA secrets.

from .encryption import DerivedKey, EncryptionService
from .records import (
    ACCOUNT_SCHEMA,
    DECRYPTION_FAILED,
    SECRET_SCHEMA,
    RecordSchema,
    failed_fields,
    from_wire,
    from_wire_many,
    to_wire,
    validate_wire,
)
from .session import Locked, SessionStorage, Unlocked, VaultSession
from .totp import code_for_record, generate_code, parse_secret, seconds_remaining, verify_code

__all__ = [
    "DerivedKey",
    "EncryptionService",
    "RecordSchema",
    "ACCOUNT_SCHEMA",
    "SECRET_SCHEMA",
    "DECRYPTION_FAILED",
    "to_wire",
    "from_wire",
    "from_wire_many",
    "failed_fields",
    "validate_wire",
    "VaultSession",
    "SessionStorage",
    "Locked",
    "Unlocked",
    "parse_secret",
    "generate_code",
    "verify_code",
    "seconds_remaining",
    "code_for_record",
]
