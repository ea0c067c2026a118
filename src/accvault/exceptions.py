"""
accvault Exception Classes

Every error carries a machine-readable ``kind`` and a generic message that
is safe to return to a caller. Internal details belong in the log, never in
the message.
"""

from typing import Any, Optional


class VaultError(Exception):
    """Base exception for accvault operations"""

    kind = "internal"
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None, details: Optional[Any] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload = {"error": self.message, "kind": self.kind}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class AuthenticationError(VaultError):
    """Invalid credentials, invalid/expired/used token or missing bearer header"""
    kind = "authentication"
    default_message = "Authentication failed"


class IntegrityError(VaultError):
    """Authenticated decryption failed (wrong key or tampered ciphertext)"""
    kind = "integrity"
    default_message = "Decryption failed"


class ValidationError(VaultError):
    """Malformed input shape or size"""
    kind = "validation"
    default_message = "Validation failed"


class ConflictError(VaultError):
    """Uniqueness, ownership or one-time constraint violated"""
    kind = "conflict"
    default_message = "Request conflicts with existing state"


class VaultLockedError(VaultError):
    """Raised when the vault key is needed but the vault is locked"""
    kind = "vault_locked"
    default_message = "Vault is locked"


class RecordNotFoundError(VaultError):
    """Raised when a record does not exist or belongs to another user"""
    kind = "not_found"
    default_message = "Record not found"


class PermissionDeniedError(VaultError):
    """Raised when an authenticated user lacks the required role"""
    kind = "forbidden"
    default_message = "Forbidden"
