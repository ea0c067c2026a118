# accvault Vault - Encryption Service
#
# Master passphrase -> vault key (PBKDF2-HMAC-SHA256, per-user salt)
# Field encryption (AES-256-GCM, fresh 96-bit nonce per call)
# Wire format: base64(nonce || ciphertext || tag)

import asyncio
import base64
import hashlib
import hmac
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.keywrap import (
    InvalidUnwrap,
    aes_key_unwrap,
    aes_key_wrap,
)

from ..config import DEFAULT_CLIENT_KDF_ITERATIONS
from ..exceptions import IntegrityError


class DerivedKey:
    """
    A 256-bit vault key.

    The key bytes never appear in ``repr``, cannot be pickled or copied,
    and only leave the object wrapped under another key (``wrap``).
    Equality is constant-time.
    """

    __slots__ = ("_material",)

    def __init__(self, material: bytes):
        if not isinstance(material, (bytes, bytearray)) or len(material) != EncryptionService.KEY_LENGTH:
            raise ValueError("DerivedKey requires exactly 32 bytes of key material")
        self._material = bytes(material)

    def __repr__(self) -> str:
        return "<DerivedKey [redacted]>"

    __str__ = __repr__

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DerivedKey):
            return NotImplemented
        return hmac.compare_digest(self._material, other._material)

    def __hash__(self) -> int:
        return hash(self.fingerprint())

    def __reduce__(self):
        raise TypeError("DerivedKey cannot be serialized")

    def __copy__(self):
        raise TypeError("DerivedKey cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("DerivedKey cannot be copied")

    def fingerprint(self) -> str:
        """SHA-256 hex digest of the key bytes (safe to compare, not to log)."""
        return hashlib.sha256(self._material).hexdigest()

    def cipher(self) -> AESGCM:
        return AESGCM(self._material)

    def wrap(self, wrapping_key: bytes) -> bytes:
        """Wrap the key under ``wrapping_key`` (RFC 3394 AES key wrap)."""
        return aes_key_wrap(wrapping_key, self._material, default_backend())

    @classmethod
    def unwrap(cls, wrapping_key: bytes, wrapped: bytes) -> "DerivedKey":
        """
        Recover a key produced by ``wrap``.

        Raises:
            IntegrityError: If the wrapped blob or wrapping key is wrong
        """
        try:
            return cls(aes_key_unwrap(wrapping_key, wrapped, default_backend()))
        except (InvalidUnwrap, ValueError):
            raise IntegrityError() from None


class EncryptionService:
    """
    Handles key derivation and field encryption for the vault.

    Flow:
    1. User enters master passphrase
    2. PBKDF2 derives a 256-bit key from passphrase + salt (user id)
    3. AES-256-GCM encrypts/decrypts each field value
    4. Each encryption uses a unique random nonce
    """

    KEY_LENGTH = 32  # 256 bits for AES-256
    NONCE_LENGTH = 12  # 96-bit nonce for GCM (recommended)
    TAG_LENGTH = 16

    @staticmethod
    def derive_key(
        passphrase: str,
        salt: str,
        iterations: int = DEFAULT_CLIENT_KDF_ITERATIONS,
    ) -> DerivedKey:
        """
        Derive the vault key from a passphrase using PBKDF2-HMAC-SHA256.

        Deterministic: the same passphrase, salt and iteration count always
        yield the same key. An empty passphrase is not rejected here.

        Args:
            passphrase: User's master passphrase
            salt: Per-user salt (the stringified account id)
            iterations: PBKDF2 cost

        Returns:
            DerivedKey usable with encrypt()/decrypt()
        """
        if iterations < 1:
            raise ValueError("iterations must be positive")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=EncryptionService.KEY_LENGTH,
            salt=salt.encode('utf-8'),
            iterations=iterations,
            backend=default_backend()
        )
        return DerivedKey(kdf.derive(passphrase.encode('utf-8')))

    @staticmethod
    async def derive_key_async(
        passphrase: str,
        salt: str,
        iterations: int = DEFAULT_CLIENT_KDF_ITERATIONS,
    ) -> DerivedKey:
        """Run derive_key() on a worker thread so the event loop stays responsive."""
        return await asyncio.to_thread(
            EncryptionService.derive_key, passphrase, salt, iterations
        )

    @staticmethod
    def encrypt(key: DerivedKey, plaintext: str) -> str:
        """
        Encrypt a string value with AES-256-GCM.

        Args:
            key: Vault key (from derive_key)
            plaintext: Value to encrypt

        Returns:
            base64(nonce || ciphertext || tag), safe for JSON and TEXT columns
        """
        nonce = os.urandom(EncryptionService.NONCE_LENGTH)
        ciphertext = key.cipher().encrypt(nonce, plaintext.encode('utf-8'), None)
        return EncryptionService.encode_for_storage(nonce + ciphertext)

    @staticmethod
    def decrypt(key: DerivedKey, wire: str) -> str:
        """
        Decrypt a value produced by encrypt().

        Raises:
            IntegrityError: Tag mismatch, wrong key, truncated or malformed
                input. The error never says which.
        """
        try:
            blob = EncryptionService.decode_from_storage(wire)
        except (TypeError, ValueError):
            raise IntegrityError() from None

        if len(blob) < EncryptionService.NONCE_LENGTH + EncryptionService.TAG_LENGTH:
            raise IntegrityError()

        nonce = blob[:EncryptionService.NONCE_LENGTH]
        ciphertext = blob[EncryptionService.NONCE_LENGTH:]
        try:
            plaintext = key.cipher().decrypt(nonce, ciphertext, None)
            return plaintext.decode('utf-8')
        except (InvalidTag, UnicodeDecodeError):
            raise IntegrityError() from None

    @staticmethod
    def encode_for_storage(data: bytes) -> str:
        """Encode binary data as base64 text."""
        return base64.b64encode(data).decode('ascii')

    @staticmethod
    def decode_from_storage(data: str) -> bytes:
        """
        Decode base64 text, accepting only the canonical encoding.

        Raises:
            ValueError: Non-ASCII, non-alphabet or non-canonical input
        """
        if not isinstance(data, str):
            raise TypeError("Encrypted field must be a string")
        raw = base64.b64decode(data.encode('ascii'), validate=True)
        # Reject encodings that differ only in padding bits
        if base64.b64encode(raw).decode('ascii') != data:
            raise ValueError("Non-canonical base64")
        return raw
