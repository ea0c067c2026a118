# accvault Vault - Unlock Session
#
# Holds the derived vault key in memory for a fixed window after unlock.
#
# States:   Locked(reason)  --unlock-->  Unlocked(key, expiry)
#           Unlocked  --lock / expiry / logout-->  Locked
#
# - Expiry is fixed at unlock time; using the key never extends it.
# - A wrapped copy of the key plus its expiry is kept in SessionStorage so a
#   reload inside the same browsing session can restore it. Entries are
#   stored per salt and only restore into a session with the same salt (and
#   verifier, when one is set). SessionStorage is in-memory only and its
#   wrapping key dies with it.
# - lock() wins over an unlock that is still deriving: the derived key is
#   dropped instead of committed.
# - The key is never written to durable storage, wrapped or unwrapped.

import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from ..config import DEFAULT_CLIENT_KDF_ITERATIONS, DEFAULT_UNLOCK_WINDOW_SECONDS
from ..core import EventSeverity, EventType, get_audit_logger
from ..exceptions import AuthenticationError, IntegrityError, VaultLockedError
from .encryption import DerivedKey, EncryptionService
from .records import RecordSchema, from_wire, from_wire_many, to_wire

logger = logging.getLogger(__name__)

VAULT_STORAGE_KEY = "accvault-vault-session"
CANARY_PLAINTEXT = "ACCVAULT_VAULT_OK"


@dataclass(frozen=True)
class Locked:
    """No key held. ``reason``: initial, explicit, expired or logout."""
    reason: str = "initial"

    @property
    def is_unlocked(self) -> bool:
        return False


@dataclass(frozen=True)
class Unlocked:
    """Key held until ``expiry`` (epoch seconds)."""
    key: DerivedKey
    expiry: float

    @property
    def is_unlocked(self) -> bool:
        return True


VaultState = Union[Locked, Unlocked]


class SessionStorage:
    """
    Session-scoped key/value store (the browser's sessionStorage).

    One instance lives as long as one browsing session. Key material saved
    here is wrapped under a random wrapping key owned by this instance, so
    it cannot be restored from any other SessionStorage, and ``close()``
    makes it unrecoverable.
    """

    def __init__(self):
        self._items: Dict[str, str] = {}
        self._wrapping_key: Optional[bytes] = os.urandom(32)

    @property
    def closed(self) -> bool:
        return self._wrapping_key is None

    def get_item(self, name: str) -> Optional[str]:
        return self._items.get(name)

    def set_item(self, name: str, value: str) -> None:
        if self.closed:
            raise RuntimeError("SessionStorage is closed")
        self._items[name] = value

    def remove_item(self, name: str) -> None:
        self._items.pop(name, None)

    def save_key(self, name: str, key: DerivedKey, expiry: float, owner: str) -> None:
        """Store a wrapped copy of ``key`` with its expiry, tagged with ``owner``."""
        if self.closed:
            raise RuntimeError("SessionStorage is closed")
        wrapped = EncryptionService.encode_for_storage(key.wrap(self._wrapping_key))
        self.set_item(name, json.dumps({"wrapped": wrapped, "expiry": expiry, "owner": owner}))

    def load_key(self, name: str, owner: str) -> Optional[Tuple[DerivedKey, float]]:
        """
        Return the stored (key, expiry), or None if nothing is stored.

        Raises:
            IntegrityError: If the stored entry cannot be unwrapped or was
                saved for a different owner
        """
        raw = self.get_item(name)
        if raw is None:
            return None
        if self.closed:
            raise IntegrityError()
        try:
            entry = json.loads(raw)
            wrapped = EncryptionService.decode_from_storage(entry["wrapped"])
            expiry = float(entry["expiry"])
            stored_owner = entry["owner"]
        except (ValueError, TypeError, KeyError):
            raise IntegrityError() from None
        if stored_owner != owner:
            raise IntegrityError()
        return DerivedKey.unwrap(self._wrapping_key, wrapped), expiry

    def close(self) -> None:
        """End the browsing session: drop all items and the wrapping key."""
        self._items.clear()
        self._wrapping_key = None


class VaultSession:
    """
    Owns the vault key for one user and mediates every cipher call.

    Usage::

        session = VaultSession(salt=str(user_id), storage=SessionStorage())
        await session.unlock("passphrase")
        wire = await session.encode_record(record, ACCOUNT_SCHEMA)
        record = await session.decode_record(wire, ACCOUNT_SCHEMA)
        session.lock()
    """

    MAX_LOCKOUT_SECONDS = 16

    def __init__(
        self,
        salt: str,
        storage: SessionStorage,
        *,
        iterations: int = DEFAULT_CLIENT_KDF_ITERATIONS,
        window_seconds: float = DEFAULT_UNLOCK_WINDOW_SECONDS,
        verifier: Optional[str] = None,
        clock: Callable[[], float] = time.time,
        user_id: Optional[Any] = None,
    ):
        """
        Args:
            salt: Per-user KDF salt (the stringified account id)
            storage: Session-scoped storage for the wrapped key
            iterations: Client-side PBKDF2 cost
            window_seconds: How long an unlock lasts
            verifier: Optional canary from make_verifier(); when set, unlock
                rejects passphrases that do not decrypt it
            clock: Returns the current time in epoch seconds
            user_id: Only used for audit context
        """
        self._salt = salt
        self._storage = storage
        self._iterations = iterations
        self._window = window_seconds
        self._verifier = verifier
        self._clock = clock
        self._user_id = user_id if user_id is not None else salt
        self._state: VaultState = Locked("initial")
        self.storage_name = f"{VAULT_STORAGE_KEY}:{salt}"
        # Bumped by lock(); an unlock that started under an older value is void
        self._generation = 0

        # Growing delay after wrong passphrases (verifier only)
        self.failed_attempts = 0
        self.lockout_until: Optional[float] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> VaultState:
        return self._state

    @property
    def is_unlocked(self) -> bool:
        return self.check_status().is_unlocked

    @property
    def expiry(self) -> Optional[float]:
        state = self.check_status()
        return state.expiry if isinstance(state, Unlocked) else None

    def _audit(self, event_type: EventType, severity: EventSeverity, message: str, **details):
        get_audit_logger().log_event(
            event_type=event_type,
            severity=severity,
            message=message,
            details=details,
            user_context={"user_id": self._user_id},
        )

    def check_status(self) -> VaultState:
        """
        Re-evaluate the state against the clock.

        Unlocked past its expiry -> Locked("expired"). Locked with an
        unexpired wrapped key saved under this session's salt -> Unlocked
        with the stored expiry, provided the key passes the verifier.
        """
        now = self._clock()
        state = self._state

        if isinstance(state, Unlocked):
            if now > state.expiry:
                self._discard(Locked("expired"))
                self._audit(EventType.VAULT_EXPIRED, EventSeverity.INFO, "Vault locked on expiry")
            return self._state

        try:
            stored = self._storage.load_key(self.storage_name, self._salt)
        except IntegrityError:
            logger.warning("Discarding unreadable vault session for user=%s", self._user_id)
            self._storage.remove_item(self.storage_name)
            return self._state

        if stored is None:
            return self._state

        key, expiry = stored
        if now > expiry:
            self._storage.remove_item(self.storage_name)
            return self._state
        if not self._verifies(key):
            logger.warning("Discarding stored vault key that fails the verifier for user=%s", self._user_id)
            self._storage.remove_item(self.storage_name)
            return self._state

        self._state = Unlocked(key=key, expiry=expiry)
        self._audit(EventType.VAULT_RESTORED, EventSeverity.INFO, "Vault restored from session storage")
        return self._state

    def _discard(self, locked: Locked) -> None:
        self._state = locked
        self._storage.remove_item(self.storage_name)

    def _verifies(self, key: DerivedKey) -> bool:
        if self._verifier is None:
            return True
        try:
            return EncryptionService.decrypt(key, self._verifier) == CANARY_PLAINTEXT
        except IntegrityError:
            return False

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def unlock(self, passphrase: str) -> Unlocked:
        """
        Derive the key and unlock for one window.

        The derivation runs on a worker thread. A failed unlock is never
        retried; the caller must ask for the passphrase again.

        Raises:
            AuthenticationError: Verifier rejected the passphrase, or a
                lockout from earlier failures is still running
            VaultLockedError: lock() was called while the key was being
                derived
        """
        now = self._clock()
        if self.lockout_until is not None and now < self.lockout_until:
            self._audit(
                EventType.VAULT_UNLOCK_FAILED, EventSeverity.ALERT,
                "Unlock attempt during lockout period",
            )
            raise AuthenticationError("Too many failed attempts. Try again later.")

        generation = self._generation
        key = await EncryptionService.derive_key_async(passphrase, self._salt, self._iterations)

        if self._generation != generation:
            logger.info("Dropping key derived for user=%s: vault locked during unlock", self._user_id)
            raise VaultLockedError("Vault was locked during unlock")

        if not self._verifies(key):
            self._handle_failed_unlock()
            raise AuthenticationError("Unable to unlock vault")

        self.failed_attempts = 0
        self.lockout_until = None

        expiry = self._clock() + self._window
        self._state = Unlocked(key=key, expiry=expiry)
        self._storage.save_key(self.storage_name, key, expiry, owner=self._salt)
        self._audit(
            EventType.VAULT_UNLOCKED, EventSeverity.INFO, "Vault unlocked",
            window_seconds=self._window,
        )
        return self._state

    def _handle_failed_unlock(self) -> None:
        self.failed_attempts += 1
        delay = min(2 ** (self.failed_attempts - 1), self.MAX_LOCKOUT_SECONDS)
        # First failure costs nothing
        if self.failed_attempts > 1:
            self.lockout_until = self._clock() + delay
        self._audit(
            EventType.VAULT_UNLOCK_FAILED, EventSeverity.ALERT,
            "Vault unlock failed: incorrect passphrase",
            attempt=self.failed_attempts,
        )

    def lock(self, reason: str = "explicit") -> None:
        """Discard the in-memory key and the stored wrapped copy.

        Also voids any unlock() still deriving its key.
        """
        self._generation += 1
        was_unlocked = isinstance(self._state, Unlocked)
        self._discard(Locked(reason))
        if was_unlocked:
            self._audit(EventType.VAULT_LOCKED, EventSeverity.INFO, "Vault locked", reason=reason)

    def make_verifier(self) -> str:
        """Encrypt the canary under the current key for later unlock checks."""
        return EncryptionService.encrypt(self._require_key(), CANARY_PLAINTEXT)

    # ------------------------------------------------------------------
    # Cipher mediation
    # ------------------------------------------------------------------

    def _require_key(self) -> DerivedKey:
        state = self.check_status()
        if not isinstance(state, Unlocked):
            raise VaultLockedError()
        return state.key

    async def encrypt(self, plaintext: str) -> str:
        return EncryptionService.encrypt(self._require_key(), plaintext)

    async def decrypt(self, wire: str) -> str:
        return EncryptionService.decrypt(self._require_key(), wire)

    async def encode_record(self, record: Mapping[str, Any], schema: RecordSchema) -> Dict[str, Any]:
        return to_wire(record, self._require_key(), schema)

    async def decode_record(self, wire: Mapping[str, Any], schema: RecordSchema) -> Dict[str, Any]:
        return from_wire(wire, self._require_key(), schema)

    async def decode_records(
        self,
        wires: Iterable[Mapping[str, Any]],
        schema: RecordSchema,
    ) -> List[Dict[str, Any]]:
        return await from_wire_many(wires, self._require_key(), schema)
