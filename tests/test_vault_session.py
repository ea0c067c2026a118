"""
Tests for the vault unlock session.

Covers: fixed expiry window, no sliding renewal, same-session restore,
verifier lockout, cipher mediation while locked.
"""

import asyncio
import json

import pytest

from accvault.exceptions import AuthenticationError, VaultLockedError
from accvault.storage.record_store import RecordStore
from accvault.vault.encryption import EncryptionService
from accvault.vault.records import ACCOUNT_SCHEMA, DECRYPTION_FAILED, failed_fields
from accvault.vault.session import (
    CANARY_PLAINTEXT,
    VAULT_STORAGE_KEY,
    Locked,
    SessionStorage,
    Unlocked,
    VaultSession,
)

ITERATIONS = 1_000
WINDOW = 900
STORAGE_ITEM = f"{VAULT_STORAGE_KEY}:42"


@pytest.fixture
def storage():
    return SessionStorage()


@pytest.fixture
def session(storage, clock):
    return VaultSession(
        "42", storage, iterations=ITERATIONS, window_seconds=WINDOW, clock=clock,
    )


def new_session(storage, clock, **kwargs):
    return VaultSession(
        "42", storage, iterations=ITERATIONS, window_seconds=WINDOW, clock=clock, **kwargs,
    )


# ===================================================================
# Unlock and expiry
# ===================================================================


class TestUnlockWindow:

    def test_starts_locked(self, session):
        assert session.state == Locked("initial")
        assert session.is_unlocked is False
        assert session.expiry is None

    @pytest.mark.asyncio
    async def test_unlock_sets_fixed_expiry(self, session, clock):
        state = await session.unlock("CorrectHorse!23")
        assert isinstance(state, Unlocked)
        assert state.expiry == clock.now + WINDOW
        assert state.key == EncryptionService.derive_key("CorrectHorse!23", "42", ITERATIONS)

    @pytest.mark.asyncio
    async def test_unlocked_just_before_expiry(self, session, clock):
        await session.unlock("pw")
        clock.advance(WINDOW - 0.001)
        assert session.is_unlocked

    @pytest.mark.asyncio
    async def test_locked_just_after_expiry(self, session, clock, storage):
        await session.unlock("pw")
        clock.advance(WINDOW + 0.001)
        assert session.check_status() == Locked("expired")
        assert storage.get_item(STORAGE_ITEM) is None

    @pytest.mark.asyncio
    async def test_use_does_not_extend_window(self, session, clock):
        await session.unlock("pw")
        start_expiry = session.expiry
        for _ in range(5):
            clock.advance(WINDOW / 10)
            await session.encrypt("x")
        assert session.expiry == start_expiry
        clock.advance(WINDOW)
        with pytest.raises(VaultLockedError):
            await session.encrypt("x")

    @pytest.mark.asyncio
    async def test_explicit_lock(self, session, storage):
        await session.unlock("pw")
        session.lock()
        assert session.state == Locked("explicit")
        assert storage.get_item(STORAGE_ITEM) is None
        with pytest.raises(VaultLockedError):
            await session.decrypt("AAAA")

    @pytest.mark.asyncio
    async def test_relock_after_expiry_needs_passphrase(self, session, clock):
        await session.unlock("pw")
        clock.advance(WINDOW + 1)
        assert not session.is_unlocked
        await session.unlock("pw")
        assert session.is_unlocked
        assert session.expiry == clock.now + WINDOW


# ===================================================================
# Session storage restore
# ===================================================================


class TestRestore:

    @pytest.mark.asyncio
    async def test_restore_in_same_storage(self, session, storage, clock):
        await session.unlock("pw")
        expiry = session.expiry

        reloaded = new_session(storage, clock)
        clock.advance(60)
        assert reloaded.is_unlocked
        assert reloaded.expiry == expiry
        wire = await session.encrypt("shared")
        assert await reloaded.decrypt(wire) == "shared"

    @pytest.mark.asyncio
    async def test_restored_key_still_expires(self, session, storage, clock):
        await session.unlock("pw")
        clock.advance(WINDOW + 1)
        reloaded = new_session(storage, clock)
        assert not reloaded.is_unlocked
        assert storage.get_item(STORAGE_ITEM) is None

    @pytest.mark.asyncio
    async def test_no_restore_from_other_storage(self, session, storage, clock):
        await session.unlock("pw")
        other = SessionStorage()
        other.set_item(STORAGE_ITEM, storage.get_item(STORAGE_ITEM))

        stranger = new_session(other, clock)
        assert not stranger.is_unlocked
        assert other.get_item(STORAGE_ITEM) is None

    @pytest.mark.asyncio
    async def test_no_restore_after_close(self, session, storage, clock):
        await session.unlock("pw")
        storage.close()
        assert storage.closed
        assert not new_session(storage, clock).is_unlocked

    @pytest.mark.asyncio
    async def test_storage_never_holds_raw_key(self, session, storage):
        state = await session.unlock("pw")
        entry = json.loads(storage.get_item(STORAGE_ITEM))
        raw = EncryptionService.decode_from_storage(entry["wrapped"])
        assert state.key._material not in raw

    def test_corrupt_entry_discarded(self, storage, clock):
        storage.set_item(STORAGE_ITEM, "{not json")
        session = new_session(storage, clock)
        assert not session.is_unlocked
        assert storage.get_item(STORAGE_ITEM) is None

    def test_storage_item_is_per_salt(self, session):
        assert session.storage_name == STORAGE_ITEM

    @pytest.mark.asyncio
    async def test_other_user_does_not_restore_shared_storage(self, storage, clock, audit_logger):
        alice = VaultSession("1", storage, iterations=ITERATIONS, clock=clock)
        await alice.unlock("alice-passphrase")

        bob = VaultSession("2", storage, iterations=ITERATIONS, clock=clock)
        assert not bob.is_unlocked
        with pytest.raises(VaultLockedError):
            await bob.encrypt("x")
        # Alice's entry is left alone
        assert alice.is_unlocked
        assert storage.get_item(alice.storage_name) is not None
        assert "vault.restored" not in audit_logger.log_file.read_text(encoding="utf-8")

    @pytest.mark.asyncio
    async def test_entry_moved_to_other_salt_is_rejected(self, storage, clock):
        alice = VaultSession("1", storage, iterations=ITERATIONS, clock=clock)
        await alice.unlock("alice-passphrase")

        bob = VaultSession("2", storage, iterations=ITERATIONS, clock=clock)
        storage.set_item(bob.storage_name, storage.get_item(alice.storage_name))
        assert not bob.is_unlocked
        assert storage.get_item(bob.storage_name) is None

    @pytest.mark.asyncio
    async def test_restore_checks_verifier(self, storage, clock):
        key = EncryptionService.derive_key("CorrectHorse!23", "42", ITERATIONS)
        verifier = EncryptionService.encrypt(key, CANARY_PLAINTEXT)

        # Unlocked without a verifier, so the wrong passphrase got through
        careless = new_session(storage, clock)
        await careless.unlock("wrong passphrase")

        checked = new_session(storage, clock, verifier=verifier)
        assert not checked.is_unlocked
        assert storage.get_item(STORAGE_ITEM) is None

        await careless.unlock("CorrectHorse!23")
        assert new_session(storage, clock, verifier=verifier).is_unlocked


# ===================================================================
# Lock during a pending unlock
# ===================================================================


class TestLockDuringUnlock:

    @pytest.mark.asyncio
    async def test_lock_voids_pending_unlock(self, session, storage):
        pending = asyncio.create_task(session.unlock("pw"))
        await asyncio.sleep(0)
        session.lock("logout")

        with pytest.raises(VaultLockedError):
            await pending

        assert session.state == Locked("logout")
        assert storage.get_item(STORAGE_ITEM) is None
        with pytest.raises(VaultLockedError):
            await session.encrypt("x")

    @pytest.mark.asyncio
    async def test_unlock_after_lock_still_works(self, session):
        pending = asyncio.create_task(session.unlock("pw"))
        await asyncio.sleep(0)
        session.lock()
        with pytest.raises(VaultLockedError):
            await pending

        await session.unlock("pw")
        assert session.is_unlocked

    @pytest.mark.asyncio
    async def test_voided_unlock_is_not_a_failed_attempt(self, storage, clock):
        key = EncryptionService.derive_key("CorrectHorse!23", "42", ITERATIONS)
        session = new_session(
            storage, clock, verifier=EncryptionService.encrypt(key, CANARY_PLAINTEXT),
        )
        pending = asyncio.create_task(session.unlock("wrong"))
        await asyncio.sleep(0)
        session.lock()
        with pytest.raises(VaultLockedError):
            await pending
        assert session.failed_attempts == 0


# ===================================================================
# Verifier and lockout
# ===================================================================


class TestVerifier:

    @pytest.fixture
    def verifier(self):
        key = EncryptionService.derive_key("CorrectHorse!23", "42", ITERATIONS)
        return EncryptionService.encrypt(key, CANARY_PLAINTEXT)

    @pytest.mark.asyncio
    async def test_make_verifier(self, storage, clock):
        setup = new_session(storage, clock)
        with pytest.raises(VaultLockedError):
            setup.make_verifier()
        await setup.unlock("CorrectHorse!23")
        canary = setup.make_verifier()
        setup.lock()

        session = new_session(storage, clock, verifier=canary)
        await session.unlock("CorrectHorse!23")
        assert session.is_unlocked

    @pytest.mark.asyncio
    async def test_correct_passphrase_unlocks(self, verifier, storage, clock):
        session = new_session(storage, clock, verifier=verifier)
        await session.unlock("CorrectHorse!23")
        assert session.is_unlocked

    @pytest.mark.asyncio
    async def test_wrong_passphrase_rejected(self, verifier, storage, clock):
        session = new_session(storage, clock, verifier=verifier)
        with pytest.raises(AuthenticationError):
            await session.unlock("wrong")
        assert not session.is_unlocked
        assert session.failed_attempts == 1
        # First failure does not lock out
        assert session.lockout_until is None

    @pytest.mark.asyncio
    async def test_lockout_grows(self, verifier, storage, clock):
        session = new_session(storage, clock, verifier=verifier)
        for _ in range(2):
            with pytest.raises(AuthenticationError):
                await session.unlock("wrong")
        assert session.lockout_until == clock.now + 2

        # Even the right passphrase is refused during lockout
        with pytest.raises(AuthenticationError):
            await session.unlock("CorrectHorse!23")

        clock.advance(3)
        await session.unlock("CorrectHorse!23")
        assert session.failed_attempts == 0
        assert session.lockout_until is None

    @pytest.mark.asyncio
    async def test_lockout_is_capped(self, verifier, storage, clock):
        session = new_session(storage, clock, verifier=verifier)
        for _ in range(10):
            clock.advance(VaultSession.MAX_LOCKOUT_SECONDS + 1)
            with pytest.raises(AuthenticationError):
                await session.unlock("wrong")
        assert session.lockout_until == clock.now + VaultSession.MAX_LOCKOUT_SECONDS

    @pytest.mark.asyncio
    async def test_without_verifier_wrong_passphrase_unlocks(self, storage, clock):
        session = new_session(storage, clock)
        await session.unlock("anything")
        assert session.is_unlocked


# ===================================================================
# Audit trail
# ===================================================================


@pytest.mark.asyncio
async def test_unlock_audited_without_secrets(session, audit_logger):
    await session.unlock("CorrectHorse!23")
    session.lock()
    text = audit_logger.log_file.read_text(encoding="utf-8")
    assert "vault.unlocked" in text
    assert "vault.locked" in text
    assert "CorrectHorse!23" not in text


# ===================================================================
# End to end: client session + server store
# ===================================================================


@pytest.mark.asyncio
async def test_round_trip_through_record_store(db, admin, clock):
    storage = SessionStorage()
    session = VaultSession(
        admin.salt, storage, iterations=ITERATIONS, window_seconds=WINDOW, clock=clock,
    )
    await session.unlock("CorrectHorse!23")

    wire = await session.encode_record(
        {"name": "GitHub", "email": "me@example.com", "password": "hunter2"},
        ACCOUNT_SCHEMA,
    )
    store = RecordStore(db, ACCOUNT_SCHEMA)
    record_id = store.create(admin.id, {k: v for k, v in wire.items() if k.endswith("_encrypted")})

    stored = store.get(admin.id, record_id)
    assert "hunter2" not in json.dumps(stored)

    record = await session.decode_record(stored, ACCOUNT_SCHEMA)
    assert record["password"] == "hunter2"
    assert record["id"] == record_id

    # A different passphrase decodes to failure markers, not an exception
    other = VaultSession(admin.salt, SessionStorage(), iterations=ITERATIONS, clock=clock)
    await other.unlock("CorrectHorse!24")
    [garbled] = await other.decode_records(store.list(admin.id), ACCOUNT_SCHEMA)
    assert garbled["password"] == DECRYPTION_FAILED
    assert set(failed_fields(garbled)) == {"name", "email", "password"}
