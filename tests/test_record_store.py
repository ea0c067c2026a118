"""Tests for owner-scoped record storage."""

import pytest

from accvault.exceptions import RecordNotFoundError, ValidationError
from accvault.storage.record_store import RecordStore
from accvault.vault.encryption import EncryptionService
from accvault.vault.records import ACCOUNT_SCHEMA, SECRET_SCHEMA, to_wire


@pytest.fixture
def key():
    return EncryptionService.derive_key("CorrectHorse!23", "42", 1_000)


@pytest.fixture
def accounts(db):
    return RecordStore(db, ACCOUNT_SCHEMA)


@pytest.fixture
def secrets_store(db):
    return RecordStore(db, SECRET_SCHEMA)


def account_payload(key, name="GitHub"):
    return to_wire({"name": name, "email": "me@example.com", "password": "pw"}, key, ACCOUNT_SCHEMA)


def test_create_and_get(accounts, alice, key):
    payload = account_payload(key)
    record_id = accounts.create(alice.id, payload)
    row = accounts.get(alice.id, record_id)
    assert row["id"] == record_id
    assert row["owner_id"] == alice.id
    assert row["name_encrypted"] == payload["name_encrypted"]
    assert row["issuer_encrypted"] is None
    assert row["modified_at"]


def test_create_validates(accounts, alice, key):
    payload = account_payload(key)
    del payload["password_encrypted"]
    with pytest.raises(ValidationError):
        accounts.create(alice.id, payload)


def test_list_is_owner_scoped(accounts, alice, bob, key):
    accounts.create(alice.id, account_payload(key, "a1"))
    accounts.create(alice.id, account_payload(key, "a2"))
    accounts.create(bob.id, account_payload(key, "b1"))
    assert len(accounts.list(alice.id)) == 2
    assert len(accounts.list(bob.id)) == 1
    assert all(row["owner_id"] == bob.id for row in accounts.list(bob.id))


def test_list_newest_first(accounts, alice, key):
    first = accounts.create(alice.id, account_payload(key))
    second = accounts.create(alice.id, account_payload(key))
    accounts.update(alice.id, first, {"dob_encrypted": EncryptionService.encrypt(key, "2000-01-01")})
    assert [row["id"] for row in accounts.list(alice.id)] == [first, second]


def test_other_owner_sees_not_found(accounts, alice, bob, key):
    record_id = accounts.create(alice.id, account_payload(key))
    with pytest.raises(RecordNotFoundError):
        accounts.get(bob.id, record_id)
    with pytest.raises(RecordNotFoundError):
        accounts.update(bob.id, record_id, {"dob_encrypted": None})
    with pytest.raises(RecordNotFoundError):
        accounts.delete(bob.id, record_id)
    assert accounts.get(alice.id, record_id)["id"] == record_id


def test_update_partial(accounts, alice, key):
    payload = account_payload(key)
    record_id = accounts.create(alice.id, payload)
    before = accounts.get(alice.id, record_id)
    new_password = EncryptionService.encrypt(key, "new")
    accounts.update(alice.id, record_id, {"password_encrypted": new_password})
    after = accounts.get(alice.id, record_id)
    assert after["password_encrypted"] == new_password
    assert after["name_encrypted"] == before["name_encrypted"]
    assert after["modified_at"] >= before["modified_at"]


def test_update_cannot_clear_required(accounts, alice, key):
    record_id = accounts.create(alice.id, account_payload(key))
    with pytest.raises(ValidationError):
        accounts.update(alice.id, record_id, {"name_encrypted": None})


def test_delete(secrets_store, alice, key):
    wire = to_wire({"secret_name": "aws", "value": "AKIA..."}, key, SECRET_SCHEMA)
    record_id = secrets_store.create(alice.id, wire)
    secrets_store.delete(alice.id, record_id)
    assert secrets_store.list(alice.id) == []
    with pytest.raises(RecordNotFoundError):
        secrets_store.get(alice.id, record_id)


def test_records_removed_with_owner(accounts, auth, admin, alice, key):
    accounts.create(alice.id, account_payload(key))
    auth.delete_user(admin, alice.id)
    assert accounts.list(alice.id) == []
