"""
Record codec: structured records <-> encrypted wire records.

Each record type has a static table mapping every secret field's bare name
to its encrypted column name (``name`` <-> ``name_encrypted``). The same
table is used by the client codec and by server-side validation, so the
two can never drift apart.

Wire shape::

    {"id": 1, "owner_id": 42, "name_encrypted": "<b64>", "issuer_encrypted": None,
     ..., "modified_at": "2026-01-01T00:00:00+00:00"}
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..exceptions import IntegrityError, ValidationError
from .encryption import DerivedKey, EncryptionService

logger = logging.getLogger(__name__)

DECRYPTION_FAILED = "[DECRYPTION FAILED]"

MAX_ENCRYPTED_LENGTH = 8192

PLAIN_FIELDS = ("id", "owner_id", "modified_at")


@dataclass(frozen=True, eq=False)
class RecordSchema:
    """Static field table for one record type."""

    name: str
    table: str
    encrypted_fields: Mapping[str, str]
    required: Tuple[str, ...] = ()
    plain_fields: Tuple[str, ...] = PLAIN_FIELDS
    _bare_by_encrypted: Dict[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        inverse = {enc: bare for bare, enc in self.encrypted_fields.items()}
        if len(inverse) != len(self.encrypted_fields):
            raise ValueError(f"{self.name}: encrypted column names must be unique")
        missing = set(self.required) - set(self.encrypted_fields)
        if missing:
            raise ValueError(f"{self.name}: unknown required fields {sorted(missing)}")
        object.__setattr__(self, "_bare_by_encrypted", inverse)

    def encrypted_name(self, bare: str) -> str:
        return self.encrypted_fields[bare]

    def bare_name(self, encrypted: str) -> str:
        return self._bare_by_encrypted[encrypted]

    @property
    def encrypted_columns(self) -> Tuple[str, ...]:
        return tuple(self.encrypted_fields.values())

    @property
    def required_columns(self) -> Tuple[str, ...]:
        return tuple(self.encrypted_fields[bare] for bare in self.required)


ACCOUNT_SCHEMA = RecordSchema(
    name="account",
    table="accounts",
    encrypted_fields={
        "name": "name_encrypted",
        "email": "email_encrypted",
        "issuer": "issuer_encrypted",
        "password": "password_encrypted",
        "dob": "dob_encrypted",
        "two_fa_secret": "two_fa_secret_encrypted",
    },
    required=("name", "email", "password"),
)

SECRET_SCHEMA = RecordSchema(
    name="secret",
    table="secrets",
    encrypted_fields={
        "secret_name": "secret_name_encrypted",
        "description": "description_encrypted",
        "account_linked": "account_linked_encrypted",
        "value": "value_encrypted",
    },
    required=("secret_name", "value"),
)

SCHEMAS = {schema.name: schema for schema in (ACCOUNT_SCHEMA, SECRET_SCHEMA)}


def to_wire(record: Mapping[str, Any], key: DerivedKey, schema: RecordSchema) -> Dict[str, Any]:
    """
    Encrypt a record's secret fields.

    None, empty-string and absent secret fields become None without touching
    the cipher. Plain fields are copied unchanged.

    Raises:
        ValidationError: If the record has fields the schema does not know
    """
    unknown = set(record) - set(schema.encrypted_fields) - set(schema.plain_fields)
    if unknown:
        raise ValidationError(
            details=[{"field": name, "msg": "unknown field"} for name in sorted(unknown)]
        )

    wire: Dict[str, Any] = {
        name: record[name] for name in schema.plain_fields if name in record
    }
    for bare, encrypted in schema.encrypted_fields.items():
        value = record.get(bare)
        if value is None or value == "":
            wire[encrypted] = None
        else:
            wire[encrypted] = EncryptionService.encrypt(key, str(value))
    return wire


def from_wire(wire: Mapping[str, Any], key: DerivedKey, schema: RecordSchema) -> Dict[str, Any]:
    """
    Decrypt a wire record.

    A field that fails to decrypt is set to DECRYPTION_FAILED; the other
    fields are still returned.
    """
    record: Dict[str, Any] = {
        name: wire[name] for name in schema.plain_fields if name in wire
    }
    for encrypted, bare in schema._bare_by_encrypted.items():
        value = wire.get(encrypted)
        if not isinstance(value, str) or value == "":
            record[bare] = None
            continue
        try:
            record[bare] = EncryptionService.decrypt(key, value)
        except IntegrityError:
            logger.warning(
                "Failed to decrypt %s.%s (record id=%s)",
                schema.name, bare, wire.get("id"),
            )
            record[bare] = DECRYPTION_FAILED
    return record


async def from_wire_many(
    wires: Iterable[Mapping[str, Any]],
    key: DerivedKey,
    schema: RecordSchema,
) -> List[Dict[str, Any]]:
    """Decrypt many wire records concurrently, preserving input order."""
    return list(await asyncio.gather(
        *(asyncio.to_thread(from_wire, wire, key, schema) for wire in wires)
    ))


def failed_fields(record: Mapping[str, Any]) -> List[str]:
    """Names of fields that could not be decrypted."""
    return [name for name, value in record.items() if value == DECRYPTION_FAILED]


def validate_wire(
    payload: Mapping[str, Any],
    schema: RecordSchema,
    *,
    partial: bool = False,
) -> Dict[str, Optional[str]]:
    """
    Check a client-supplied wire payload before it reaches storage.

    Only encrypted columns are accepted; ids and timestamps are assigned by
    the server. Empty strings are normalized to None.

    Args:
        payload: Encrypted columns from the client
        schema: Record type
        partial: True for updates (required columns may be omitted)

    Returns:
        Normalized mapping of encrypted column -> value

    Raises:
        ValidationError: With per-field details
    """
    if not isinstance(payload, Mapping):
        raise ValidationError(details=[{"field": None, "msg": "payload must be an object"}])

    errors = []
    cleaned: Dict[str, Optional[str]] = {}
    for name, value in payload.items():
        if name not in schema._bare_by_encrypted:
            errors.append({"field": name, "msg": "unknown field"})
            continue
        if value is None or value == "":
            cleaned[name] = None
        elif not isinstance(value, str):
            errors.append({"field": name, "msg": "must be a string or null"})
        elif len(value) > MAX_ENCRYPTED_LENGTH:
            errors.append({"field": name, "msg": f"longer than {MAX_ENCRYPTED_LENGTH} characters"})
        else:
            cleaned[name] = value

    for column in schema.required_columns:
        if column in payload:
            # Present but blank: required columns cannot be cleared
            if column in cleaned and cleaned[column] is None:
                errors.append({"field": column, "msg": "field is required"})
        elif not partial:
            errors.append({"field": column, "msg": "field is required"})

    if partial and not payload:
        errors.append({"field": None, "msg": "no updates provided"})

    if errors:
        raise ValidationError(details=errors)
    return cleaned
