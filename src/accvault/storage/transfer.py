"""Bulk export and import of the whole database.

Wire records and password hashes move verbatim: nothing is decrypted or
re-encrypted. Import is admin-only and, with ``truncate``, wipes every
dependent table before inserting.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel

from ..auth.service import UserSummary, parse_request, require_admin
from ..core import EventSeverity, EventType, get_audit_logger
from ..exceptions import ConflictError, ValidationError
from ..vault.records import ACCOUNT_SCHEMA, SECRET_SCHEMA, RecordSchema
from .database import VaultDatabase

logger = logging.getLogger(__name__)

# Children first, so foreign keys never dangle mid-truncate
TRUNCATE_ORDER = ("password_reset_tokens", "sessions", "accounts", "secrets", "admins", "users")


class UserRow(BaseModel):
    id: int
    username: str
    email: str
    password_hash: str
    role: Literal["user", "admin"]
    created_at: str


class AccountRow(BaseModel):
    id: int
    owner_id: int
    name_encrypted: str
    email_encrypted: str
    issuer_encrypted: Optional[str] = None
    password_encrypted: str
    dob_encrypted: Optional[str] = None
    two_fa_secret_encrypted: Optional[str] = None
    modified_at: str


class SecretRow(BaseModel):
    id: int
    owner_id: int
    secret_name_encrypted: str
    description_encrypted: Optional[str] = None
    account_linked_encrypted: Optional[str] = None
    value_encrypted: str
    modified_at: str


class ImportPayload(BaseModel):
    truncate: bool = False
    users: List[UserRow] = []
    accounts: List[AccountRow] = []
    secrets: List[SecretRow] = []


def export_data(db: VaultDatabase, actor: Optional[UserSummary] = None) -> Dict[str, Any]:
    """Dump users, admins and both record tables as plain JSON-able dicts."""
    if actor is not None:
        require_admin(actor)
    with db.transaction() as conn:
        tables = {
            name: [dict(row) for row in conn.execute(f"SELECT * FROM {name} ORDER BY rowid")]
            for name in ("users", "admins", "accounts", "secrets")
        }

    get_audit_logger().log_event(
        event_type=EventType.DATA_EXPORTED,
        severity=EventSeverity.CRITICAL,
        message="Database exported",
        details={name: len(rows) for name, rows in tables.items()},
        user_context={"user_id": actor.id if actor else None},
    )
    return {"exported_at": datetime.now(timezone.utc).isoformat(), **tables}


def _upsert(conn, table: str, row: Mapping[str, Any]) -> None:
    # ON CONFLICT DO UPDATE keeps the row (REPLACE would delete it and
    # cascade into dependent tables)
    columns = ", ".join(row)
    placeholders = ", ".join("?" for _ in row)
    updates = ", ".join(f"{column} = excluded.{column}" for column in row if column != "id")
    try:
        conn.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}",
            tuple(row.values()),
        )
    except sqlite3.IntegrityError:
        raise ConflictError(f"Imported {table} row id={row['id']} conflicts with existing data") from None


def _record_row(row: BaseModel, schema: RecordSchema) -> Dict[str, Any]:
    data = row.model_dump()
    columns = ("id", "owner_id") + schema.encrypted_columns + ("modified_at",)
    return {column: data[column] for column in columns}


def import_data(db: VaultDatabase, payload: Mapping[str, Any], actor: UserSummary) -> Dict[str, int]:
    """Load an export document in a single transaction.

    Args:
        db: Target database
        payload: Export document, optionally with ``truncate: true``
        actor: Must be an administrator

    Returns:
        Counts of imported rows per table

    Raises:
        PermissionDeniedError: Actor is not an admin
        ValidationError: Payload does not match the export shape
    """
    require_admin(actor)
    if not isinstance(payload, Mapping):
        raise ValidationError(details=[{"field": None, "msg": "payload must be an object"}])
    request = parse_request(ImportPayload, **payload)

    with db.transaction(immediate=True) as conn:
        if request.truncate:
            for table in TRUNCATE_ORDER:
                conn.execute(f"DELETE FROM {table}")
            logger.warning("Import truncated all user data tables")

        for user in request.users:
            _upsert(conn, "users", user.model_dump())
            if user.role == "admin":
                conn.execute("INSERT OR IGNORE INTO admins (user_id) VALUES (?)", (user.id,))
            else:
                conn.execute("DELETE FROM admins WHERE user_id = ?", (user.id,))
        for account in request.accounts:
            _upsert(conn, ACCOUNT_SCHEMA.table, _record_row(account, ACCOUNT_SCHEMA))
        for secret in request.secrets:
            _upsert(conn, SECRET_SCHEMA.table, _record_row(secret, SECRET_SCHEMA))

        if any(user.role == "admin" for user in request.users):
            conn.execute("UPDATE _config SET value = 'true' WHERE key = 'admin_initialized'")

    counts = {
        "users": len(request.users),
        "accounts": len(request.accounts),
        "secrets": len(request.secrets),
    }
    get_audit_logger().log_event(
        event_type=EventType.DATA_IMPORTED,
        severity=EventSeverity.CRITICAL,
        message="Database imported",
        details={"truncate": request.truncate, **counts},
        user_context={"user_id": actor.id},
    )
    return counts
