"""Owner-scoped storage of encrypted wire records.

Every statement carries ``owner_id`` in its WHERE clause. A record that
belongs to someone else is reported exactly like a missing one.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping

from ..exceptions import RecordNotFoundError
from ..vault.records import RecordSchema, validate_wire
from .database import VaultDatabase

logger = logging.getLogger(__name__)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class RecordStore:
    """CRUD for one record type (accounts or secrets)."""

    def __init__(self, db: VaultDatabase, schema: RecordSchema):
        self.db = db
        self.schema = schema
        self._columns = ", ".join(("id", "owner_id") + schema.encrypted_columns + ("modified_at",))

    def create(self, owner_id: int, payload: Mapping[str, Any]) -> int:
        """Insert a record for ``owner_id`` and return its id.

        Raises:
            ValidationError: Payload fails wire validation
        """
        cleaned = validate_wire(payload, self.schema)
        row = {column: cleaned.get(column) for column in self.schema.encrypted_columns}
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        with self.db.transaction() as conn:
            cursor = conn.execute(
                f"INSERT INTO {self.schema.table} (owner_id, {columns}, modified_at) "
                f"VALUES (?, {placeholders}, ?)",
                (owner_id, *row.values(), _utcnow()),
            )
            record_id = cursor.lastrowid
        logger.debug("Created %s id=%s for owner=%s", self.schema.name, record_id, owner_id)
        return record_id

    def get(self, owner_id: int, record_id: int) -> Dict[str, Any]:
        with self.db.transaction() as conn:
            row = conn.execute(
                f"SELECT {self._columns} FROM {self.schema.table} WHERE id = ? AND owner_id = ?",
                (record_id, owner_id),
            ).fetchone()
        if row is None:
            raise RecordNotFoundError()
        return dict(row)

    def list(self, owner_id: int) -> List[Dict[str, Any]]:
        """All records of ``owner_id``, most recently modified first."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                f"SELECT {self._columns} FROM {self.schema.table} "
                "WHERE owner_id = ? ORDER BY modified_at DESC, id DESC",
                (owner_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def update(self, owner_id: int, record_id: int, payload: Mapping[str, Any]) -> None:
        """Replace the given encrypted columns and bump ``modified_at``.

        Raises:
            ValidationError: Payload fails wire validation
            RecordNotFoundError: No such record for this owner
        """
        cleaned = validate_wire(payload, self.schema, partial=True)
        assignments = ", ".join(f"{column} = ?" for column in cleaned)
        with self.db.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE {self.schema.table} SET {assignments}, modified_at = ? "
                "WHERE id = ? AND owner_id = ?",
                (*cleaned.values(), _utcnow(), record_id, owner_id),
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError()

    def delete(self, owner_id: int, record_id: int) -> None:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                f"DELETE FROM {self.schema.table} WHERE id = ? AND owner_id = ?",
                (record_id, owner_id),
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError()
        logger.debug("Deleted %s id=%s for owner=%s", self.schema.name, record_id, owner_id)
