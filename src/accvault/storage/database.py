# accvault Storage - SQLite Schema and Transactions
#
# Users, sessions, reset tokens and the two encrypted record tables.
# Every column holding user data is ciphertext produced on the client; the
# server only sees *_encrypted values, PBKDF2 hashes and token digests.
#
# Design:
#   - One fresh connection per operation (no shared session cache)
#   - Explicit BEGIN / BEGIN IMMEDIATE so multi-statement changes commit
#     atomically and token redemption is serialized

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from ..core.db import connect

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS _config (
    key TEXT PRIMARY KEY NOT NULL,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'user' CHECK(role IN ('user', 'admin')),
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS admins (
    user_id INTEGER PRIMARY KEY,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS sessions (
    token_hash TEXT PRIMARY KEY NOT NULL,
    user_id INTEGER NOT NULL,
    expires_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS password_reset_tokens (
    token_hash TEXT PRIMARY KEY NOT NULL,
    user_id INTEGER NOT NULL,
    expires_at TEXT NOT NULL,
    used INTEGER NOT NULL DEFAULT 0,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id INTEGER NOT NULL,
    name_encrypted TEXT NOT NULL,
    email_encrypted TEXT NOT NULL,
    issuer_encrypted TEXT,
    password_encrypted TEXT NOT NULL,
    dob_encrypted TEXT,
    two_fa_secret_encrypted TEXT,
    modified_at TEXT NOT NULL,
    FOREIGN KEY (owner_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS secrets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id INTEGER NOT NULL,
    secret_name_encrypted TEXT NOT NULL,
    description_encrypted TEXT,
    account_linked_encrypted TEXT,
    value_encrypted TEXT NOT NULL,
    modified_at TEXT NOT NULL,
    FOREIGN KEY (owner_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id);
CREATE INDEX IF NOT EXISTS idx_reset_tokens_user ON password_reset_tokens(user_id);
CREATE INDEX IF NOT EXISTS idx_accounts_owner ON accounts(owner_id);
CREATE INDEX IF NOT EXISTS idx_secrets_owner ON secrets(owner_id);

-- One-time admin setup latch
INSERT OR IGNORE INTO _config (key, value) VALUES ('admin_initialized', 'false');
"""


class VaultDatabase:
    """SQLite database behind the auth service and record stores.

    Usage::

        db = VaultDatabase("data/accvault.db")
        with db.transaction(immediate=True) as conn:
            conn.execute(...)
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        self.db_path = Path(db_path) if db_path else Path("data/accvault.db")
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self):
        conn = connect(self.db_path, autocommit=True)
        try:
            conn.executescript(SCHEMA)
        finally:
            conn.close()
        logger.debug("Schema ready at %s", self.db_path)

    @contextmanager
    def transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Run statements in one transaction; commit on success, roll back on error.

        Args:
            immediate: Take the write lock up front (BEGIN IMMEDIATE). Use for
                read-check-write sequences that must not interleave.
        """
        conn = connect(self.db_path, row_factory=True, autocommit=True)
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()
