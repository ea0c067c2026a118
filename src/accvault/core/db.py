# accvault Core - Central SQLite Connection Helper
#
# Every accvault database connection goes through `connect()` so that:
#
#   - WAL journal mode is on (concurrent readers + one writer)
#   - busy_timeout avoids SQLITE_BUSY while another request holds the
#     write lock (token redemption serializes on BEGIN IMMEDIATE)
#   - foreign_keys enforcement is on for every connection

import sqlite3
from pathlib import Path
from typing import Union

BUSY_TIMEOUT_MS = 5000


def connect(
    db_path: Union[str, Path],
    *,
    row_factory: bool = False,
    check_same_thread: bool = True,
    autocommit: bool = False,
) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode and safe PRAGMAs.

    Args:
        db_path: Path to the database file.
        row_factory: If True, set conn.row_factory = sqlite3.Row.
        check_same_thread: Passed to sqlite3.connect().
        autocommit: If True, open with isolation_level=None so the caller
            controls transactions with explicit BEGIN/COMMIT.

    Returns:
        sqlite3.Connection with WAL mode, busy_timeout, and foreign_keys.
    """
    conn = sqlite3.connect(
        str(db_path),
        check_same_thread=check_same_thread,
        timeout=BUSY_TIMEOUT_MS / 1000,
        isolation_level=None if autocommit else "",
    )
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
    conn.execute("PRAGMA foreign_keys=ON")
    if row_factory:
        conn.row_factory = sqlite3.Row
    return conn
