# Core Module - Central SQLite Connection Helper
#
# Every vaultkeeper SQLite database goes through `connect()` here instead
# of raw `sqlite3.connect()`:
#
#   - WAL journal mode (reference reads can overlap a write)
#   - busy_timeout to avoid SQLITE_BUSY under contention
#   - foreign_keys enforcement on every connection
#
# foreign_keys is not optional: hard-deleting a group relies on
# ON DELETE CASCADE to remove child groups and item memberships.

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union


def connect(
    db_path: Union[str, Path],
    *,
    row_factory: bool = False,
    check_same_thread: bool = True,
) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode and safe PRAGMAs.

    Args:
        db_path: Path to the database file.
        row_factory: If True, set conn.row_factory = sqlite3.Row.
        check_same_thread: Passed to sqlite3.connect().

    Returns:
        sqlite3.Connection with WAL mode, busy_timeout, and foreign_keys.
    """
    conn = sqlite3.connect(str(db_path), check_same_thread=check_same_thread)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.execute("PRAGMA foreign_keys=ON")
    if row_factory:
        conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def session(db_path: Union[str, Path]) -> Iterator[sqlite3.Connection]:
    """Short-lived connection: commit on success, rollback on error, always close."""
    conn = connect(db_path, row_factory=True)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
