"""Shared SQLite connection setup for the service stores."""

from __future__ import annotations

import contextlib
import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator
    from threading import RLock


def connect(db_path: str) -> sqlite3.Connection:
    """Open a connection shared across threads and guarded by the caller's lock."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    db = sqlite3.connect(db_path, check_same_thread=False)
    db.row_factory = sqlite3.Row
    db.execute("PRAGMA journal_mode=WAL")
    db.execute("PRAGMA foreign_keys=ON")
    db.execute("PRAGMA busy_timeout=5000")
    return db


@contextlib.contextmanager
def immediate_transaction(db: sqlite3.Connection, lock: RLock) -> Iterator[sqlite3.Connection]:
    """
    Run a block inside ``BEGIN IMMEDIATE`` under the store lock.

    Commits when the block finishes and rolls back on any exception.
    Statements with RETURNING must be fully fetched inside the block.
    """
    with lock:
        db.execute("BEGIN IMMEDIATE")
        try:
            yield db
        except BaseException:
            with contextlib.suppress(sqlite3.Error):
                db.execute("ROLLBACK")
            raise
        db.commit()
