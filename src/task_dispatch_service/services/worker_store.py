"""SQLite-backed worker storage with atomic counter updates."""

from __future__ import annotations

import json
import sqlite3
from threading import RLock
from typing import Any

from task_dispatch_service.services.database import connect, immediate_transaction


class DuplicateWorkerError(Exception):
    """Raised when a worker id, token hash or email is already taken."""


class WorkerStore:
    """SQLite-backed storage for worker records."""

    _WORKER_COLUMNS: tuple[str, ...] = (
        "worker_id",
        "token_hash",
        "worker_type",
        "model_info",
        "email",
        "payout",
        "profile",
        "tier",
        "tasks_claimed",
        "tasks_completed",
        "tasks_expired",
        "consecutive_expires",
        "total_earned",
        "credit_requests",
        "spot_pass",
        "spot_fail",
        "suspended_until",
        "created_at",
        "last_seen",
    )
    _JSON_COLUMNS: frozenset[str] = frozenset({"model_info", "payout", "profile"})
    _COUNTER_COLUMNS: frozenset[str] = frozenset(
        {
            "tasks_claimed",
            "tasks_completed",
            "tasks_expired",
            "consecutive_expires",
            "total_earned",
            "credit_requests",
            "spot_pass",
            "spot_fail",
        }
    )
    _WORKER_COLUMNS_SQL = ", ".join(_WORKER_COLUMNS)

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._db = connect(db_path)
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS workers (
                    worker_id TEXT PRIMARY KEY,
                    token_hash TEXT NOT NULL UNIQUE,
                    worker_type TEXT NOT NULL,
                    model_info TEXT,
                    email TEXT UNIQUE,
                    payout TEXT,
                    profile TEXT NOT NULL,
                    tier TEXT NOT NULL DEFAULT 'new',
                    tasks_claimed INTEGER NOT NULL DEFAULT 0,
                    tasks_completed INTEGER NOT NULL DEFAULT 0,
                    tasks_expired INTEGER NOT NULL DEFAULT 0,
                    consecutive_expires INTEGER NOT NULL DEFAULT 0,
                    total_earned INTEGER NOT NULL DEFAULT 0,
                    credit_requests INTEGER NOT NULL DEFAULT 0,
                    spot_pass INTEGER NOT NULL DEFAULT 0,
                    spot_fail INTEGER NOT NULL DEFAULT 0,
                    suspended_until TEXT,
                    created_at TEXT NOT NULL,
                    last_seen TEXT
                );
                """
            )
            self._db.commit()

    def _row_to_worker(self, row: sqlite3.Row) -> dict[str, Any]:
        worker: dict[str, Any] = {}
        for column in self._WORKER_COLUMNS:
            value = row[column]
            if column in self._JSON_COLUMNS and value is not None:
                value = json.loads(value)
            worker[column] = value
        return worker

    def insert_worker(self, worker: dict[str, Any]) -> None:
        """Insert a new worker row."""
        values: list[object] = []
        for column in self._WORKER_COLUMNS:
            value = worker.get(column)
            if column in self._JSON_COLUMNS and value is not None:
                value = json.dumps(value)
            values.append(value)
        placeholders = ", ".join("?" for _ in self._WORKER_COLUMNS)
        try:
            with immediate_transaction(self._db, self._lock) as db:
                db.execute(
                    f"INSERT INTO workers ({self._WORKER_COLUMNS_SQL}) "  # nosec B608
                    f"VALUES ({placeholders})",
                    values,
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateWorkerError(str(exc)) from exc

    def get_worker(self, worker_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._db.execute(
                f"SELECT {self._WORKER_COLUMNS_SQL} FROM workers WHERE worker_id = ?",  # nosec B608
                (worker_id,),
            ).fetchone()
        return None if row is None else self._row_to_worker(row)

    def get_worker_by_token_hash(self, token_hash: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._db.execute(
                f"SELECT {self._WORKER_COLUMNS_SQL} FROM workers WHERE token_hash = ?",  # nosec B608
                (token_hash,),
            ).fetchone()
        return None if row is None else self._row_to_worker(row)

    def touch_last_seen(self, worker_id: str, seen_at: str) -> None:
        with self._lock:
            self._db.execute(
                "UPDATE workers SET last_seen = ? WHERE worker_id = ?", (seen_at, worker_id)
            )
            self._db.commit()

    def increment_counters(self, worker_id: str, deltas: dict[str, int]) -> int:
        """Atomically add deltas to counter columns. Returns rows affected."""
        if not deltas:
            return 0
        if any(column not in self._COUNTER_COLUMNS for column in deltas):
            msg = "Attempted to increment unknown worker counter"
            raise ValueError(msg)
        set_clause = ", ".join(f"{column} = {column} + ?" for column in deltas)
        params: list[object] = [*deltas.values(), worker_id]
        with self._lock:
            cursor = self._db.execute(
                "UPDATE workers SET " + set_clause + " WHERE worker_id = ?",  # nosec B608
                params,
            )
            self._db.commit()
        return int(cursor.rowcount)

    def record_completion(self, worker_id: str, earned_cents: int) -> int:
        """Count a completed task and clear the consecutive-timeout streak."""
        with self._lock:
            cursor = self._db.execute(
                "UPDATE workers SET tasks_completed = tasks_completed + 1, "
                "total_earned = total_earned + ?, consecutive_expires = 0 "
                "WHERE worker_id = ?",
                (earned_cents, worker_id),
            )
            self._db.commit()
        return int(cursor.rowcount)

    def record_expirations(
        self,
        worker_id: str,
        count: int,
        *,
        suspend_threshold: int,
        suspend_until: str,
    ) -> dict[str, Any] | None:
        """
        Count timed-out tasks and suspend the worker once the streak reaches
        the threshold, in a single statement.

        Returns ``consecutive_expires`` and ``suspended_until`` after the
        update, or None if the worker does not exist.
        """
        with self._lock:
            rows = self._db.execute(
                "UPDATE workers SET tasks_expired = tasks_expired + ?, "
                "consecutive_expires = consecutive_expires + ?, "
                "suspended_until = CASE WHEN consecutive_expires + ? >= ? "
                "THEN ? ELSE suspended_until END "
                "WHERE worker_id = ? RETURNING consecutive_expires, suspended_until",
                (count, count, count, suspend_threshold, suspend_until, worker_id),
            ).fetchall()
            self._db.commit()
        if not rows:
            return None
        return {
            "consecutive_expires": int(rows[0]["consecutive_expires"]),
            "suspended_until": rows[0]["suspended_until"],
        }

    def set_profile(self, worker_id: str, profile: dict[str, Any]) -> int:
        with self._lock:
            cursor = self._db.execute(
                "UPDATE workers SET profile = ? WHERE worker_id = ?",
                (json.dumps(profile), worker_id),
            )
            self._db.commit()
        return int(cursor.rowcount)

    def set_email(self, worker_id: str, email: str) -> int:
        """Bind an email. Raises DuplicateWorkerError if another worker holds it."""
        try:
            with immediate_transaction(self._db, self._lock) as db:
                cursor = db.execute(
                    "UPDATE workers SET email = ? WHERE worker_id = ?", (email, worker_id)
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateWorkerError(f"Email {email} is already bound") from exc
        return int(cursor.rowcount)

    def set_payout(self, worker_id: str, payout: dict[str, Any]) -> int:
        with self._lock:
            cursor = self._db.execute(
                "UPDATE workers SET payout = ? WHERE worker_id = ?",
                (json.dumps(payout), worker_id),
            )
            self._db.commit()
        return int(cursor.rowcount)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
