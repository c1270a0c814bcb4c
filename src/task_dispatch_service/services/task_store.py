"""SQLite-backed task storage and the atomic task transitions."""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timedelta
from threading import RLock
from typing import Any

from task_dispatch_service.services.database import connect, immediate_transaction
from task_dispatch_service.timestamps import parse_iso, to_iso


class DuplicateTaskError(Exception):
    """Raised when attempting to insert a task with a duplicate task_id."""


class TaskStore:
    """
    SQLite-backed storage for tasks.

    Every status transition is a single guarded statement
    (``UPDATE ... WHERE status = ? RETURNING``), so concurrent callers can
    never both observe success for the same transition.
    """

    _TASK_COLUMNS: tuple[str, ...] = (
        "task_id",
        "buyer_id",
        "type",
        "input",
        "input_preview",
        "sensitive",
        "constraints",
        "price_cents",
        "status",
        "worker_id",
        "assigned_at",
        "deadline",
        "output",
        "completed_at",
        "created_at",
        "purge_at",
        "is_qa",
        "qa_type",
        "original_task_id",
        "expected_output",
        "qa_result",
        "funded_by",
    )
    _JSON_COLUMNS: frozenset[str] = frozenset(
        {"input", "input_preview", "constraints", "output", "expected_output", "qa_result"}
    )
    _INTERNAL_COLUMNS: tuple[str, ...] = (
        "is_qa",
        "qa_type",
        "original_task_id",
        "expected_output",
        "qa_result",
        "funded_by",
    )
    _TASK_COLUMNS_SQL = ", ".join(_TASK_COLUMNS)
    _TASK_INSERT_SQL = (
        "INSERT INTO tasks ("
        + _TASK_COLUMNS_SQL
        + ") VALUES ("
        + ", ".join("?" for _ in _TASK_COLUMNS)
        + ")"
    )

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._db = connect(db_path)
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    buyer_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    input TEXT NOT NULL,
                    input_preview TEXT,
                    sensitive INTEGER NOT NULL DEFAULT 0,
                    constraints TEXT NOT NULL,
                    price_cents INTEGER NOT NULL CHECK (price_cents >= 0),
                    status TEXT NOT NULL DEFAULT 'pending',
                    worker_id TEXT,
                    assigned_at TEXT,
                    deadline TEXT NOT NULL,
                    output TEXT,
                    completed_at TEXT,
                    created_at TEXT NOT NULL,
                    purge_at TEXT,
                    is_qa INTEGER NOT NULL DEFAULT 0,
                    qa_type TEXT,
                    original_task_id TEXT,
                    expected_output TEXT,
                    qa_result TEXT,
                    funded_by TEXT NOT NULL DEFAULT 'buyer'
                );

                CREATE INDEX IF NOT EXISTS idx_tasks_status_deadline
                    ON tasks (status, deadline);
                CREATE INDEX IF NOT EXISTS idx_tasks_worker ON tasks (worker_id);
                CREATE INDEX IF NOT EXISTS idx_tasks_original ON tasks (original_task_id);
                """
            )
            self._db.commit()

    def _row_to_task(self, row: sqlite3.Row) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for column in self._TASK_COLUMNS:
            value = row[column]
            if column in self._JSON_COLUMNS and value is not None:
                value = json.loads(value)
            values[column] = value
        internal = {column: values.pop(column) for column in self._INTERNAL_COLUMNS}
        internal["is_qa"] = bool(internal["is_qa"])
        values["sensitive"] = bool(values["sensitive"])
        values["internal"] = internal
        return values

    def _task_to_values(self, task: dict[str, Any]) -> tuple[object, ...]:
        flat = {**task, **task["internal"]}
        flat["is_qa"] = 1 if flat["is_qa"] else 0
        flat["sensitive"] = 1 if flat.get("sensitive") else 0
        values: list[object] = []
        for column in self._TASK_COLUMNS:
            value = flat.get(column)
            if column in self._JSON_COLUMNS and value is not None:
                value = json.dumps(value)
            values.append(value)
        return tuple(values)

    def insert_task(self, task: dict[str, Any]) -> None:
        """Insert a new task row."""
        values = self._task_to_values(task)
        try:
            with immediate_transaction(self._db, self._lock) as db:
                db.execute(self._TASK_INSERT_SQL, values)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateTaskError(
                    f"A task with task_id={task['task_id']} already exists"
                ) from exc
            raise

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID."""
        with self._lock:
            row = self._db.execute(
                f"SELECT {self._TASK_COLUMNS_SQL} FROM tasks WHERE task_id = ?",  # nosec B608
                (task_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def claim_next(
        self,
        worker_id: str,
        *,
        now: str,
        accept: list[str],
        reject: list[str],
        min_price: int,
        fifo: bool,
    ) -> dict[str, Any] | None:
        """
        Assign the best matching pending task to a worker in one statement.

        Returns the claimed task, or None when nothing matches. A worker never
        receives a QA duplicate of a task it worked on, nor the original of a
        QA duplicate it worked on.
        """
        clauses = ["status = 'pending'", "deadline > ?"]
        params: list[object] = [now]
        if accept:
            clauses.append("type IN (" + ", ".join("?" for _ in accept) + ")")
            params.extend(accept)
        if reject:
            clauses.append("type NOT IN (" + ", ".join("?" for _ in reject) + ")")
            params.extend(reject)
        if min_price > 0:
            clauses.append("price_cents >= ?")
            params.append(min_price)
        clauses.append(
            "(original_task_id IS NULL OR original_task_id NOT IN "
            "(SELECT task_id FROM tasks WHERE worker_id = ?))"
        )
        params.append(worker_id)
        clauses.append(
            "task_id NOT IN (SELECT original_task_id FROM tasks "
            "WHERE worker_id = ? AND original_task_id IS NOT NULL)"
        )
        params.append(worker_id)

        order = "created_at ASC, rowid ASC" if fifo else "price_cents DESC, created_at ASC, rowid ASC"
        query = (
            "UPDATE tasks SET status = 'assigned', worker_id = ?, assigned_at = ? "
            "WHERE status = 'pending' AND task_id = ("
            "SELECT task_id FROM tasks WHERE "
            + " AND ".join(clauses)
            + " ORDER BY "
            + order
            + " LIMIT 1) RETURNING "
            + self._TASK_COLUMNS_SQL
        )  # nosec B608

        with immediate_transaction(self._db, self._lock) as db:
            rows = db.execute(query, [worker_id, now, *params]).fetchall()
        if not rows:
            return None
        return self._row_to_task(rows[0])

    def complete_task(
        self,
        task_id: str,
        worker_id: str,
        output: dict[str, Any],
        completed_at: str,
    ) -> dict[str, Any] | None:
        """Transition assigned -> completed if the caller holds the task."""
        with immediate_transaction(self._db, self._lock) as db:
            rows = db.execute(
                "UPDATE tasks SET status = 'completed', output = ?, completed_at = ? "
                "WHERE task_id = ? AND status = 'assigned' AND worker_id = ? "
                "RETURNING " + self._TASK_COLUMNS_SQL,  # nosec B608
                (json.dumps(output), completed_at, task_id, worker_id),
            ).fetchall()
        if not rows:
            return None
        return self._row_to_task(rows[0])

    def mark_credited(self, task_id: str, buyer_id: str) -> dict[str, Any] | None:
        """Transition completed -> credited for the owning buyer."""
        with immediate_transaction(self._db, self._lock) as db:
            rows = db.execute(
                "UPDATE tasks SET status = 'credited' "
                "WHERE task_id = ? AND buyer_id = ? AND status = 'completed' "
                "RETURNING " + self._TASK_COLUMNS_SQL,  # nosec B608
                (task_id, buyer_id),
            ).fetchall()
        if not rows:
            return None
        return self._row_to_task(rows[0])

    def revert_completion(self, task_id: str, worker_id: str) -> bool:
        """Undo ``complete_task`` (completed -> assigned) after a failed settlement."""
        with immediate_transaction(self._db, self._lock) as db:
            cursor = db.execute(
                "UPDATE tasks SET status = 'assigned', output = NULL, completed_at = NULL "
                "WHERE task_id = ? AND status = 'completed' AND worker_id = ?",
                (task_id, worker_id),
            )
        return cursor.rowcount == 1

    def revert_credit(self, task_id: str, buyer_id: str) -> bool:
        """Undo ``mark_credited`` (credited -> completed) after a failed refund."""
        with immediate_transaction(self._db, self._lock) as db:
            cursor = db.execute(
                "UPDATE tasks SET status = 'completed' "
                "WHERE task_id = ? AND buyer_id = ? AND status = 'credited'",
                (task_id, buyer_id),
            )
        return cursor.rowcount == 1

    def recover_expired(self, now: str) -> list[dict[str, Any]]:
        """
        Reset assigned tasks whose deadline has passed back to pending.

        Runs in one transaction. Each row is still guarded by
        ``status = 'assigned'`` so a racing submission wins cleanly. The
        deadline moves to ``now + timeout_seconds`` so the task can be claimed
        again. Returns ``{"task_id", "worker_id"}`` for every recovered task.
        """
        recovered: list[dict[str, Any]] = []
        now_dt = parse_iso(now)
        with immediate_transaction(self._db, self._lock) as db:
            candidates = db.execute(
                "SELECT task_id, worker_id, constraints FROM tasks "
                "WHERE status = 'assigned' AND deadline < ?",
                (now,),
            ).fetchall()
            for row in candidates:
                constraints = json.loads(row["constraints"])
                timeout_seconds = int(constraints.get("timeout_seconds", 0))
                new_deadline = to_iso(now_dt + timedelta(seconds=timeout_seconds))
                cursor = db.execute(
                    "UPDATE tasks SET status = 'pending', worker_id = NULL, "
                    "assigned_at = NULL, deadline = ? "
                    "WHERE task_id = ? AND status = 'assigned' AND deadline < ?",
                    (new_deadline, row["task_id"], now),
                )
                if cursor.rowcount == 1:
                    recovered.append({"task_id": row["task_id"], "worker_id": row["worker_id"]})
        return recovered

    def set_qa_result(self, task_id: str, qa_result: dict[str, Any]) -> bool:
        """
        Store a comparison result on a QA task that has none yet.

        Returns False when the task already carries a result, so each QA task
        is scored at most once.
        """
        with immediate_transaction(self._db, self._lock) as db:
            cursor = db.execute(
                "UPDATE tasks SET qa_result = ? "
                "WHERE task_id = ? AND is_qa = 1 AND qa_result IS NULL",
                (json.dumps(qa_result), task_id),
            )
        return cursor.rowcount == 1

    def list_unscored_qa_tasks(self, original_task_id: str) -> list[dict[str, Any]]:
        """Completed QA duplicates of a task that have no comparison result yet."""
        with self._lock:
            rows = self._db.execute(
                f"SELECT {self._TASK_COLUMNS_SQL} FROM tasks "  # nosec B608
                "WHERE original_task_id = ? AND is_qa = 1 AND status = 'completed' "
                "AND qa_result IS NULL ORDER BY created_at",
                (original_task_id,),
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def list_tasks(
        self,
        status: str | None = None,
        buyer_id: str | None = None,
        worker_id: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """List tasks with optional filters, newest first."""
        query = f"SELECT {self._TASK_COLUMNS_SQL} FROM tasks"  # nosec B608
        clauses: list[str] = []
        params: list[object] = []

        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if buyer_id is not None:
            clauses.append("buyer_id = ?")
            params.append(buyer_id)
        if worker_id is not None:
            clauses.append("worker_id = ?")
            params.append(worker_id)

        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, rowid DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [self._row_to_task(row) for row in rows]

    def count_tasks(self) -> int:
        """Count total tasks."""
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM tasks").fetchone()
        return int(row[0]) if row is not None else 0

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status."""
        with self._lock:
            rows = self._db.execute("SELECT status, COUNT(*) FROM tasks GROUP BY status").fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()


def new_task_id() -> str:
    return f"t-{uuid.uuid4()}"


def build_task_record(
    *,
    buyer_id: str,
    task_type: str,
    task_input: dict[str, Any],
    constraints: dict[str, Any],
    price_cents: int,
    created_at: datetime,
    sensitive: bool = False,
    input_preview: dict[str, Any] | None = None,
    qa_type: str | None = None,
    original_task_id: str | None = None,
    expected_output: dict[str, Any] | None = None,
    funded_by: str = "buyer",
    task_id: str | None = None,
) -> dict[str, Any]:
    """A fresh pending task whose deadline is ``created_at + timeout_seconds``."""
    deadline = created_at + timedelta(seconds=int(constraints["timeout_seconds"]))
    return {
        "task_id": task_id if task_id is not None else new_task_id(),
        "buyer_id": buyer_id,
        "type": task_type,
        "input": task_input,
        "input_preview": input_preview,
        "sensitive": sensitive,
        "constraints": constraints,
        "price_cents": price_cents,
        "status": "pending",
        "worker_id": None,
        "assigned_at": None,
        "deadline": to_iso(deadline),
        "output": None,
        "completed_at": None,
        "created_at": to_iso(created_at),
        "purge_at": None,
        "internal": {
            "is_qa": qa_type is not None,
            "qa_type": qa_type,
            "original_task_id": original_task_id,
            "expected_output": expected_output,
            "qa_result": None,
            "funded_by": funded_by,
        },
    }
