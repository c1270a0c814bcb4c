"""
Balance ledger: per-user balances, frozen earnings and the transaction log.

Every mutation is a guarded UPDATE and appends its transaction rows inside
the same SQLite transaction, so balances never go negative and the
log always agrees with the balances.
"""

from __future__ import annotations

import math
import sqlite3
import uuid
from decimal import Decimal
from threading import RLock
from typing import Any

from task_dispatch_service.core.exceptions import (
    ConflictError,
    InsufficientBalanceError,
    InvalidRequestError,
    NotFoundError,
)
from task_dispatch_service.services.database import connect, immediate_transaction
from task_dispatch_service.timestamps import now_iso

TRANSACTION_TYPES: frozenset[str] = frozenset(
    {"deposit", "task_pay", "task_earn", "freeze", "unfreeze", "withdraw", "credit"}
)

_BALANCE_COLUMNS = (
    "user_id, amount_cents, frozen_cents, total_deposited, total_earned, "
    "total_withdrawn, created_at, updated_at"
)


def _new_tx_id() -> str:
    return f"tx-{uuid.uuid4()}"


def _new_earning_id() -> str:
    return f"fe-{uuid.uuid4()}"


def _require_positive(amount_cents: int) -> None:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise InvalidRequestError("Amount must be a positive integer")


class BalanceLedger:
    """SQLite-backed balances with an append-only transaction log."""

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._db = connect(db_path)
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS balances (
                    user_id TEXT PRIMARY KEY,
                    amount_cents INTEGER NOT NULL DEFAULT 0 CHECK (amount_cents >= 0),
                    frozen_cents INTEGER NOT NULL DEFAULT 0 CHECK (frozen_cents >= 0),
                    total_deposited INTEGER NOT NULL DEFAULT 0,
                    total_earned INTEGER NOT NULL DEFAULT 0,
                    total_withdrawn INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS transactions (
                    tx_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    amount_cents INTEGER NOT NULL,
                    balance_after INTEGER NOT NULL,
                    ref_id TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_transactions_user_type
                    ON transactions (user_id, type, created_at);
                CREATE UNIQUE INDEX IF NOT EXISTS idx_transactions_deposit_ref
                    ON transactions (ref_id) WHERE type = 'deposit';

                CREATE TABLE IF NOT EXISTS frozen_earnings (
                    earning_id TEXT PRIMARY KEY,
                    worker_id TEXT NOT NULL,
                    task_id TEXT NOT NULL,
                    amount_cents INTEGER NOT NULL CHECK (amount_cents > 0),
                    frozen_at TEXT NOT NULL,
                    maturity_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_frozen_earnings_maturity
                    ON frozen_earnings (maturity_at);
                """
            )
            self._db.commit()

    def _record(
        self,
        db: sqlite3.Connection,
        user_id: str,
        tx_type: str,
        amount_cents: int,
        balance_after: int,
        ref_id: str | None,
        created_at: str,
    ) -> str:
        tx_id = _new_tx_id()
        db.execute(
            "INSERT INTO transactions "
            "(tx_id, user_id, type, amount_cents, balance_after, ref_id, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (tx_id, user_id, tx_type, amount_cents, balance_after, ref_id, created_at),
        )
        return tx_id

    def initialize_balance(
        self,
        user_id: str,
        initial_cents: int = 0,
        *,
        ref_id: str | None = None,
    ) -> bool:
        """
        Create a balance row if none exists.

        A positive initial amount is recorded as a ``credit`` transaction.
        Returns True when the row was created by this call.
        """
        if initial_cents < 0:
            raise InvalidRequestError("Initial balance must not be negative")
        now = now_iso()
        with immediate_transaction(self._db, self._lock) as db:
            cursor = db.execute(
                "INSERT OR IGNORE INTO balances (user_id, amount_cents, created_at, updated_at) "
                "VALUES (?, ?, ?, ?)",
                (user_id, initial_cents, now, now),
            )
            created = cursor.rowcount == 1
            if created and initial_cents > 0:
                self._record(db, user_id, "credit", initial_cents, initial_cents, ref_id, now)
        return created

    def get_balance(self, user_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._db.execute(
                f"SELECT {_BALANCE_COLUMNS} FROM balances WHERE user_id = ?",  # nosec B608
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return dict(row)

    def deduct(
        self,
        user_id: str,
        amount_cents: int,
        ref_id: str | None,
        tx_type: str = "task_pay",
    ) -> int:
        """
        Debit available balance if it covers the amount.

        Returns the available balance after the debit.

        Raises:
            InsufficientBalanceError: Balance missing or lower than the amount.
        """
        _require_positive(amount_cents)
        now = now_iso()
        with immediate_transaction(self._db, self._lock) as db:
            rows = db.execute(
                "UPDATE balances SET amount_cents = amount_cents - ?, updated_at = ? "
                "WHERE user_id = ? AND amount_cents >= ? RETURNING amount_cents",
                (amount_cents, now, user_id, amount_cents),
            ).fetchall()
            if not rows:
                raise InsufficientBalanceError(amount_cents)
            balance_after = int(rows[0]["amount_cents"])
            self._record(db, user_id, tx_type, -amount_cents, balance_after, ref_id, now)
        return balance_after

    def credit(
        self,
        user_id: str,
        amount_cents: int,
        ref_id: str | None,
        tx_type: str = "credit",
    ) -> int:
        """Add to available balance. Returns the available balance after the credit."""
        _require_positive(amount_cents)
        if tx_type not in TRANSACTION_TYPES:
            raise InvalidRequestError(f"Unknown transaction type: {tx_type}")
        deposited = amount_cents if tx_type == "deposit" else 0
        earned = amount_cents if tx_type == "task_earn" else 0
        now = now_iso()
        with immediate_transaction(self._db, self._lock) as db:
            rows = db.execute(
                "UPDATE balances SET amount_cents = amount_cents + ?, "
                "total_deposited = total_deposited + ?, total_earned = total_earned + ?, "
                "updated_at = ? WHERE user_id = ? RETURNING amount_cents",
                (amount_cents, deposited, earned, now, user_id),
            ).fetchall()
            if not rows:
                raise NotFoundError("Balance")
            balance_after = int(rows[0]["amount_cents"])
            self._record(db, user_id, tx_type, amount_cents, balance_after, ref_id, now)
        return balance_after

    def deposit(
        self,
        user_id: str,
        amount_cents: int,
        payment_ref: str,
        first_deposit_bonus_pct: float = 0.0,
    ) -> dict[str, Any] | None:
        """
        Credit a confirmed payment once per ``payment_ref``.

        The payment is a ``deposit`` transaction. A balance that has never
        received a deposit also gets ``floor(amount * first_deposit_bonus_pct)``
        as a ``credit`` transaction with the same ref. Returns None when the
        same payment was already applied.

        Raises:
            NotFoundError: No balance row for the user.
            ConflictError: The ref was already used for another user or amount.
        """
        _require_positive(amount_cents)
        now = now_iso()
        with immediate_transaction(self._db, self._lock) as db:
            seen = db.execute(
                "SELECT user_id, amount_cents FROM transactions "
                "WHERE type = 'deposit' AND ref_id = ?",
                (payment_ref,),
            ).fetchone()
            if seen is not None:
                if seen["user_id"] != user_id or int(seen["amount_cents"]) != amount_cents:
                    msg = "Payment reference already used with a different payload"
                    raise ConflictError(msg)
                return None

            rows = db.execute(
                "UPDATE balances SET amount_cents = amount_cents + ?, "
                "total_deposited = total_deposited + ?, updated_at = ? "
                "WHERE user_id = ? RETURNING amount_cents, total_deposited",
                (amount_cents, amount_cents, now, user_id),
            ).fetchall()
            if not rows:
                raise NotFoundError("Balance")
            balance_after = int(rows[0]["amount_cents"])
            self._record(db, user_id, "deposit", amount_cents, balance_after, payment_ref, now)

            bonus_cents = 0
            if int(rows[0]["total_deposited"]) == amount_cents and first_deposit_bonus_pct > 0:
                bonus_cents = math.floor(
                    Decimal(amount_cents) * Decimal(str(first_deposit_bonus_pct))
                )
            if bonus_cents > 0:
                rows = db.execute(
                    "UPDATE balances SET amount_cents = amount_cents + ?, updated_at = ? "
                    "WHERE user_id = ? RETURNING amount_cents",
                    (bonus_cents, now, user_id),
                ).fetchall()
                balance_after = int(rows[0]["amount_cents"])
                self._record(db, user_id, "credit", bonus_cents, balance_after, payment_ref, now)
        return {
            "amount_cents": amount_cents,
            "bonus_cents": bonus_cents,
            "balance_after": balance_after,
        }

    def freeze_earning(
        self,
        worker_id: str,
        task_id: str,
        amount_cents: int,
        maturity_at: str,
    ) -> str:
        """
        Hold earnings in the frozen bucket until ``maturity_at``.

        Touches ``frozen_cents`` and ``total_earned`` only; the available
        balance is unchanged. Returns the new earning id.
        """
        _require_positive(amount_cents)
        now = now_iso()
        earning_id = _new_earning_id()
        with immediate_transaction(self._db, self._lock) as db:
            rows = db.execute(
                "UPDATE balances SET frozen_cents = frozen_cents + ?, "
                "total_earned = total_earned + ?, updated_at = ? "
                "WHERE user_id = ? RETURNING amount_cents",
                (amount_cents, amount_cents, now, worker_id),
            ).fetchall()
            if not rows:
                raise NotFoundError("Balance")
            db.execute(
                "INSERT INTO frozen_earnings "
                "(earning_id, worker_id, task_id, amount_cents, frozen_at, maturity_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (earning_id, worker_id, task_id, amount_cents, now, maturity_at),
            )
            self._record(
                db, worker_id, "freeze", amount_cents, int(rows[0]["amount_cents"]), task_id, now
            )
        return earning_id

    def workers_with_matured_earnings(self, as_of: str) -> list[str]:
        with self._lock:
            rows = self._db.execute(
                "SELECT DISTINCT worker_id FROM frozen_earnings WHERE maturity_at <= ? "
                "ORDER BY worker_id",
                (as_of,),
            ).fetchall()
        return [str(row["worker_id"]) for row in rows]

    def unfreeze_matured(self, worker_id: str, as_of: str) -> int:
        """
        Move every matured earning of one worker from frozen to available.

        Consumed earning records are deleted and a single ``unfreeze``
        transaction is appended, all in one database transaction. Returns
        the amount moved (0 when nothing had matured).
        """
        now = now_iso()
        with immediate_transaction(self._db, self._lock) as db:
            released = db.execute(
                "DELETE FROM frozen_earnings WHERE worker_id = ? AND maturity_at <= ? "
                "RETURNING amount_cents",
                (worker_id, as_of),
            ).fetchall()
            total = sum(int(row["amount_cents"]) for row in released)
            if total == 0:
                return 0
            rows = db.execute(
                "UPDATE balances SET frozen_cents = frozen_cents - ?, "
                "amount_cents = amount_cents + ?, updated_at = ? "
                "WHERE user_id = ? AND frozen_cents >= ? RETURNING amount_cents",
                (total, total, now, worker_id, total),
            ).fetchall()
            if not rows:
                msg = f"Frozen balance of {worker_id} does not cover {total} matured cents"
                raise RuntimeError(msg)
            self._record(db, worker_id, "unfreeze", total, int(rows[0]["amount_cents"]), None, now)
        return total

    def list_frozen_earnings(self, worker_id: str) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._db.execute(
                "SELECT earning_id, worker_id, task_id, amount_cents, frozen_at, maturity_at "
                "FROM frozen_earnings WHERE worker_id = ? ORDER BY maturity_at",
                (worker_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def withdraw(self, user_id: str, amount_cents: int, ref_id: str | None) -> int:
        """Debit available balance for a payout. Frozen funds are never withdrawable."""
        _require_positive(amount_cents)
        now = now_iso()
        with immediate_transaction(self._db, self._lock) as db:
            rows = db.execute(
                "UPDATE balances SET amount_cents = amount_cents - ?, "
                "total_withdrawn = total_withdrawn + ?, updated_at = ? "
                "WHERE user_id = ? AND amount_cents >= ? RETURNING amount_cents",
                (amount_cents, amount_cents, now, user_id, amount_cents),
            ).fetchall()
            if not rows:
                raise InsufficientBalanceError(amount_cents)
            balance_after = int(rows[0]["amount_cents"])
            self._record(db, user_id, "withdraw", -amount_cents, balance_after, ref_id, now)
        return balance_after

    def sum_transactions(self, user_id: str, tx_type: str, since: str) -> int:
        """Sum of signed amounts of one transaction type since a timestamp."""
        with self._lock:
            row = self._db.execute(
                "SELECT COALESCE(SUM(amount_cents), 0) FROM transactions "
                "WHERE user_id = ? AND type = ? AND created_at >= ?",
                (user_id, tx_type, since),
            ).fetchone()
        return int(row[0]) if row is not None else 0

    def get_transactions(self, user_id: str, limit: int | None = None) -> list[dict[str, Any]]:
        """Transactions of a user, oldest first."""
        query = (
            "SELECT tx_id, user_id, type, amount_cents, balance_after, ref_id, created_at "
            "FROM transactions WHERE user_id = ? ORDER BY created_at, rowid"
        )
        params: list[object] = [user_id]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
