"""Platform economic configuration: SQLite-backed documents behind a TTL cache."""

from __future__ import annotations

import copy
import json
import sqlite3
import time
from threading import RLock
from typing import TYPE_CHECKING, Any

from task_dispatch_service.logging import get_logger
from task_dispatch_service.services.database import connect, immediate_transaction
from task_dispatch_service.timestamps import now_iso

if TYPE_CHECKING:
    from collections.abc import Callable

DEFAULT_PRICING: dict[str, Any] = {
    "chat": {
        "base_cents": 2,
        "multi_turn": [
            {"up_to_message": 3, "price_cents": 2},
            {"up_to_message": 7, "price_cents": 5},
            {"up_to_message": 999, "price_cents": 10},
        ],
    },
    "translate": {"base_cents": 1},
    "code": {"base_cents": 5},
    "analyze": {"base_cents": 20},
    "research": {"base_cents": 50},
}

DEFAULT_TIERS: dict[str, Any] = {
    "new": {"min_tasks": 0, "min_completion": 0.0, "max_credit_rate": 1.0, "commission": 0.25},
    "proven": {"min_tasks": 50, "min_completion": 0.90, "max_credit_rate": 0.05, "commission": 0.20},
    "trusted": {
        "min_tasks": 200,
        "min_completion": 0.95,
        "max_credit_rate": 0.03,
        "commission": 0.15,
    },
    "elite": {"min_tasks": 1000, "min_completion": 0.98, "max_credit_rate": 0.01, "commission": 0.10},
}

DEFAULT_COMMISSIONS: dict[str, Any] = {
    "freeze_window_hours": 24,
    "min_withdrawal_cents": 500,
    "daily_withdrawal_limit_cents": 50000,
}

DEFAULT_QA: dict[str, Any] = {
    "spot_check_rates": {
        "new": 0.15,
        "proven": 0.08,
        "trusted": 0.04,
        "elite": 0.02,
        "suspicious": 0.30,
    },
    "shadow_execution_rate": 0.03,
    "similarity_thresholds": {"pass": 0.70, "flag": 0.40},
    "penalty": {
        "first_fail": "warning",
        "second_fail": {"deduct_pct": 0.20, "downgrade": True},
        "third_fail": {"ban": True, "freeze_balance": True},
    },
}

DEFAULT_RATE_LIMITS: dict[str, Any] = {
    "registration": {"per_ip_per_min": 3},
    "work_next": {"per_ip_per_min": 30},
    "task_submit": {"per_min": 20},
    "work_submit": {"per_min": 30},
    "deposit": {"per_ip_per_min": 10},
    "withdrawal": {"per_ip_per_min": 5},
    "balance_check": {"per_ip_per_min": 30},
    "task_check": {"per_ip_per_min": 30},
    "worker_me": {"per_ip_per_min": 20},
}

DEFAULT_SIGNUP: dict[str, Any] = {"buyer_free_credit_cents": 50, "first_deposit_bonus_pct": 0.20}

DEFAULT_PLATFORM_CONFIG: dict[str, dict[str, Any]] = {
    "pricing": DEFAULT_PRICING,
    "tiers": DEFAULT_TIERS,
    "commissions": DEFAULT_COMMISSIONS,
    "qa": DEFAULT_QA,
    "rate_limits": DEFAULT_RATE_LIMITS,
    "signup": DEFAULT_SIGNUP,
}

DEFAULT_COMMISSION_RATE = 0.25
DEFAULT_FREEZE_WINDOW_HOURS = 24.0


class ConfigCache:
    """Key/value cache whose entries expire after a fixed TTL."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[dict[str, Any], float]] = {}
        self._lock = RLock()

    def get(self, key: str) -> dict[str, Any] | None:
        """Return the cached value, or None when absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: dict[str, Any]) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + self._ttl_seconds)

    def invalidate(self, key: str | None = None) -> None:
        """Drop one key, or every key when none is given."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)


class PlatformConfigStore:
    """SQLite-backed storage for named configuration documents."""

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._db = connect(db_path)
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS platform_config (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )
            self._db.commit()

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._db.execute(
                "SELECT value FROM platform_config WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        value = json.loads(row["value"])
        return value if isinstance(value, dict) else None

    def put(self, key: str, value: dict[str, Any]) -> None:
        with self._lock:
            self._db.execute(
                "INSERT INTO platform_config (key, value, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "updated_at = excluded.updated_at",
                (key, json.dumps(value), now_iso()),
            )
            self._db.commit()

    def seed(self, documents: dict[str, dict[str, Any]]) -> int:
        """Insert documents whose key is not present yet. Returns rows inserted."""
        inserted = 0
        timestamp = now_iso()
        with immediate_transaction(self._db, self._lock) as db:
            for key, value in documents.items():
                cursor = db.execute(
                    "INSERT OR IGNORE INTO platform_config (key, value, updated_at) "
                    "VALUES (?, ?, ?)",
                    (key, json.dumps(value), timestamp),
                )
                inserted += cursor.rowcount
        return inserted

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()


class PlatformConfigProvider:
    """
    Read-through access to platform configuration documents.

    ``get`` never raises: a storage failure is logged and reported as an
    absent document, and callers fall back to their documented defaults.
    """

    def __init__(self, store: PlatformConfigStore, cache: ConfigCache) -> None:
        self._store = store
        self._cache = cache
        self._logger = get_logger(__name__)

    def get(self, key: str) -> dict[str, Any] | None:
        cached = self._cache.get(key)
        if cached is not None:
            return copy.deepcopy(cached)
        try:
            value = self._store.get(key)
        except (sqlite3.Error, ValueError):
            self._logger.warning("Config read failed", extra={"config_key": key}, exc_info=True)
            return None
        if value is None:
            return None
        self._cache.set(key, value)
        return copy.deepcopy(value)

    def update(self, key: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Shallow-merge changes into a document and drop its cache entry."""
        current = self._store.get(key) or {}
        merged = {**current, **changes}
        self._store.put(key, merged)
        self._cache.invalidate(key)
        self._logger.info("Config updated", extra={"config_key": key})
        return merged

    def seed_defaults(self) -> int:
        inserted = self._store.seed(DEFAULT_PLATFORM_CONFIG)
        if inserted:
            self._cache.invalidate()
            self._logger.info("Seeded platform config", extra={"documents": inserted})
        return inserted

    # ------------------------------------------------------------------
    # Typed accessors with documented fallbacks
    # ------------------------------------------------------------------

    def pricing(self) -> dict[str, Any]:
        value = self.get("pricing")
        if value is None:
            self._logger.warning("Pricing config unavailable, using defaults")
            return copy.deepcopy(DEFAULT_PRICING)
        return value

    def tiers(self) -> dict[str, Any]:
        value = self.get("tiers")
        return value if value is not None else copy.deepcopy(DEFAULT_TIERS)

    def commission_rate(self, tier: str) -> float:
        tiers = self.get("tiers")
        if tiers is None:
            return DEFAULT_COMMISSION_RATE
        level = tiers.get(tier)
        if not isinstance(level, dict) or "commission" not in level:
            return DEFAULT_COMMISSION_RATE
        return float(level["commission"])

    def freeze_window_hours(self) -> float:
        commissions = self.get("commissions")
        if commissions is None:
            return DEFAULT_FREEZE_WINDOW_HOURS
        return float(commissions.get("freeze_window_hours", DEFAULT_FREEZE_WINDOW_HOURS))

    def commissions(self) -> dict[str, Any]:
        value = self.get("commissions")
        merged = copy.deepcopy(DEFAULT_COMMISSIONS)
        if value is not None:
            merged.update(value)
        return merged

    def qa(self) -> dict[str, Any] | None:
        return self.get("qa")

    def rate_limit_rule(self, operation: str) -> dict[str, Any] | None:
        rules = self.get("rate_limits")
        if rules is not None and isinstance(rules.get(operation), dict):
            return rules[operation]
        default = DEFAULT_RATE_LIMITS.get(operation)
        return dict(default) if default is not None else None

    def signup_credit_cents(self) -> int:
        signup = self.get("signup")
        if signup is None:
            return int(DEFAULT_SIGNUP["buyer_free_credit_cents"])
        return int(signup.get("buyer_free_credit_cents", 0))

    def first_deposit_bonus_pct(self) -> float:
        signup = self.get("signup")
        if signup is None:
            return float(DEFAULT_SIGNUP["first_deposit_bonus_pct"])
        return float(signup.get("first_deposit_bonus_pct", 0.0))
