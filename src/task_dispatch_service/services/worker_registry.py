"""Worker registration, bearer-token authentication and profile management."""

from __future__ import annotations

import copy
import hashlib
import secrets
import uuid
from typing import TYPE_CHECKING, Any

from task_dispatch_service.core.exceptions import (
    AuthError,
    ConflictError,
    InvalidRequestError,
    NotFoundError,
)
from task_dispatch_service.logging import get_logger
from task_dispatch_service.services.worker_stats import LOWEST_TIER
from task_dispatch_service.services.worker_store import DuplicateWorkerError
from task_dispatch_service.timestamps import now_iso

if TYPE_CHECKING:
    from task_dispatch_service.schemas import BindPayoutRequest, ProfileUpdate
    from task_dispatch_service.services.balance_ledger import BalanceLedger
    from task_dispatch_service.services.worker_store import WorkerStore

TOKEN_PREFIX = "ocw_"
TOKEN_BYTE_LENGTH = 32

DEFAULT_PROFILE: dict[str, Any] = {
    "preferences": {
        "accept": [],
        "reject": [],
        "languages": [],
        "max_tokens": 0,
        "min_price": 0,
    },
    "schedule": {"timezone": "UTC", "shifts": []},
    "limits": {"daily_max_tasks": 100, "concurrent": 1},
}


def generate_worker_token() -> str:
    """A fresh raw token. Shown to the worker once and never stored."""
    return f"{TOKEN_PREFIX}{secrets.token_hex(TOKEN_BYTE_LENGTH)}"


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def merge_profile(profile: dict[str, Any], update: ProfileUpdate) -> dict[str, Any]:
    """Merge the fields set on ``update`` into a copy of ``profile``."""
    merged = copy.deepcopy(profile)
    changed = update.model_dump(mode="json", exclude_unset=True, exclude_none=True)
    for section, changes in changed.items():
        current = merged.get(section)
        if not isinstance(current, dict):
            current = {}
        current.update(changes)
        merged[section] = current
    return merged


class WorkerRegistry:
    """Creates workers, resolves tokens and applies profile/binding changes."""

    def __init__(self, worker_store: WorkerStore, ledger: BalanceLedger) -> None:
        self._worker_store = worker_store
        self._ledger = ledger
        self._logger = get_logger(__name__)

    def register_worker(
        self,
        worker_type: str,
        model_info: dict[str, Any] | None,
    ) -> dict[str, Any]:
        """
        Register a worker with a zero balance.

        Returns ``worker_id``, the raw ``token`` (only ever returned here)
        and the stored ``worker`` record.
        """
        token = generate_worker_token()
        worker = {
            "worker_id": f"w-{uuid.uuid4()}",
            "token_hash": hash_token(token),
            "worker_type": worker_type,
            "model_info": model_info,
            "email": None,
            "payout": None,
            "profile": copy.deepcopy(DEFAULT_PROFILE),
            "tier": LOWEST_TIER,
            "tasks_claimed": 0,
            "tasks_completed": 0,
            "tasks_expired": 0,
            "consecutive_expires": 0,
            "total_earned": 0,
            "credit_requests": 0,
            "spot_pass": 0,
            "spot_fail": 0,
            "suspended_until": None,
            "created_at": now_iso(),
            "last_seen": None,
        }
        self._worker_store.insert_worker(worker)
        self._ledger.initialize_balance(worker["worker_id"])
        self._logger.info(
            "Worker registered",
            extra={"worker_id": worker["worker_id"], "worker_type": worker_type},
        )
        return {"worker_id": worker["worker_id"], "token": token, "worker": worker}

    def authenticate(self, token: str | None) -> dict[str, Any]:
        """Resolve a raw bearer token to its worker and stamp ``last_seen``."""
        if not token:
            raise AuthError("Missing worker token")
        worker = self._worker_store.get_worker_by_token_hash(hash_token(token))
        if worker is None:
            raise AuthError("Invalid worker token")
        seen_at = now_iso()
        self._worker_store.touch_last_seen(worker["worker_id"], seen_at)
        worker["last_seen"] = seen_at
        return worker

    def get_worker(self, worker_id: str) -> dict[str, Any]:
        worker = self._worker_store.get_worker(worker_id)
        if worker is None:
            raise NotFoundError("Worker")
        return worker

    def update_profile(self, worker_id: str, update: ProfileUpdate) -> dict[str, Any]:
        """Apply a partial profile update. An empty update is rejected."""
        changed = update.model_dump(mode="json", exclude_unset=True, exclude_none=True)
        if not any(changed.values()):
            raise InvalidRequestError("Profile update must set at least one field")
        worker = self.get_worker(worker_id)
        profile = merge_profile(worker["profile"], update)
        self._worker_store.set_profile(worker_id, profile)
        return profile

    def bind_email(self, worker_id: str, email: str) -> None:
        try:
            updated = self._worker_store.set_email(worker_id, email)
        except DuplicateWorkerError as exc:
            raise ConflictError("Email already bound to another worker") from exc
        if updated == 0:
            raise NotFoundError("Worker")

    def bind_payout(self, worker_id: str, payout: BindPayoutRequest) -> None:
        if self._worker_store.set_payout(worker_id, payout.model_dump()) == 0:
            raise NotFoundError("Worker")
