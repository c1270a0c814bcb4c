"""Task claiming and result submission for workers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, NoReturn

from task_dispatch_service.core.exceptions import (
    ConflictError,
    InvalidRequestError,
    NotFoundError,
    SuspendedError,
)
from task_dispatch_service.logging import get_logger
from task_dispatch_service.services.worker_stats import LOWEST_TIER, build_worker_stats
from task_dispatch_service.timestamps import now_iso, parse_iso, start_of_day_iso, utc_now

if TYPE_CHECKING:
    import random

    from task_dispatch_service.services.balance_ledger import BalanceLedger
    from task_dispatch_service.services.platform_config import PlatformConfigProvider
    from task_dispatch_service.services.qa_comparator import QaComparator
    from task_dispatch_service.services.qa_injector import QaInjector
    from task_dispatch_service.services.settlement import SettlementEngine
    from task_dispatch_service.services.task_store import TaskStore
    from task_dispatch_service.services.worker_store import WorkerStore

FAIRNESS_BYPASS_RATE = 0.2


def worker_task_view(task: dict[str, Any]) -> dict[str, Any]:
    """The only task fields a worker ever sees."""
    return {
        "id": task["task_id"],
        "type": task["type"],
        "input": task["input"],
        "constraints": task["constraints"],
        "price_cents": task["price_cents"],
        "deadline": task["deadline"],
    }


class DispatchEngine:
    """
    Hands pending tasks to workers and settles their submissions.

    Claims and submissions are single guarded store updates, so two workers
    can never hold the same task and a result is accepted at most once.
    """

    def __init__(
        self,
        task_store: TaskStore,
        worker_store: WorkerStore,
        ledger: BalanceLedger,
        settlement: SettlementEngine,
        qa_injector: QaInjector,
        qa_comparator: QaComparator,
        config_provider: PlatformConfigProvider,
        rng: random.Random,
    ) -> None:
        self._task_store = task_store
        self._worker_store = worker_store
        self._ledger = ledger
        self._settlement = settlement
        self._qa_injector = qa_injector
        self._qa_comparator = qa_comparator
        self._config_provider = config_provider
        self._rng = rng
        self._logger = get_logger(__name__)

    def claim(self, worker: dict[str, Any]) -> dict[str, Any] | None:
        """
        Atomically assign the best matching pending task to the worker.

        Returns ``{"task": <worker view>, "stats": <worker stats>}`` or None
        when no task matches.

        Raises:
            SuspendedError: The worker is suspended.
        """
        self._ensure_not_suspended(worker)

        preferences = worker["profile"].get("preferences", {})
        fairness_bypass = self._rng.random() < FAIRNESS_BYPASS_RATE
        fifo = fairness_bypass or worker["tier"] == LOWEST_TIER

        task = self._task_store.claim_next(
            worker["worker_id"],
            now=now_iso(),
            accept=list(preferences.get("accept") or []),
            reject=list(preferences.get("reject") or []),
            min_price=int(preferences.get("min_price") or 0),
            fifo=fifo,
        )
        if task is None:
            return None

        self._worker_store.increment_counters(worker["worker_id"], {"tasks_claimed": 1})
        self._logger.info(
            "Task claimed",
            extra={
                "task_id": task["task_id"],
                "worker_id": worker["worker_id"],
                "price_cents": task["price_cents"],
                "fifo": fifo,
            },
        )
        return {
            "task": worker_task_view(task),
            "stats": self.worker_stats(worker["worker_id"]),
        }

    def submit(
        self,
        worker: dict[str, Any],
        task_id: str,
        output: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Accept a worker's output for a task it holds and settle payment.

        Raises:
            NotFoundError: Task missing or held by another worker.
            ConflictError: Task is the caller's but no longer assigned.
        """
        if not isinstance(output.get("content"), str) or not output["content"]:
            raise InvalidRequestError("Output content must be a non-empty string")

        worker_id = worker["worker_id"]
        task = self._task_store.complete_task(task_id, worker_id, output, now_iso())
        if task is None:
            self._raise_submit_error(task_id, worker_id)

        try:
            settlement = self._settlement.settle(task, worker)
        except Exception:
            self._task_store.revert_completion(task_id, worker_id)
            self._logger.error(
                "Settlement failed, task returned to assigned",
                extra={"task_id": task_id, "worker_id": worker_id},
            )
            raise
        earned = int(settlement["earned_cents"])
        self._worker_store.record_completion(worker_id, earned)

        self._qa_injector.maybe_inject_spot_check(task, worker)
        if task["internal"]["is_qa"]:
            self._qa_comparator.compare(task)
        else:
            self._qa_comparator.compare_pending_for_original(task["task_id"])

        self._logger.info(
            "Task submitted",
            extra={"task_id": task_id, "worker_id": worker_id, "earned_cents": earned},
        )
        return {
            "task_id": task_id,
            "earned_cents": earned,
            "stats": self.worker_stats(worker_id),
        }

    def worker_stats(self, worker_id: str) -> dict[str, Any]:
        worker = self._worker_store.get_worker(worker_id)
        if worker is None:
            raise NotFoundError("Worker")
        earnings_today = self._ledger.sum_transactions(
            worker_id, "freeze", start_of_day_iso(utc_now())
        )
        return build_worker_stats(worker, self._config_provider.tiers(), earnings_today)

    def _ensure_not_suspended(self, worker: dict[str, Any]) -> None:
        suspended_until = worker.get("suspended_until")
        if suspended_until and parse_iso(suspended_until) > utc_now():
            raise SuspendedError(suspended_until)

    def _raise_submit_error(self, task_id: str, worker_id: str) -> NoReturn:
        existing = self._task_store.get_task(task_id)
        if existing is None or existing["worker_id"] != worker_id:
            raise NotFoundError("Task")
        raise ConflictError(
            f"Task cannot be submitted (current status: {existing['status']})",
            current_status=existing["status"],
        )
